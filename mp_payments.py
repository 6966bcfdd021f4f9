#!/usr/bin/env python3
"""
MercadoPago Payments - download, clean, upload and analyze the payment ledger

Steps (run in this order):
    python mp_payments.py save       # API -> data/mp-payments-<user>-raw/<id>.json
    python mp_payments.py clean      # raw -> data/mp-payments-<user>/<id>.json (whitelisted fields)
    python mp_payments.py push       # cleaned files -> Firestore mp-payments-<user>
    python mp_payments.py analytics  # cleaned files -> data/payment-analytics.csv

Environment: MP_USER_ID (all steps), MP_ACCESS_TOKEN + MP_FETCH_START_DATE (save),
DATA_DIR (default ./data), SERVICE_ACCOUNT_PATH (push).
"""
import argparse
import csv
import json
import os
import sys
import time
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv
from firebase_admin import firestore

from firestore_service import FirestoreService
from logger import script_logger as logger

load_dotenv()

MP_SEARCH_URL = "https://api.mercadopago.com/v1/payments/search"
PAGE_LIMIT = 100          # MercadoPago max per request
MAX_PAGES = 100           # pages per batch
FETCH_BATCH_SIZE = 10000  # payments per batch
PAGE_DELAY_SECONDS = 0.1
PUSH_BATCH_SIZE = 500


def collection_id(user_id: str) -> str:
    return f"mp-payments-{user_id}"


def data_dir() -> Path:
    return Path(os.getenv("DATA_DIR", "data"))


def require_env(*names: str) -> Dict[str, str]:
    """Read required variables, raising RuntimeError naming the first missing one"""
    values = {}
    for name in names:
        value = os.getenv(name)
        if not value:
            raise RuntimeError(f"{name} environment variable is not set")
        values[name] = value
    return values


def iter_json_files(directory: Path) -> List[Path]:
    return sorted(path for path in directory.iterdir() if path.suffix == ".json")


# ============================================================================
# Save (download)
# ============================================================================

def save_payments_to_files(payments: List[Dict[str, Any]], output_dir: Path) -> int:
    output_dir.mkdir(parents=True, exist_ok=True)

    saved = 0
    for payment in payments:
        with open(output_dir / f"{payment['id']}.json", "w", encoding="utf-8") as f:
            json.dump(payment, f, indent=2, ensure_ascii=False)
        saved += 1
        if saved % 100 == 0:
            logger.info(f"💾 Saved {saved} of {len(payments)} payment files")

    return saved


def fetch_payments(
    session: requests.Session,
    access_token: str,
    start_date: str,
    output_dir: Path,
    page_delay: float = PAGE_DELAY_SECONDS
) -> int:
    """
    Page through /v1/payments/search from start_date until now and save every payment.

    A batch stops after MAX_PAGES pages or FETCH_BATCH_SIZE payments; the next
    batch restarts from the date_created of the last payment seen. Payment ids
    already saved are skipped.

    Returns:
        Number of payments saved
    """
    current_start_date = start_date
    processed_ids = set()
    total_saved = 0
    has_more = True

    while has_more:
        logger.info(f"📥 Fetching batch starting from date: {current_start_date}")
        batch_payments: List[Dict[str, Any]] = []
        offset = 0
        page = 0

        while len(batch_payments) < FETCH_BATCH_SIZE and page < MAX_PAGES:
            page += 1
            response = session.get(
                MP_SEARCH_URL,
                headers={"Authorization": f"Bearer {access_token}"},
                params={
                    "begin_date": current_start_date,
                    "end_date": datetime.now(timezone.utc).isoformat(),
                    "range": "date_created",
                    "offset": offset,
                    "limit": PAGE_LIMIT,
                },
                timeout=30,
            )
            response.raise_for_status()
            body = response.json()
            results = body.get("results", [])
            paging_total = body.get("paging", {}).get("total", 0)

            new_results = [payment for payment in results if payment["id"] not in processed_ids]
            if new_results:
                total_saved += save_payments_to_files(new_results, output_dir)
                processed_ids.update(payment["id"] for payment in new_results)
                batch_payments.extend(new_results)
                logger.info(f"✅ Page {page}: {len(new_results)} payments saved. Total saved: {total_saved}")

            if offset + PAGE_LIMIT >= paging_total or not results:
                has_more = False
                break

            offset += PAGE_LIMIT
            if page_delay:
                time.sleep(page_delay)

        if not batch_payments:
            break

        current_start_date = batch_payments[-1]["date_created"]
        if has_more:
            logger.info(f"⏭️ Next batch will start from: {current_start_date}")

    return total_saved


def save(args) -> int:
    env = require_env("MP_ACCESS_TOKEN", "MP_USER_ID", "MP_FETCH_START_DATE")
    start_date = datetime.fromisoformat(env["MP_FETCH_START_DATE"]).replace(tzinfo=timezone.utc).isoformat()
    output_dir = data_dir() / f"{collection_id(env['MP_USER_ID'])}-raw"

    logger.info(f"🚀 Fetching payments since {start_date}...")
    with requests.Session() as session:
        total = fetch_payments(session, env["MP_ACCESS_TOKEN"], start_date, output_dir)
    logger.info(f"🏁 Finished processing all payments: {total} saved to {output_dir}")
    return 0


# ============================================================================
# Clean
# ============================================================================

def clean_payment(payment: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the payment fields used downstream"""
    business_info = (payment.get("point_of_interaction") or {}).get("business_info") or {}
    transaction_details = payment.get("transaction_details") or {}

    return {
        "captured": payment.get("captured"),
        "charges_details": [
            {
                "amounts": {
                    "original": (charge.get("amounts") or {}).get("original"),
                    "refunded": (charge.get("amounts") or {}).get("refunded"),
                },
                "name": charge.get("name"),
                "type": charge.get("type"),
            }
            for charge in payment.get("charges_details") or []
        ],
        "collector_id": payment.get("collector_id"),
        "currency_id": payment.get("currency_id"),
        "date_approved": payment.get("date_approved"),
        "date_created": payment["date_created"],
        "date_last_updated": payment.get("date_last_updated"),
        "description": payment.get("description"),
        "fee_details": payment.get("fee_details") or [],
        "id": payment["id"],
        "live_mode": payment.get("live_mode"),
        "money_release_date": payment.get("money_release_date"),
        "money_release_status": payment.get("money_release_status"),
        "operation_type": payment.get("operation_type"),
        "payment_method": payment.get("payment_method"),
        "payment_type_id": payment.get("payment_type_id"),
        "point_of_interaction": {
            "business_info": {
                "branch": business_info.get("branch"),
                "sub_unit": business_info.get("sub_unit"),
                "unit": business_info.get("unit"),
            },
            "type": (payment.get("point_of_interaction") or {}).get("type"),
        },
        "refunds": payment.get("refunds") or [],
        "status": payment.get("status"),
        "status_detail": payment.get("status_detail"),
        "taxes_amount": payment.get("taxes_amount"),
        "transaction_amount": payment.get("transaction_amount"),
        "transaction_amount_refunded": payment.get("transaction_amount_refunded"),
        "transaction_details": {
            "installment_amount": transaction_details.get("installment_amount"),
            "net_received_amount": transaction_details.get("net_received_amount"),
            "overpaid_amount": transaction_details.get("overpaid_amount"),
            "total_paid_amount": transaction_details.get("total_paid_amount"),
        },
    }


def clean_payment_files(input_dir: Path, output_dir: Path) -> int:
    """Clean every raw payment file, skipping (and logging) files that fail"""
    output_dir.mkdir(parents=True, exist_ok=True)
    files = iter_json_files(input_dir)
    logger.info(f"🧹 Found {len(files)} JSON files to process")

    processed = 0
    for file_path in files:
        try:
            with open(file_path, encoding="utf-8") as f:
                cleaned = clean_payment(json.load(f))
            with open(output_dir / file_path.name, "w", encoding="utf-8") as f:
                json.dump(cleaned, f, indent=2, ensure_ascii=False)
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"❌ Error processing file {file_path.name}: {e}")
            continue

        processed += 1
        if processed % 100 == 0:
            logger.info(f"   Processed {processed} files")

    logger.info(f"✅ Successfully processed {processed} files, saved to {output_dir}")
    return processed


def clean(args) -> int:
    user_id = require_env("MP_USER_ID")["MP_USER_ID"]
    base = data_dir()
    clean_payment_files(base / f"{collection_id(user_id)}-raw", base / collection_id(user_id))
    return 0


# ============================================================================
# Push
# ============================================================================

def load_payment_documents(input_dir: Path):
    """Yield (payment id, payment + imported_at) for every readable file"""
    for file_path in iter_json_files(input_dir):
        try:
            with open(file_path, encoding="utf-8") as f:
                payment = json.load(f)
            doc_id = str(payment["id"])
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"❌ Error processing file {file_path.name}: {e}")
            continue
        yield doc_id, dict(payment, imported_at=firestore.SERVER_TIMESTAMP)


def push_payments(store: FirestoreService, input_dir: Path, target_collection: str) -> Dict[str, int]:
    if not input_dir.is_dir():
        logger.error(f"❌ The directory '{input_dir}' does not exist.")
        return {"batches": 0, "uploaded": 0, "failed": 0}

    logger.info(f"🚀 Pushing payments from {input_dir} to {target_collection}...")
    stats = store.batch_set(target_collection, load_payment_documents(input_dir), PUSH_BATCH_SIZE, label="payments")
    logger.info(f"🏁 Total batches: {stats['batches']}, Total payments uploaded: {stats['uploaded']}")
    return stats


def push(args) -> int:
    user_id = require_env("MP_USER_ID")["MP_USER_ID"]
    push_payments(FirestoreService(), data_dir() / collection_id(user_id), collection_id(user_id))
    return 0


# ============================================================================
# Analytics
# ============================================================================

def empty_day(day: str) -> Dict[str, Any]:
    return {"date": day, "paymentCount": 0, "grossAmount": 0.0, "netAmount": 0.0}


def analyze_payments(payments: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Aggregate payments per day of date_created.

    Returns:
        {"daily": [day stats sorted by date, gaps filled with zeros],
         "approved": n, "rejected": n, "payment_methods": {type: count}}
    """
    daily: Dict[str, Dict[str, Any]] = {}
    payment_methods: Dict[str, int] = {}
    approved = 0
    rejected = 0

    for payment in payments:
        method = (payment.get("payment_method") or {}).get("type") or "unknown"
        payment_methods[method] = payment_methods.get(method, 0) + 1

        day = payment["date_created"].split("T")[0]
        stats = daily.setdefault(day, empty_day(day))
        stats["paymentCount"] += 1
        stats["grossAmount"] += payment.get("transaction_amount") or 0
        stats["netAmount"] += (payment.get("transaction_details") or {}).get("net_received_amount") or 0

        if payment.get("status") == "approved":
            approved += 1
        elif payment.get("status") == "rejected":
            rejected += 1

    if daily:
        current = date.fromisoformat(min(daily))
        end = date.fromisoformat(max(daily))
        while current <= end:
            daily.setdefault(current.isoformat(), empty_day(current.isoformat()))
            current += timedelta(days=1)

    return {
        "daily": [daily[day] for day in sorted(daily)],
        "approved": approved,
        "rejected": rejected,
        "payment_methods": payment_methods,
    }


def write_analytics_csv(daily: List[Dict[str, Any]], output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=["date", "paymentCount", "grossAmount", "netAmount"])
        writer.writeheader()
        writer.writerows(daily)


def summarize(daily: List[Dict[str, Any]]) -> Dict[str, float]:
    total_payments = sum(day["paymentCount"] for day in daily)
    total_gross = sum(day["grossAmount"] for day in daily)
    total_net = sum(day["netAmount"] for day in daily)
    return {
        "total_payments": total_payments,
        "total_gross": total_gross,
        "total_net": total_net,
        "average_transaction": total_gross / total_payments if total_payments else 0.0,
        "average_daily_payments": total_payments / len(daily) if daily else 0.0,
    }


def run_analytics(input_dir: Path, output_path: Path) -> Optional[Dict[str, Any]]:
    logger.info("=== Starting Payment Analysis ===")
    logger.info(f"📂 Reading files from: {input_dir}")

    payments = []
    skipped = 0
    for file_path in iter_json_files(input_dir):
        try:
            with open(file_path, encoding="utf-8") as f:
                payment = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"❌ Error processing file {file_path.name}: {e}")
            skipped += 1
            continue

        if "date_created" not in payment:
            logger.error(f"❌ Payment file without date_created: {file_path.name}")
            skipped += 1
            continue
        payments.append(payment)

    if not payments:
        logger.warning("⚠️ No payments to analyze")
        return None

    result = analyze_payments(payments)
    write_analytics_csv(result["daily"], output_path)
    summary = summarize(result["daily"])

    logger.info(f"Total files processed: {len(payments)} | skipped: {skipped}")
    logger.info(f"Approved payments: {result['approved']} | Rejected payments: {result['rejected']}")
    for method, count in result["payment_methods"].items():
        logger.info(f"   {method}: {count} payments")
    logger.info(f"📊 Analytics data written to: {output_path}")
    logger.info(f"Total number of payments: {summary['total_payments']}")
    logger.info(f"Total gross amount: ${summary['total_gross']:.2f}")
    logger.info(f"Total net amount: ${summary['total_net']:.2f}")
    logger.info(f"Average transaction size: ${summary['average_transaction']:.2f}")
    logger.info(f"Average daily payments: {summary['average_daily_payments']:.1f}")

    return dict(result, summary=summary)


def analytics(args) -> int:
    user_id = require_env("MP_USER_ID")["MP_USER_ID"]
    base = data_dir()
    run_analytics(base / collection_id(user_id), base / "payment-analytics.csv")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="MercadoPago payment ledger tools")
    parser.add_argument("step", choices=["save", "clean", "push", "analytics"])
    args = parser.parse_args(argv)

    steps = {"save": save, "clean": clean, "push": push, "analytics": analytics}
    try:
        return steps[args.step](args)
    except Exception as e:
        logger.error(f"❌ Script execution failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
