import csv
import json
from unittest.mock import MagicMock

import pytest
from firebase_admin import firestore

from mp_payments import (
    MP_SEARCH_URL,
    analyze_payments,
    clean_payment,
    clean_payment_files,
    fetch_payments,
    main,
    push_payments,
    run_analytics,
    summarize,
)


def raw_payment(payment_id, date_created="2024-06-12T10:00:00.000-03:00", status="approved", amount=100.0, net=95.0):
    return {
        "id": payment_id,
        "date_created": date_created,
        "status": status,
        "status_detail": "accredited",
        "transaction_amount": amount,
        "transaction_details": {
            "net_received_amount": net,
            "total_paid_amount": amount,
            "installment_amount": 0,
            "overpaid_amount": 0,
            "external_resource_url": "https://example.com/secret",
        },
        "payment_method": {"id": "account_money", "type": "account_money"},
        "payer": {"email": "someone@example.com"},
        "charges_details": [{"amounts": {"original": 5, "refunded": 0}, "name": "mp fee", "type": "fee", "metadata": {}}],
        "point_of_interaction": {"type": "PSP_TRANSFER", "business_info": {"unit": "online", "sub_unit": "qr", "branch": None}},
    }


def page(results, total):
    response = MagicMock()
    response.json.return_value = {"results": results, "paging": {"total": total}}
    return response


# ===== Save =====

def test_fetch_payments_pages_and_saves(tmp_path):
    session = MagicMock()
    session.get.side_effect = [
        page([raw_payment(i) for i in range(100)], 150),
        page([raw_payment(i) for i in range(100, 150)], 150),
    ]

    total = fetch_payments(session, "token", "2024-06-01T00:00:00+00:00", tmp_path, page_delay=0)

    assert total == 150
    assert len(list(tmp_path.glob("*.json"))) == 150
    assert json.loads((tmp_path / "7.json").read_text())["id"] == 7

    first_call = session.get.call_args_list[0]
    assert first_call.args[0] == MP_SEARCH_URL
    assert first_call.kwargs["headers"] == {"Authorization": "Bearer token"}
    assert first_call.kwargs["params"]["offset"] == 0
    assert first_call.kwargs["params"]["range"] == "date_created"
    assert session.get.call_args_list[1].kwargs["params"]["offset"] == 100


def test_fetch_payments_skips_duplicates(tmp_path):
    session = MagicMock()
    session.get.side_effect = [
        page([raw_payment(1), raw_payment(2)], 300),
        page([raw_payment(2), raw_payment(3)], 300),
        page([], 300),
    ]

    assert fetch_payments(session, "token", "2024-06-01T00:00:00+00:00", tmp_path, page_delay=0) == 3


def test_fetch_payments_raises_on_http_error(tmp_path):
    session = MagicMock()
    session.get.return_value.raise_for_status.side_effect = RuntimeError("401 Unauthorized")

    with pytest.raises(RuntimeError):
        fetch_payments(session, "bad", "2024-06-01T00:00:00+00:00", tmp_path, page_delay=0)


# ===== Clean =====

def test_clean_payment_drops_private_fields():
    cleaned = clean_payment(raw_payment(42))

    assert "payer" not in cleaned
    assert "external_resource_url" not in cleaned["transaction_details"]
    assert cleaned["charges_details"] == [{"amounts": {"original": 5, "refunded": 0}, "name": "mp fee", "type": "fee"}]
    assert cleaned["point_of_interaction"] == {
        "business_info": {"branch": None, "sub_unit": "qr", "unit": "online"},
        "type": "PSP_TRANSFER",
    }
    assert cleaned["transaction_details"]["net_received_amount"] == 95.0
    assert cleaned["id"] == 42


def test_clean_payment_without_optional_sections():
    cleaned = clean_payment({"id": 1, "date_created": "2024-06-12T10:00:00.000-03:00"})

    assert cleaned["charges_details"] == []
    assert cleaned["point_of_interaction"]["type"] is None


def test_clean_payment_files(tmp_path):
    raw_dir = tmp_path / "raw"
    raw_dir.mkdir()
    (raw_dir / "1.json").write_text(json.dumps(raw_payment(1)))
    (raw_dir / "2.json").write_text("{broken")
    (raw_dir / "3.json").write_text(json.dumps({"no": "id"}))

    assert clean_payment_files(raw_dir, tmp_path / "clean") == 1
    assert json.loads((tmp_path / "clean" / "1.json").read_text())["status"] == "approved"


# ===== Push =====

def test_push_payments(store, fake_db, tmp_path):
    for payment_id in (1, 2):
        (tmp_path / f"{payment_id}.json").write_text(json.dumps(clean_payment(raw_payment(payment_id))))

    stats = push_payments(store, tmp_path, "mp-payments-99")

    assert stats == {"batches": 1, "uploaded": 2, "failed": 0}
    document = fake_db.data["mp-payments-99"]["1"]
    assert isinstance(document["imported_at"], type(firestore.SERVER_TIMESTAMP))
    assert document["status"] == "approved"


def test_push_payments_missing_dir(store, tmp_path):
    assert push_payments(store, tmp_path / "missing", "mp-payments-99")["uploaded"] == 0


# ===== Analytics =====

def test_analyze_payments_fills_missing_days():
    payments = [
        raw_payment(1, "2024-06-10T09:00:00.000-03:00", amount=100, net=90),
        raw_payment(2, "2024-06-10T18:00:00.000-03:00", amount=50, net=45),
        raw_payment(3, "2024-06-12T10:00:00.000-03:00", status="rejected", amount=10, net=0),
        dict(raw_payment(4, "2024-06-12T11:00:00.000-03:00", status="pending"), payment_method=None),
    ]

    result = analyze_payments(payments)

    assert result["daily"] == [
        {"date": "2024-06-10", "paymentCount": 2, "grossAmount": 150, "netAmount": 135},
        {"date": "2024-06-11", "paymentCount": 0, "grossAmount": 0.0, "netAmount": 0.0},
        {"date": "2024-06-12", "paymentCount": 2, "grossAmount": 110, "netAmount": 95},
    ]
    assert result["approved"] == 2
    assert result["rejected"] == 1
    assert result["payment_methods"] == {"account_money": 3, "unknown": 1}


def test_summarize():
    summary = summarize([
        {"date": "2024-06-10", "paymentCount": 3, "grossAmount": 300.0, "netAmount": 270.0},
        {"date": "2024-06-11", "paymentCount": 1, "grossAmount": 100.0, "netAmount": 90.0},
    ])

    assert summary == {
        "total_payments": 4,
        "total_gross": 400.0,
        "total_net": 360.0,
        "average_transaction": 100.0,
        "average_daily_payments": 2.0,
    }


def test_summarize_empty():
    assert summarize([])["average_transaction"] == 0.0


def test_run_analytics_writes_csv(tmp_path):
    input_dir = tmp_path / "payments"
    input_dir.mkdir()
    (input_dir / "1.json").write_text(json.dumps(raw_payment(1, "2024-06-10T09:00:00.000-03:00")))
    (input_dir / "2.json").write_text(json.dumps(raw_payment(2, "2024-06-11T09:00:00.000-03:00")))
    output = tmp_path / "payment-analytics.csv"

    result = run_analytics(input_dir, output)

    with open(output, newline="") as f:
        rows = list(csv.DictReader(f))
    assert [row["date"] for row in rows] == ["2024-06-10", "2024-06-11"]
    assert rows[0] == {"date": "2024-06-10", "paymentCount": "1", "grossAmount": "100.0", "netAmount": "95.0"}
    assert result["summary"]["total_payments"] == 2


def test_run_analytics_without_payments(tmp_path):
    assert run_analytics(tmp_path, tmp_path / "out.csv") is None


def test_main_requires_user_id(monkeypatch):
    monkeypatch.delenv("MP_USER_ID", raising=False)

    assert main(["clean"]) == 1
