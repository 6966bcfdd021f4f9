#!/usr/bin/env python3
"""
Push Followers CSV - upload a follower list exported as CSV

The CSV has a userName column but no follow dates, so every follower gets
the start date of the follower exports (June 12, 2024).
"""
import csv
import os
import sys
from typing import Dict, Iterator, Tuple

from dotenv import load_dotenv

from firestore_service import FirestoreService
from logger import script_logger as logger
from stamps_service import FOLLOWER_SINCE_EPOCH, follower_document_id

load_dotenv()

BATCH_SIZE = 100


def read_followers_csv(csv_path: str) -> Iterator[Tuple[str, Dict]]:
    """Yield (document id, follower data) for every row with a userName"""
    with open(csv_path, newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            username = (row.get("userName") or "").strip()
            if not username:
                continue
            yield follower_document_id(username), {
                "username": username,
                "follower_since": FOLLOWER_SINCE_EPOCH,
            }


def upload_followers(store: FirestoreService, collection_id: str, csv_path: str) -> Dict[str, int]:
    logger.info(f"📂 CSV file: {csv_path}")
    stats = store.batch_set(collection_id, read_followers_csv(csv_path), BATCH_SIZE, label="records")

    logger.info("🏁 Followers data upload completed!")
    logger.info(f"   Total batches: {stats['batches']}, Total records uploaded: {stats['uploaded']}")
    if stats["failed"]:
        logger.warning(f"⚠️ Records in failed batches: {stats['failed']}")
    return stats


def main() -> int:
    collection_id = os.getenv("FOLLOWERS_COLLECTION_TO_PUSH")
    csv_path = os.getenv("CSV_FILE_PATH")
    if not collection_id or not csv_path:
        logger.error("❌ FOLLOWERS_COLLECTION_TO_PUSH and CSV_FILE_PATH must be set")
        return 1

    try:
        upload_followers(FirestoreService(), collection_id, csv_path)
    except Exception as e:
        logger.error(f"❌ Error uploading followers: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
