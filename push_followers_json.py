#!/usr/bin/env python3
"""
Push Followers JSON - upload Instagram follower exports to Firestore

Instagram exports followers as JSON files:

    [{"string_list_data": [{"value": "username", "timestamp": 1718236800, ...}]}, ...]

Two modes:
- Folder: INSTAGRAM_ACCOUNT_TO_PUSH=<account> reads data/<account>/followers_*.json
  into followers-instagram-<account>
- Single file: FOLLOWERS_DATA_PATH + FOLLOWERS_COLLECTION_TO_PUSH
"""
import json
import os
import sys
from pathlib import Path
from typing import Dict, List, Tuple

from dotenv import load_dotenv

from firestore_service import FirestoreService
from logger import script_logger as logger
from stamps_service import follower_collection_name, follower_document_id

load_dotenv()

SINGLE_FILE_BATCH_SIZE = 100
FOLDER_BATCH_SIZE = 500


def parse_followers(entries: List[Dict]) -> Tuple[List[Tuple[str, Dict]], int]:
    """
    Turn export entries into (document id, data) pairs.

    Returns:
        (documents, skipped) - entries without username or timestamp are skipped
    """
    documents = []
    skipped = 0
    for entry in entries:
        try:
            item = entry["string_list_data"][0]
            username = item["value"].strip()
            timestamp = int(item["timestamp"])
        except (KeyError, IndexError, TypeError, ValueError, AttributeError):
            skipped += 1
            continue

        if not username:
            skipped += 1
            continue

        documents.append((follower_document_id(username), {
            "follower_since": timestamp,
            "username": username,
        }))

    return documents, skipped


def load_followers_file(file_path: Path) -> Tuple[List[Tuple[str, Dict]], int]:
    with open(file_path, encoding="utf-8") as f:
        return parse_followers(json.load(f))


def push_followers_file(store: FirestoreService, collection_id: str, file_path: Path, batch_size: int) -> Dict[str, int]:
    """
    Upload one export file.

    Returns:
        {"added": n, "skipped": n}
    """
    documents, skipped = load_followers_file(file_path)
    logger.info(f"📄 Processing {len(documents) + skipped} followers from {file_path.name}")

    stats = store.batch_set(collection_id, documents, batch_size, label="followers")
    skipped += stats["failed"]

    logger.info(
        f"File Summary: {file_path.name}\n"
        f"  Total followers added: {stats['uploaded']}\n"
        f"  Skipped followers: {skipped}\n"
        f"  Total processed: {stats['uploaded'] + skipped}"
    )
    return {"added": stats["uploaded"], "skipped": skipped}


def push_followers_folder(store: FirestoreService, folder_path: Path, collection_id: str) -> Dict[str, int]:
    """
    Upload every followers_*.json file of a folder.

    A file that fails is logged and the remaining files still run.
    """
    totals = {"files": 0, "added": 0, "skipped": 0}

    if not folder_path.is_dir():
        logger.error(f"❌ The directory '{folder_path}' does not exist.")
        return totals

    files = sorted(folder_path.glob("followers_*.json"))
    logger.info(f"📂 Found {len(files)} follower files to process in {folder_path}.")

    for file_path in files:
        try:
            result = push_followers_file(store, collection_id, file_path, FOLDER_BATCH_SIZE)
        except Exception as e:
            logger.error(f"❌ Failed to process file {file_path.name}: {e}")
            continue
        totals["files"] += 1
        totals["added"] += result["added"]
        totals["skipped"] += result["skipped"]

    logger.info(
        f"Grand Total Summary:\n"
        f"  Total followers added: {totals['added']}\n"
        f"  Total followers skipped: {totals['skipped']}\n"
        f"  Total followers processed: {totals['added'] + totals['skipped']}"
    )
    return totals


def main() -> int:
    account = os.getenv("INSTAGRAM_ACCOUNT_TO_PUSH")
    store = FirestoreService()

    try:
        if account:
            data_dir = Path(os.getenv("DATA_DIR", "data"))
            push_followers_folder(store, data_dir / account, follower_collection_name("instagram", account))
            return 0

        collection_id = os.getenv("FOLLOWERS_COLLECTION_TO_PUSH")
        data_path = os.getenv("FOLLOWERS_DATA_PATH")
        if not collection_id or not data_path:
            logger.error("❌ Set INSTAGRAM_ACCOUNT_TO_PUSH, or FOLLOWERS_COLLECTION_TO_PUSH and FOLLOWERS_DATA_PATH")
            return 1

        push_followers_file(store, collection_id, Path(data_path), SINGLE_FILE_BATCH_SIZE)
    except Exception as e:
        logger.error(f"❌ Error adding followers to Firestore: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
