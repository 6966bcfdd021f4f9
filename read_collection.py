#!/usr/bin/env python3
"""Read Collection - log every document of COLLECTION_TO_READ"""
import os
import sys

from dotenv import load_dotenv

from firestore_service import FirestoreService
from logger import script_logger as logger

load_dotenv()


def read_documents(store: FirestoreService, collection_id: str) -> int:
    """Log id and data of every document, returns the document count"""
    count = 0
    for doc in store.db.collection(collection_id).stream():
        logger.info(f"📄 Document ID: {doc.id}")
        logger.info(f"   Data: {doc.to_dict()}")
        count += 1

    if count == 0:
        logger.info(f"📭 No documents found in the {collection_id} collection.")
    else:
        logger.info(f"✅ {count} documents in {collection_id}")
    return count


def main() -> int:
    collection_id = os.getenv("COLLECTION_TO_READ")
    if not collection_id:
        logger.error("❌ COLLECTION_TO_READ environment variable is not set")
        return 1

    try:
        read_documents(FirestoreService(), collection_id)
    except Exception as e:
        logger.error(f"❌ Error reading documents: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
