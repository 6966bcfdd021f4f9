"""
Plasa Stamps - Firestore Service

Thin accessor over the Firestore document store:
- Read / write / delete documents by id
- Field equality queries
- Unique field assignment
- Chunked batch uploads for the data scripts
"""

import os
from typing import Any, Dict, Iterable, List, Optional, Tuple

import firebase_admin
from firebase_admin import credentials, firestore

from logger import db_logger as logger


class FieldConflictError(Exception):
    """Raised when a unique field is already set or already taken by another document"""


class MultipleDocumentsError(Exception):
    """Raised when a single-document query matches more than one document"""


def get_firestore_client():
    """
    Initialize the Firebase app once and return a Firestore client.

    Uses the service account file from SERVICE_ACCOUNT_PATH when set,
    otherwise the application default credentials.
    """
    if not firebase_admin._apps:
        service_account_path = os.getenv("SERVICE_ACCOUNT_PATH")
        if service_account_path:
            cred = credentials.Certificate(service_account_path)
            firebase_admin.initialize_app(cred)
            logger.info(f"🔥 Firebase initialized with service account: {service_account_path}")
        else:
            firebase_admin.initialize_app()
            logger.info("🔥 Firebase initialized with default credentials")
    return firestore.client()


class FirestoreService:
    """Read, write, delete and query documents in Firestore"""

    def __init__(self, db=None):
        # None until first use
        self._db = db

    @property
    def db(self):
        if self._db is None:
            self._db = get_firestore_client()
        return self._db

    def read(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """
        Read a document.

        Returns:
            Document data, or None if the document does not exist
        """
        doc = self.db.collection(collection).document(doc_id).get()
        if not doc.exists:
            return None
        return doc.to_dict() or None

    def read_all(self, collection: str) -> List[Dict[str, Any]]:
        """Return the data of every document in a collection"""
        return [doc.to_dict() for doc in self.db.collection(collection).stream()]

    def write(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge data into a document (created if missing).

        Returns:
            The document data after the write
        """
        doc_ref = self.db.collection(collection).document(doc_id)
        doc_ref.set(data, merge=True)
        return doc_ref.get().to_dict()

    def write_new(self, collection: str, data: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        """
        Write a new document with an auto-generated id.

        Returns:
            (document id, stored data)
        """
        doc_ref = self.db.collection(collection).document()
        doc_ref.set(data)
        return doc_ref.id, doc_ref.get().to_dict()

    def write_ref(self, doc_ref, data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge data into an existing document reference"""
        doc_ref.set(data, merge=True)
        return doc_ref.get().to_dict()

    def set_unique_field(self, collection: str, doc_id: str, field: str, value: Any) -> Dict[str, Any]:
        """
        Set a field on a document only if the document does not have it yet
        and no other document in the collection holds the same value.

        Raises:
            FieldConflictError: field already present or value already taken
        """
        doc_ref = self.db.collection(collection).document(doc_id)
        data = doc_ref.get().to_dict() or {}

        if field in data:
            raise FieldConflictError(f'Field "{field}" already exists in the document')

        if self.query_snapshots(collection, field, value):
            raise FieldConflictError(f'Another document already has the value "{value}" for field "{field}"')

        doc_ref.set({field: value}, merge=True)
        return doc_ref.get().to_dict()

    def delete(self, collection: str, doc_id: str) -> None:
        self.db.collection(collection).document(doc_id).delete()

    def query_snapshots(self, collection: str, field: str, value: Any) -> List[Any]:
        """Return the document snapshots where field == value"""
        return list(self.db.collection(collection).where(field, "==", value).stream())

    def query_by_field(self, collection: str, field: str, value: Any) -> Optional[List[Dict[str, Any]]]:
        """
        Query documents where field == value.

        Returns:
            List of document data, or None if nothing matched
        """
        snapshots = self.query_snapshots(collection, field, value)
        if not snapshots:
            return None
        return [doc.to_dict() for doc in snapshots]

    def query_single_by_field(self, collection: str, field: str, value: Any) -> Optional[Dict[str, Any]]:
        """
        Query the single document where field == value.

        Raises:
            MultipleDocumentsError: more than one document matched
        """
        snapshots = self.query_snapshots(collection, field, value)
        if len(snapshots) > 1:
            raise MultipleDocumentsError(
                f"More than one document found in {collection} for {field}={value}"
            )
        if not snapshots:
            return None
        return snapshots[0].to_dict()

    def query_by_fields(self, collection: str, field_values: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
        """Query documents matching every field == value pair"""
        query = self.db.collection(collection)
        for field, value in field_values.items():
            query = query.where(field, "==", value)

        snapshots = list(query.stream())
        if not snapshots:
            return None
        return [doc.to_dict() for doc in snapshots]

    def batch_set(
        self,
        collection: str,
        documents: Iterable[Tuple[str, Dict[str, Any]]],
        batch_size: int = 500,
        label: str = "documents"
    ) -> Dict[str, int]:
        """
        Upload (doc_id, data) pairs in chunks of batch_size.

        A failed commit is logged and counted, the remaining chunks still run.

        Returns:
            {"batches": committed batches, "uploaded": documents written, "failed": documents lost}
        """
        stats = {"batches": 0, "uploaded": 0, "failed": 0}
        collection_ref = self.db.collection(collection)

        chunk: List[Tuple[str, Dict[str, Any]]] = []
        for item in documents:
            chunk.append(item)
            if len(chunk) == batch_size:
                self._commit_chunk(collection_ref, chunk, stats, label)
                chunk = []

        if chunk:
            self._commit_chunk(collection_ref, chunk, stats, label)

        return stats

    def _commit_chunk(self, collection_ref, chunk, stats: Dict[str, int], label: str) -> None:
        batch = self.db.batch()
        for doc_id, data in chunk:
            batch.set(collection_ref.document(doc_id), data)

        try:
            batch.commit()
        except Exception as e:
            stats["failed"] += len(chunk)
            logger.error(f"❌ Error uploading batch {stats['batches'] + 1}: {e}")
            return

        stats["batches"] += 1
        stats["uploaded"] += len(chunk)
        logger.info(f"✅ Batch {stats['batches']} committed. Total {label} uploaded: {stats['uploaded']}")


# Shared instance
firestore_service = FirestoreService()
