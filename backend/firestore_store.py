"""
Cloud Firestore backend for the document store.

Same interface as ``store.MemoryDocumentStore``; transactions run through
``firestore.transactional`` so contention retries are handled by the client
library.
"""

from __future__ import annotations

import json
import os
from typing import Callable, Optional, TypeVar

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as gcp_exceptions

from config import Settings
from errors import NotFoundError, TransactionConflictError
from logger import get_logger
from store import MAX_TRANSACTION_ATTEMPTS

logger = get_logger("QuizRush.firestore")

T = TypeVar("T")


def _resolve_cred(settings: Settings):
    if settings.firebase_credentials_json:
        return credentials.Certificate(json.loads(settings.firebase_credentials_json))
    path = settings.firebase_credentials_path
    if path:
        if os.path.exists(path):
            return credentials.Certificate(path)
        raise RuntimeError(f"Firebase credentials file not found: {path}")
    # Fall back to application default credentials (Cloud Run, emulator, gcloud auth)
    return None


def get_client(settings: Settings):
    if not firebase_admin._apps:
        cred = _resolve_cred(settings)
        if cred is None:
            firebase_admin.initialize_app()
        else:
            firebase_admin.initialize_app(cred)
    return firestore.client()


class FirestoreTransaction:
    def __init__(self, client, transaction):
        self._client = client
        self._transaction = transaction

    def get(self, path: str) -> Optional[dict]:
        snap = self._client.document(path).get(transaction=self._transaction)
        return snap.to_dict() if snap.exists else None

    def set(self, path: str, data: dict, merge: bool = False) -> None:
        self._transaction.set(self._client.document(path), data, merge=merge)

    def update(self, path: str, fields: dict) -> None:
        self._transaction.update(self._client.document(path), fields)

    def delete(self, path: str) -> None:
        self._transaction.delete(self._client.document(path))


class FirestoreDocumentStore:
    def __init__(self, client):
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "FirestoreDocumentStore":
        return cls(get_client(settings))

    def get(self, path: str) -> Optional[dict]:
        snap = self._client.document(path).get()
        return snap.to_dict() if snap.exists else None

    def set(self, path: str, data: dict, merge: bool = False) -> None:
        self._client.document(path).set(data, merge=merge)

    def update(self, path: str, fields: dict) -> None:
        try:
            self._client.document(path).update(fields)
        except gcp_exceptions.NotFound as e:
            raise NotFoundError(f"No document to update: {path}") from e

    def delete(self, path: str) -> None:
        self._client.document(path).delete()

    def delete_tree(self, path: str) -> int:
        ref = self._client.document(path)
        removed = 0
        for collection in ref.collections():
            removed += self._client.recursive_delete(collection)
        ref.delete()
        return removed + 1

    def list(self, collection: str) -> list[tuple[str, dict]]:
        return [(doc.id, doc.to_dict() or {}) for doc in self._client.collection(collection).stream()]

    def count(self, collection: str, where: Optional[tuple] = None) -> int:
        """Server-side count aggregation; no documents are transferred."""
        query = self._client.collection(collection)
        if where is not None:
            query = query.where(filter=firestore.FieldFilter(*where))
        results = query.count(alias="total").get()
        return int(results[0][0].value)

    def run_transaction(
        self,
        fn: Callable[[FirestoreTransaction], T],
        max_attempts: int = MAX_TRANSACTION_ATTEMPTS,
    ) -> T:
        client = self._client

        @firestore.transactional
        def _run(transaction):
            return fn(FirestoreTransaction(client, transaction))

        try:
            return _run(client.transaction(max_attempts=max_attempts))
        except ValueError as e:
            # The client library signals exhausted retries with a ValueError
            if "Failed to commit transaction" not in str(e):
                raise
            logger.warning(f"⚠️ Firestore transaction gave up: {e}")
            raise TransactionConflictError(str(e)) from e
        except gcp_exceptions.NotFound as e:
            raise NotFoundError(str(e)) from e
