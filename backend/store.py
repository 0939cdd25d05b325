"""
Document store used by the game engine.

Documents live at slash-separated paths (``games/{id}/players/{pid}``) and
are plain dicts. ``MemoryDocumentStore`` keeps everything in process and
gives transactions optimistic concurrency: every read inside a transaction
records the document's version, and the commit is rejected (and the
transaction function re-run) when any of those versions moved. The
Firestore backend in ``firestore_store`` offers the same interface.
"""

from __future__ import annotations

import copy
import hashlib
import operator
import threading
from typing import Any, Callable, Optional, TypeVar

from config import Settings
from errors import NotFoundError, TransactionConflictError
from logger import get_logger

logger = get_logger("QuizRush.store")

T = TypeVar("T")

MAX_TRANSACTION_ATTEMPTS = 5

_COMPARISONS = {
    "==": operator.eq,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


# --- Paths ---

def quiz_path(quiz_id: str) -> str:
    return f"quizzes/{quiz_id}"


def game_path(game_id: str) -> str:
    return f"games/{game_id}"


def players_collection(game_id: str) -> str:
    return f"games/{game_id}/players"


def player_path(game_id: str, player_id: str) -> str:
    return f"games/{game_id}/players/{player_id}"


def leaderboard_path(game_id: str) -> str:
    return f"games/{game_id}/aggregates/leaderboard"


def analytics_path(game_id: str) -> str:
    return f"games/{game_id}/aggregates/analytics"


def answer_key_path(game_id: str) -> str:
    return f"games/{game_id}/private/answerKey"


def host_path(game_id: str) -> str:
    return f"games/{game_id}/private/host"


def pin_path(game_pin: str) -> str:
    return f"pins/{game_pin}"


def name_claim_path(game_id: str, name: str) -> str:
    """One document per case-insensitive nickname; names may hold any character."""
    digest = hashlib.sha1(name.lower().encode("utf-8")).hexdigest()
    return f"games/{game_id}/names/{digest}"


def _check_document_path(path: str) -> None:
    parts = path.split("/")
    if len(parts) % 2 or not all(parts):
        raise ValueError(f"Not a document path: {path!r}")


def _check_collection_path(path: str) -> None:
    parts = path.split("/")
    if len(parts) % 2 == 0 or not all(parts):
        raise ValueError(f"Not a collection path: {path!r}")


class _CommitConflict(Exception):
    """A document read by the transaction changed before commit."""


class MemoryTransaction:
    """Buffers writes; reads must come before the first write (as in Firestore)."""

    def __init__(self, store: "MemoryDocumentStore"):
        self._store = store
        self._reads: dict[str, int] = {}
        self._writes: list[tuple[str, str, Optional[dict]]] = []

    def get(self, path: str) -> Optional[dict]:
        if self._writes:
            raise RuntimeError("Transaction reads must happen before writes")
        version, data = self._store._snapshot(path)
        self._reads.setdefault(path, version)
        return data

    def set(self, path: str, data: dict, merge: bool = False) -> None:
        _check_document_path(path)
        self._writes.append(("merge" if merge else "set", path, copy.deepcopy(data)))

    def update(self, path: str, fields: dict) -> None:
        _check_document_path(path)
        self._writes.append(("update", path, copy.deepcopy(fields)))

    def delete(self, path: str) -> None:
        _check_document_path(path)
        self._writes.append(("delete", path, None))

    def _commit(self) -> None:
        with self._store._lock:
            for path, version in self._reads.items():
                if self._store._version_of(path) != version:
                    raise _CommitConflict(path)
            # Validate before applying anything so a failed commit writes nothing
            pending = set(self._store._docs)
            for op, path, _ in self._writes:
                if op == "update" and path not in pending:
                    raise NotFoundError(f"No document to update: {path}")
                if op == "delete":
                    pending.discard(path)
                else:
                    pending.add(path)
            for op, path, data in self._writes:
                self._store._apply(op, path, data)


class MemoryDocumentStore:
    """Thread-safe in-process document store."""

    def __init__(self):
        self._docs: dict[str, tuple[int, dict]] = {}
        self._lock = threading.RLock()
        self._clock = 0

    # --- internals (caller holds the lock or only reads) ---

    def _next_version(self) -> int:
        self._clock += 1
        return self._clock

    def _version_of(self, path: str) -> int:
        entry = self._docs.get(path)
        return entry[0] if entry else 0

    def _snapshot(self, path: str) -> tuple[int, Optional[dict]]:
        _check_document_path(path)
        with self._lock:
            entry = self._docs.get(path)
            if entry is None:
                return 0, None
            return entry[0], copy.deepcopy(entry[1])

    def _apply(self, op: str, path: str, data: Optional[dict]) -> None:
        if op == "delete":
            self._docs.pop(path, None)
            return
        if op == "set":
            merged = data
        else:
            entry = self._docs.get(path)
            if entry is None and op == "update":
                raise NotFoundError(f"No document to update: {path}")
            merged = dict(entry[1]) if entry else {}
            merged.update(data)
        self._docs[path] = (self._next_version(), merged)

    # --- public API ---

    def get(self, path: str) -> Optional[dict]:
        return self._snapshot(path)[1]

    def set(self, path: str, data: dict, merge: bool = False) -> None:
        _check_document_path(path)
        with self._lock:
            self._apply("merge" if merge else "set", path, copy.deepcopy(data))

    def update(self, path: str, fields: dict) -> None:
        """Merge ``fields`` into an existing document. Raises NotFoundError if absent."""
        _check_document_path(path)
        with self._lock:
            self._apply("update", path, copy.deepcopy(fields))

    def delete(self, path: str) -> None:
        _check_document_path(path)
        with self._lock:
            self._apply("delete", path, None)

    def delete_tree(self, path: str) -> int:
        """Delete a document and everything nested under it. Returns the number removed."""
        _check_document_path(path)
        prefix = path + "/"
        with self._lock:
            doomed = [p for p in self._docs if p == path or p.startswith(prefix)]
            for p in doomed:
                del self._docs[p]
        return len(doomed)

    def list(self, collection: str) -> list[tuple[str, dict]]:
        """Direct child documents of a collection as ``(doc_id, data)`` pairs."""
        _check_collection_path(collection)
        prefix = collection + "/"
        with self._lock:
            return [
                (p[len(prefix):], copy.deepcopy(data))
                for p, (_, data) in self._docs.items()
                if p.startswith(prefix) and "/" not in p[len(prefix):]
            ]

    def count(self, collection: str, where: Optional[tuple[str, str, Any]] = None) -> int:
        """Number of direct children, optionally filtered by ``(field, op, value)``."""
        _check_collection_path(collection)
        prefix = collection + "/"
        if where is not None:
            field, op, value = where
            compare = _COMPARISONS[op]
        n = 0
        with self._lock:
            for p, (_, data) in self._docs.items():
                if not p.startswith(prefix) or "/" in p[len(prefix):]:
                    continue
                if where is not None and (field not in data or not compare(data[field], value)):
                    continue
                n += 1
        return n

    def run_transaction(
        self,
        fn: Callable[[MemoryTransaction], T],
        max_attempts: int = MAX_TRANSACTION_ATTEMPTS,
    ) -> T:
        """Run ``fn`` in a transaction, re-running it on commit conflicts.

        Errors raised by ``fn`` abort the transaction without writing and
        propagate unchanged.
        """
        for attempt in range(1, max_attempts + 1):
            txn = MemoryTransaction(self)
            result = fn(txn)
            try:
                txn._commit()
                return result
            except _CommitConflict as conflict:
                logger.debug(f"🔁 Transaction conflict on {conflict} (attempt {attempt}/{max_attempts})")
        raise TransactionConflictError(
            f"Transaction failed after {max_attempts} attempts due to contention"
        )


def create_store(settings: Settings) -> Any:
    if settings.store_backend == "firestore":
        from firestore_store import FirestoreDocumentStore

        logger.info("🔥 Using Firestore document store")
        return FirestoreDocumentStore.from_settings(settings)
    logger.info("🧠 Using in-memory document store")
    return MemoryDocumentStore()
