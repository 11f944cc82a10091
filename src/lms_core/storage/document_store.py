"""Document store abstraction with read-then-write transactions.

Documents are plain JSON-compatible dicts keyed by ``(collection, doc_id)``.
Each document carries a version counter; a transaction records the version
of everything it reads and, at commit time, refuses to apply its writes if
any of those versions moved. The body is then re-run, up to
``max_attempts`` times, mirroring how hosted document databases retry
conflicting transactions.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, TypeVar

from lms_core.errors import TransactionConflict, TransactionOrderError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Key = Tuple[str, str]
Document = Dict[str, Any]

_DELETE = object()


class _Conflict(Exception):
    pass


def _sort_key(value: Any) -> Tuple[int, Any]:
    # missing values sort first, numbers and strings each among themselves
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    return (2, str(value))


def _merge(base: Mapping[str, Any], update: Mapping[str, Any]) -> Document:
    result = dict(base)
    for key, value in update.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


class TransactionReader:
    """Read side of a transaction. Reads must all happen before the first write."""

    def __init__(self, transaction: "Transaction"):
        self._transaction = transaction

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return self._transaction.get(collection, doc_id)


class TransactionWriter:
    """Write side of a transaction. Writes are staged and applied on commit."""

    def __init__(self, transaction: "Transaction"):
        self._transaction = transaction

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any], merge: bool = False) -> None:
        self._transaction.stage(collection, doc_id, dict(data), merge)

    def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        self._transaction.stage(collection, doc_id, dict(data), True)

    def delete(self, collection: str, doc_id: str) -> None:
        self._transaction.stage(collection, doc_id, _DELETE, False)


class Transaction:
    def __init__(self, store: "DocumentStore"):
        self.store = store
        self.read_versions: Dict[Key, int] = {}
        self.writes: List[Tuple[Key, Any, bool]] = []

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        if self.writes:
            raise TransactionOrderError(
                f"read of {collection}/{doc_id} after a write; transactions must read first"
            )
        version, data = self.store._snapshot(collection, doc_id)
        # the first read of a document is the one its result depends on
        self.read_versions.setdefault((collection, doc_id), version)
        return data

    def stage(self, collection: str, doc_id: str, data: Any, merge: bool) -> None:
        self.writes.append(((collection, doc_id), data, merge))


class DocumentStore(ABC):
    """
    Keyed document storage exposing get, set/merge, equality queries and
    atomic read-then-write transactions.

    Subclasses provide the raw versioned storage (`_load_all`, `_persist`);
    this base class implements locking, versioning and the retry loop.
    """

    def __init__(self, max_attempts: int = 5):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self._lock = threading.RLock()
        self._documents: Dict[str, Dict[str, Document]] = self._load_all()
        self._versions: Dict[Key, int] = {
            (collection, doc_id): 1
            for collection, documents in self._documents.items()
            for doc_id in documents
        }

    @abstractmethod
    def _load_all(self) -> Dict[str, Dict[str, Document]]:
        """Return the initial ``{collection: {doc_id: data}}`` mapping."""

    @abstractmethod
    def _persist(self, collections: Iterable[str]) -> None:
        """Flush the named collections after a successful write."""

    def _snapshot(self, collection: str, doc_id: str) -> Tuple[int, Optional[Document]]:
        with self._lock:
            version = self._versions.get((collection, doc_id), 0)
            data = self._documents.get(collection, {}).get(doc_id)
            return version, copy.deepcopy(data) if data is not None else None

    def _apply(self, writes: List[Tuple[Key, Any, bool]]) -> None:
        """Apply ``writes`` and persist them; if persisting fails nothing stays applied."""
        touched = sorted({collection for (collection, _), _, _ in writes})
        if not touched:
            return
        saved_documents = {
            collection: dict(self._documents[collection]) if collection in self._documents else None
            for collection in touched
        }
        saved_versions = {key: self._versions.get(key) for key, _, _ in writes}
        for (collection, doc_id), data, merge in writes:
            documents = self._documents.setdefault(collection, {})
            current = documents.get(doc_id)
            if data is _DELETE:
                documents.pop(doc_id, None)
            else:
                new_data = _merge(current, data) if merge and current is not None else data
                documents[doc_id] = copy.deepcopy(new_data)
            # versions survive deletes so a re-created document still looks changed
            self._versions[(collection, doc_id)] = self._versions.get((collection, doc_id), 0) + 1
        try:
            self._persist(touched)
        except Exception:
            for collection, documents in saved_documents.items():
                if documents is None:
                    self._documents.pop(collection, None)
                else:
                    self._documents[collection] = documents
            for key, version in saved_versions.items():
                if version is None:
                    self._versions.pop(key, None)
                else:
                    self._versions[key] = version
            raise

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return self._snapshot(collection, doc_id)[1]

    def exists(self, collection: str, doc_id: str) -> bool:
        return self.get(collection, doc_id) is not None

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any], merge: bool = False) -> None:
        with self._lock:
            self._apply([((collection, doc_id), dict(data), merge)])

    def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        """Merge ``data`` into an existing document; raises KeyError when it is missing."""
        with self._lock:
            if doc_id not in self._documents.get(collection, {}):
                raise KeyError(f"{collection}/{doc_id}")
            self._apply([((collection, doc_id), dict(data), True)])

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self._apply([((collection, doc_id), _DELETE, False)])

    def list(self, collection: str) -> List[Document]:
        return self.query(collection)

    def query(
        self,
        collection: str,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        """Documents whose fields equal every ``where`` value, each with its ``id``."""
        with self._lock:
            entries = list(self._documents.get(collection, {}).items())
            matches = [
                {**copy.deepcopy(data), "id": doc_id}
                for doc_id, data in entries
                if all(
                    (doc_id if field == "id" else data.get(field)) == value
                    for field, value in (where or {}).items()
                )
            ]
        if order_by:
            matches.sort(key=lambda doc: _sort_key(doc.get(order_by)), reverse=descending)
        if limit is not None:
            matches = matches[:limit]
        return matches

    def with_transaction(self, fn: Callable[[TransactionReader, TransactionWriter], T]) -> T:
        """
        Run ``fn(reader, writer)`` atomically.

        ``fn`` may be called several times when concurrent commits touch the
        documents it read, so it must not have side effects outside the
        writer. Exceptions raised by ``fn`` abort the transaction with nothing
        written.
        """
        for attempt in range(1, self.max_attempts + 1):
            transaction = Transaction(self)
            result = fn(TransactionReader(transaction), TransactionWriter(transaction))
            try:
                self._commit(transaction)
            except _Conflict:
                logger.info("Transaction conflict, retrying (%d/%d)", attempt, self.max_attempts)
                continue
            return result
        raise TransactionConflict(
            f"Transaction aborted after {self.max_attempts} conflicting attempts"
        )

    def _commit(self, transaction: Transaction) -> None:
        with self._lock:
            for (collection, doc_id), version in transaction.read_versions.items():
                if self._versions.get((collection, doc_id), 0) != version:
                    raise _Conflict()
            self._apply(transaction.writes)


class MemoryDocumentStore(DocumentStore):
    """Process-local store; contents vanish with the process."""

    def _load_all(self) -> Dict[str, Dict[str, Document]]:
        return {}

    def _persist(self, collections: Iterable[str]) -> None:
        return None
