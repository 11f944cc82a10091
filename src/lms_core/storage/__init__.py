from .document_store import DocumentStore, MemoryDocumentStore, TransactionReader, TransactionWriter
from .factory import create_document_store
from .jsonl_store import JsonlDocumentStore
from .normalize import normalize_user

__all__ = [
    "DocumentStore",
    "JsonlDocumentStore",
    "MemoryDocumentStore",
    "TransactionReader",
    "TransactionWriter",
    "create_document_store",
    "normalize_user",
]
