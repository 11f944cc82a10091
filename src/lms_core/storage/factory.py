from __future__ import annotations

import logging

from lms_core.config.schema import StorageConfig
from lms_core.storage.document_store import DocumentStore, MemoryDocumentStore
from lms_core.storage.jsonl_store import JsonlDocumentStore

logger = logging.getLogger(__name__)


def create_document_store(config: StorageConfig) -> DocumentStore:
    """
    Instantiate the document store named by ``config.backend``.

    Parameters
    ----------
    config : StorageConfig
        ``backend`` selects "memory" or "jsonl"; ``data_dir`` is only used by
        the JSONL backend; ``transaction_max_attempts`` bounds transaction retries.

    Raises
    ------
    ValueError
        If the backend name is unknown.
    """
    if config.backend == "memory":
        return MemoryDocumentStore(max_attempts=config.transaction_max_attempts)
    if config.backend == "jsonl":
        logger.info("Using JSONL document store at %s", config.data_dir)
        return JsonlDocumentStore(config.data_dir, max_attempts=config.transaction_max_attempts)
    logger.error("Unknown document store backend: %s", config.backend)
    raise ValueError(
        f"Unknown document store backend: {config.backend}. Supported: 'memory', 'jsonl'"
    )
