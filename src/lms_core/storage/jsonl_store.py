from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable

from lms_core.storage.document_store import Document, DocumentStore


class JsonlDocumentStore(DocumentStore):
    """One ``<collection>.jsonl`` file per collection, rewritten on every commit."""

    def __init__(self, base_dir: Path, max_attempts: int = 5):
        """Ensure the backing directory exists before loading existing collections."""
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        super().__init__(max_attempts=max_attempts)

    def collection_path(self, collection: str) -> Path:
        return self.base_dir / f"{collection}.jsonl"

    def _load_all(self) -> Dict[str, Dict[str, Document]]:
        """Read every collection file into memory."""
        collections: Dict[str, Dict[str, Document]] = {}
        for path in sorted(self.base_dir.glob("*.jsonl")):
            documents: Dict[str, Document] = {}
            with path.open("r", encoding="utf-8") as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    record = json.loads(line)
                    documents[record["id"]] = record["data"]
            collections[path.stem] = documents
        return collections

    def _persist(self, collections: Iterable[str]) -> None:
        """Rewrite the touched collection files, one document per line.

        Every file is written to a temporary sibling first and only swapped in
        once all of them were written, so a failed write leaves the old files.
        """
        staged = []
        try:
            for collection in collections:
                path = self.collection_path(collection)
                tmp_path = path.with_suffix(".jsonl.tmp")
                staged.append((tmp_path, path))
                with tmp_path.open("w", encoding="utf-8") as handle:
                    for doc_id, data in self._documents.get(collection, {}).items():
                        handle.write(json.dumps({"id": doc_id, "data": data}, default=str))
                        handle.write("\n")
        except Exception:
            for tmp_path, _ in staged:
                tmp_path.unlink(missing_ok=True)
            raise
        for tmp_path, path in staged:
            tmp_path.replace(path)
