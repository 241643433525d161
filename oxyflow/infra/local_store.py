"""
In-process node store with optional JSON-file persistence.

Implements the query subset the runtime uses: ``term``, ``terms``,
``bool`` (``must``/``should``/``must_not``) and ``match_all``, plus
``sort`` and ``size``.
"""

import asyncio
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.exceptions import PersistenceError

logger = logging.getLogger(__name__)

Document = Dict[str, Any]


class LocalStore:
    """
    Dictionary-backed document store.

    Attributes:
        data_dir: When set, every collection is mirrored to ``<collection>.json``
    """

    def __init__(self, data_dir: Optional[Union[str, Path]] = None):
        self.data_dir = Path(data_dir) if data_dir else None
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

        if self.data_dir:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self._load_all()

    def _lock(self, collection: str) -> asyncio.Lock:
        lock = self._locks.get(collection)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[collection] = lock
        return lock

    def _path(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    def _load_all(self) -> None:
        for path in self.data_dir.glob("*.json"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    self._collections[path.stem] = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Skipping unreadable collection file {path}: {e}")

    def _write(self, collection: str, data: Dict[str, Document]) -> None:
        path = self._path(collection)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, default=str)
        os.replace(tmp_path, path)

    async def _persist(self, collection: str) -> None:
        if not self.data_dir:
            return
        snapshot = copy.deepcopy(self._collections.get(collection, {}))
        try:
            await asyncio.to_thread(self._write, collection, snapshot)
        except OSError as e:
            raise PersistenceError(f"Failed to persist collection {collection}: {e}")

    async def index(self, collection: str, doc_id: str, body: Document) -> Dict[str, Any]:
        async with self._lock(collection):
            self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(body)
            await self._persist(collection)
        return {"_id": doc_id, "result": "created"}

    async def update(self, collection: str, doc_id: str, body: Document) -> Dict[str, Any]:
        async with self._lock(collection):
            docs = self._collections.setdefault(collection, {})
            docs.setdefault(doc_id, {}).update(copy.deepcopy(body))
            await self._persist(collection)
        return {"_id": doc_id, "result": "updated"}

    async def exists(self, collection: str, doc_id: str) -> bool:
        return doc_id in self._collections.get(collection, {})

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def search(self, collection: str, body: Dict[str, Any]) -> Dict[str, Any]:
        docs = [
            {"_id": doc_id, "_source": copy.deepcopy(source)}
            for doc_id, source in self._collections.get(collection, {}).items()
        ]
        query = body.get("query") or {}
        docs = [doc for doc in docs if _matches(doc, query)]
        docs = _sort(docs, body.get("sort") or [])
        size = body.get("size", 10)
        return {"hits": {"hits": docs[:size]}}

    async def close(self) -> None:
        logger.debug("LocalStore closed")


def _field_value(doc: Document, key: str) -> Any:
    if key == "_id":
        return doc["_id"]
    return doc["_source"].get(key)


def _matches(doc: Document, query: Dict[str, Any]) -> bool:
    if not query or "match_all" in query:
        return True

    if "term" in query:
        ((key, value),) = query["term"].items()
        if isinstance(value, dict):
            value = value.get("value")
        return _field_value(doc, key) == value

    if "terms" in query:
        ((key, values),) = query["terms"].items()
        return _field_value(doc, key) in values

    if "bool" in query:
        bool_query = query["bool"]
        if not all(_matches(doc, q) for q in bool_query.get("must", [])):
            return False
        should = bool_query.get("should", [])
        if should and not any(_matches(doc, q) for q in should):
            return False
        if any(_matches(doc, q) for q in bool_query.get("must_not", [])):
            return False
        return True

    logger.warning(f"Unsupported query clause: {list(query)}")
    return False


def _sort(docs: List[Document], sort_spec: List[Any]) -> List[Document]:
    # Stable sorts applied last-to-first so the first field has priority
    for spec in reversed(sort_spec):
        if isinstance(spec, str):
            spec = {spec: {"order": "asc"}}
        for key, order in spec.items():
            if isinstance(order, dict):
                order = order.get("order", "asc")
            reverse = str(order).lower() == "desc"
            present = [d for d in docs if _field_value(d, key) is not None]
            missing = [d for d in docs if _field_value(d, key) is None]
            present.sort(key=lambda d: _field_value(d, key), reverse=reverse)
            docs = present + missing
    return docs
