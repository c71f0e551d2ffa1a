"""
Database Helpers

Firestore is the system of record. Every process also keeps a local cache of
the documents it has read or written, and all writes land in that cache
first. A failed remote write is logged and the cached copy keeps answering
reads, so the service degrades to local storage instead of failing requests.

Documents are plain dicts keyed by collection name and document id.
"""

import copy
import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import BaseModel

import settings

logger = logging.getLogger(__name__)

# Firestore rejects batches over 500 writes
BATCH_LIMIT = 450

Where = Optional[Tuple[str, Any]]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _matches(doc: dict, where: Where) -> bool:
    if where is None:
        return True
    field, value = where
    return doc.get(field) == value


def _snapshot_to_dict(snapshot) -> dict:
    return {"id": snapshot.id, **(snapshot.to_dict() or {})}


class LocalCache:
    """In-process document cache, optionally mirrored to a JSON file."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self._lock = threading.RLock()
        self._data: Dict[str, Dict[str, dict]] = {}
        self._load()

    def _load(self):
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable local cache %s: %s", self.path, e)
            return
        if isinstance(raw, dict):
            self._data = {name: dict(docs) for name, docs in raw.items() if isinstance(docs, dict)}

    def _flush(self):
        if self.path is None:
            return
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, default=str)
        except OSError as e:
            logger.warning("Could not persist local cache to %s: %s", self.path, e)

    def collections(self) -> List[str]:
        with self._lock:
            return list(self._data)

    def find(self, collection: str, where: Where = None) -> List[dict]:
        with self._lock:
            docs = self._data.get(collection, {}).values()
            return [copy.deepcopy(d) for d in docs if _matches(d, where)]

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._data.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def put(self, collection: str, doc_id: str, data: dict, merge: bool = True) -> dict:
        with self._lock:
            docs = self._data.setdefault(collection, {})
            base = docs.get(doc_id, {}) if merge else {}
            doc = {**base, **copy.deepcopy(data)}
            doc.setdefault("id", doc_id)
            docs[doc_id] = doc
            self._flush()
            return copy.deepcopy(doc)

    def replace(self, collection: str, docs: Iterable[dict], where: Where = None):
        """Swap the cached slice selected by ``where`` for ``docs``."""
        with self._lock:
            current = self._data.get(collection, {})
            kept = {k: v for k, v in current.items() if not _matches(v, where)}
            for doc in docs:
                kept[str(doc["id"])] = copy.deepcopy(doc)
            self._data[collection] = kept
            self._flush()

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            existed = self._data.get(collection, {}).pop(doc_id, None) is not None
            if existed:
                self._flush()
            return existed

    def delete_where(self, collection: str, field: str, value: Any) -> int:
        with self._lock:
            docs = self._data.get(collection, {})
            doomed = [k for k, v in docs.items() if v.get(field) == value]
            for k in doomed:
                del docs[k]
            if doomed:
                self._flush()
            return len(doomed)


class DocumentStore:
    """Local-first document access over an optional Firestore client."""

    def __init__(self, remote=None, cache: Optional[LocalCache] = None):
        self.remote = remote
        self.cache = cache if cache is not None else LocalCache()

    def _ref(self, collection: str, doc_id: str):
        return self.remote.collection(collection).document(doc_id)

    def list(self, collection: str, where: Where = None) -> List[dict]:
        if self.remote is None:
            return self.cache.find(collection, where)
        try:
            query = self.remote.collection(collection)
            if where is not None:
                query = query.where(filter=FieldFilter(where[0], "==", where[1]))
            docs = [_snapshot_to_dict(s) for s in query.stream()]
        except Exception as e:
            logger.error("Reading %s failed; using local cache: %s", collection, e)
            return self.cache.find(collection, where)
        self.cache.replace(collection, docs, where)
        return docs

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        if self.remote is None:
            return self.cache.get(collection, doc_id)
        try:
            snapshot = self._ref(collection, doc_id).get()
        except Exception as e:
            logger.error("Reading %s/%s failed; using local cache: %s", collection, doc_id, e)
            return self.cache.get(collection, doc_id)
        if not snapshot.exists:
            # a write that never reached Firestore is still ours for this process
            return self.cache.get(collection, doc_id)
        doc = _snapshot_to_dict(snapshot)
        self.cache.put(collection, doc_id, doc, merge=False)
        return doc

    def put(self, collection: str, doc_id: str, data: Any, merge: bool = True) -> dict:
        if isinstance(data, BaseModel):
            data = data.model_dump(by_alias=True)
        doc = self.cache.put(collection, doc_id, data, merge=merge)
        if self.remote is not None:
            try:
                self._ref(collection, doc_id).set(data, merge=merge)
            except Exception as e:
                logger.warning("Remote write %s/%s failed; kept local: %s", collection, doc_id, e)
        return doc

    def patch(self, collection: str, doc_id: str, patch: dict) -> dict:
        doc = self.cache.put(collection, doc_id, patch, merge=True)
        if self.remote is None:
            return doc
        try:
            self._ref(collection, doc_id).update(patch)
        except Exception as e:
            # update() refuses missing documents; a merge set creates them
            logger.warning("Remote update %s/%s failed; retrying as merge: %s", collection, doc_id, e)
            try:
                self._ref(collection, doc_id).set(patch, merge=True)
            except Exception as e2:
                logger.warning("Remote merge %s/%s failed; kept local: %s", collection, doc_id, e2)
        return doc

    def delete(self, collection: str, doc_id: str) -> bool:
        existed = self.cache.delete(collection, doc_id)
        if self.remote is not None:
            try:
                self._ref(collection, doc_id).delete()
            except Exception as e:
                logger.warning("Remote delete %s/%s failed: %s", collection, doc_id, e)
        return existed

    def delete_where(self, collection: str, field: str, value: Any) -> int:
        deleted = self.cache.delete_where(collection, field, value)
        if self.remote is None:
            return deleted
        try:
            query = self.remote.collection(collection).where(filter=FieldFilter(field, "==", value))
            remote_deleted = 0
            batch = self.remote.batch()
            ops = 0
            for snapshot in query.stream():
                batch.delete(snapshot.reference)
                ops += 1
                remote_deleted += 1
                if ops >= BATCH_LIMIT:
                    batch.commit()
                    batch = self.remote.batch()
                    ops = 0
            if ops:
                batch.commit()
        except Exception as e:
            logger.warning("Remote delete of %s where %s == %r failed: %s", collection, field, value, e)
            return deleted
        return max(deleted, remote_deleted)

    def sync_to_remote(self) -> Dict[str, int]:
        """Push every cached document to Firestore."""
        result = {"written": 0, "failed": 0}
        if self.remote is None:
            return result
        for collection in self.cache.collections():
            for doc in self.cache.find(collection):
                try:
                    self._ref(collection, str(doc["id"])).set(doc, merge=True)
                    result["written"] += 1
                except Exception as e:
                    logger.warning("Sync of %s/%s failed: %s", collection, doc.get("id"), e)
                    result["failed"] += 1
        logger.info("Synced local cache to Firestore: %s", result)
        return result

    def remote_collections(self) -> List[str]:
        if self.remote is None:
            return []
        return [c.id for c in self.remote.collections()]


def connect() -> Optional[firestore.Client]:
    project = settings.firebase_project_id()
    if not project and not os.getenv("GOOGLE_APPLICATION_CREDENTIALS"):
        logger.info("Firestore not configured; serving from the local cache only")
        return None
    try:
        return firestore.Client(project=project or None)
    except Exception as e:
        logger.warning("Firestore unavailable, serving from the local cache only: %s", e)
        return None


db = connect()
store = DocumentStore(remote=db, cache=LocalCache(settings.LOCAL_CACHE_PATH))


def get_store() -> DocumentStore:
    return store
