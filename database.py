"""
Database

Account documents are keyed by their derived address (`_id`), so an insert
is an exclusive create: a second insert at the same address fails. MongoDB
is used when DATABASE_URL and DATABASE_NAME are set, otherwise everything
lives in process memory.
"""

import threading
from copy import deepcopy
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from pymongo import MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError

from config import settings
from errors import AlreadyExists, Conflict, NotFound
from schemas import Nonce

_client = None
db = None

if settings.DATABASE_URL and settings.DATABASE_NAME:
    _client = MongoClient(settings.DATABASE_URL)
    db = _client[settings.DATABASE_NAME]

ENTITY_COLLECTION = "entity"
NONCE_COLLECTION = "nonce"


def _now():
    return datetime.now(timezone.utc)


def _stamp(doc: dict, created: bool) -> dict:
    data = dict(doc)
    now = _now()
    if created:
        data["created_at"] = now
    data["updated_at"] = now
    return data


class MemoryBackend:
    name = "memory"

    def __init__(self):
        self._entities = {}
        # Only the latest unused nonce per identity is kept
        self._nonces = {}
        self._lock = threading.RLock()

    def get(self, address: str) -> Optional[dict]:
        with self._lock:
            doc = self._entities.get(address)
            return deepcopy(doc) if doc is not None else None

    def insert(self, doc: dict):
        with self._lock:
            if doc["_id"] in self._entities:
                raise AlreadyExists(f"Account {doc['_id']} already in use")
            self._entities[doc["_id"]] = deepcopy(_stamp(doc, created=True))

    def replace(self, address: str, doc: dict, expected_version: Optional[int] = None):
        with self._lock:
            current = self._entities.get(address)
            if current is None:
                raise NotFound(f"Account {address} does not exist")
            if expected_version is not None and current.get("version", 0) != expected_version:
                raise Conflict(f"Account {address} was modified concurrently")
            self._entities[address] = deepcopy(_stamp(doc, created=False))

    @contextmanager
    def atomic(self):
        with self._lock:
            # Stored documents are replaced wholesale, never edited in place
            snapshot = dict(self._entities)
            try:
                yield
            except Exception:
                self._entities = snapshot
                raise

    def issue_nonce(self, identity: str, nonce: str):
        with self._lock:
            self._nonces[identity] = _stamp(Nonce(address=identity, nonce=nonce).model_dump(), created=True)

    def consume_nonce(self, identity: str, nonce: str) -> bool:
        with self._lock:
            record = self._nonces.get(identity)
            if record is None or record["nonce"] != nonce:
                return False
            del self._nonces[identity]
            return True

    def describe(self) -> dict:
        with self._lock:
            return {"backend": self.name, "accounts": len(self._entities)}


class MongoBackend:
    name = "mongodb"

    def __init__(self, database, transactions: bool = True):
        self.db = database
        self.entities = database[ENTITY_COLLECTION]
        self.nonces = database[NONCE_COLLECTION]
        self.transactions = transactions
        self._local = threading.local()

    @property
    def _session(self):
        return getattr(self._local, "session", None)

    def get(self, address: str) -> Optional[dict]:
        return self.entities.find_one({"_id": address}, session=self._session)

    def insert(self, doc: dict):
        try:
            self.entities.insert_one(_stamp(doc, created=True), session=self._session)
        except DuplicateKeyError:
            raise AlreadyExists(f"Account {doc['_id']} already in use")

    def replace(self, address: str, doc: dict, expected_version: Optional[int] = None):
        query = {"_id": address}
        if expected_version is not None:
            # Documents written before versioning have no field, which counts as 0
            query["version"] = {"$in": [0, None]} if expected_version == 0 else expected_version
        result = self.entities.replace_one(query, _stamp(doc, created=False), session=self._session)
        if result.matched_count == 0:
            if expected_version is not None and self.get(address) is not None:
                raise Conflict(f"Account {address} was modified concurrently")
            raise NotFound(f"Account {address} does not exist")

    @contextmanager
    def atomic(self):
        if not self.transactions or self._session is not None:
            yield
            return
        with self.db.client.start_session() as session:
            with session.start_transaction():
                self._local.session = session
                try:
                    yield
                finally:
                    self._local.session = None

    def issue_nonce(self, identity: str, nonce: str):
        # Mark previous nonces as used for this address
        self.nonces.update_many(
            {"address": identity, "used": False},
            {"$set": {"used": True, "updated_at": _now()}},
        )
        self.nonces.insert_one(_stamp(Nonce(address=identity, nonce=nonce).model_dump(), created=True))

    def consume_nonce(self, identity: str, nonce: str) -> bool:
        doc = self.nonces.find_one_and_update(
            {"address": identity, "nonce": nonce, "used": False},
            {"$set": {"used": True, "updated_at": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        return doc is not None

    def describe(self) -> dict:
        info = {"backend": self.name, "database_name": self.db.name}
        try:
            info["accounts"] = self.entities.estimated_document_count()
        except Exception as e:
            info["error"] = str(e)[:60]
        return info


def get_backend():
    if db is not None:
        return MongoBackend(db, transactions=settings.MONGO_TRANSACTIONS)
    return MemoryBackend()
