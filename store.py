"""
Entity store

Accounts are created once at their derived address, read and mutated in
place, and closed to reclaim their storage deposit. A closed address keeps
a tombstone so the same seeds can never be re-created.

Handlers never write to the backend directly. They work on a `Transaction`
that stages every change and commits all of it (or none of it) at the end.

Every document carries a `version`. A commit only replaces a document whose
version still matches the one the transaction read, so two workers sharing
a database cannot overwrite each other's updates.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Type

from pydantic import BaseModel

from errors import AlreadyExists, CapacityExceeded, InvalidAddress, NotFound
from schemas import ACCOUNT_TYPES

logger = logging.getLogger(__name__)

# Rent-exempt pricing: (overhead + space) bytes at a fixed per-byte rate
ACCOUNT_OVERHEAD = 128
LAMPORTS_PER_BYTE = 6960


def deposit_for(model: Type[BaseModel]) -> int:
    return (ACCOUNT_OVERHEAD + model.space) * LAMPORTS_PER_BYTE


def check_capacity(record: BaseModel):
    for field, bound in type(record).capacity.items():
        if len(getattr(record, field)) > bound:
            raise CapacityExceeded(f"{type(record).__name__}.{field} is limited to {bound} entries")


class EntityStore:
    def __init__(self, backend, ledger):
        self.backend = backend
        self.ledger = ledger

    def occupied(self, address: str) -> bool:
        """True if anything, including a tombstone, sits at the address."""
        return self.backend.get(address) is not None

    def exists(self, address: str, model: Type[BaseModel] = None) -> bool:
        doc = self.backend.get(address)
        if doc is None or doc.get("closed"):
            return False
        return model is None or doc["kind"] == model.kind.value

    def load(self, address: str, model: Type[BaseModel]) -> Tuple[BaseModel, int]:
        """Read a record together with the document version it came from."""
        doc = self.backend.get(address)
        if doc is None or doc.get("closed") or doc.get("kind") != model.kind.value:
            raise NotFound(f"{model.__name__} account {address} does not exist")
        return model.model_validate(doc["data"]), doc.get("version", 0)

    def read(self, address: str, model: Type[BaseModel]):
        return self.load(address, model)[0]

    def read_any(self, address: str) -> Optional[BaseModel]:
        doc = self.backend.get(address)
        if doc is None or doc.get("closed"):
            return None
        return ACCOUNT_TYPES[doc["kind"]].model_validate(doc["data"])

    def create(self, address: str, record: BaseModel, payer: str) -> int:
        tx = Transaction(self, [address])
        tx.create(address, record)
        return tx.commit(payer).deposits

    def mutate(self, address: str, model: Type[BaseModel], fn: Callable):
        tx = Transaction(self, [address])
        tx.mutate(address, model, fn)
        tx.commit(None)
        return tx.staged(address)

    def close(self, address: str, model: Type[BaseModel], recipient: str) -> int:
        tx = Transaction(self, [address])
        tx.close(address, model, recipient)
        return tx.commit(None).refunds

    def apply(self, tx: "Transaction", payer: Optional[str]) -> "Changes":
        """Write a transaction's staged changes, creates first."""
        changes = Changes()
        credits: List[Tuple[str, int]] = []
        with self.backend.atomic():
            for address in tx.creates:
                record = tx.staged(address)
                deposit = deposit_for(type(record))
                self.backend.insert({
                    "_id": address,
                    "kind": record.kind.value,
                    "data": record.model_dump(),
                    "deposit": deposit,
                    "payer": payer,
                    "closed": False,
                    "version": 0,
                })
                changes.created.append(address)
                changes.deposits += deposit
            for address in tx.updates:
                expected = tx.versions[address]
                doc = self.backend.get(address)
                doc["data"] = tx.staged(address).model_dump()
                doc["version"] = expected + 1
                self.backend.replace(address, doc, expected)
                changes.updated.append(address)
            for address, recipient in tx.closes.items():
                expected = tx.versions[address]
                doc = self.backend.get(address)
                credits.append((recipient, doc.get("deposit", 0)))
                self.backend.replace(address, {
                    "_id": address,
                    "kind": doc["kind"],
                    "data": None,
                    "deposit": 0,
                    "payer": doc.get("payer"),
                    "closed": True,
                    "version": expected + 1,
                }, expected)
                changes.closed.append(address)
        if changes.deposits:
            self.ledger.debit(payer, changes.deposits)
        for recipient, amount in credits:
            self.ledger.credit(recipient, amount)
            changes.refunds += amount
        return changes


class Changes:
    def __init__(self):
        self.created: List[str] = []
        self.updated: List[str] = []
        self.closed: List[str] = []
        self.deposits = 0
        self.refunds = 0


class Transaction:
    """
    Staged view of the store for one operation.

    Only addresses declared up front may be written. Reads fall through to
    the store and are cached, so a handler always sees its own writes.
    """

    def __init__(self, store: EntityStore, declared: Iterable[str]):
        self.store = store
        self.declared = set(declared)
        self._records: Dict[str, Optional[BaseModel]] = {}
        self.versions: Dict[str, int] = {}
        self.creates: List[str] = []
        self.updates: List[str] = []
        self.closes: Dict[str, str] = {}

    def _writable(self, address: str):
        if address not in self.declared:
            raise InvalidAddress(f"Account {address} was not declared by the transaction")

    def staged(self, address: str) -> Optional[BaseModel]:
        return self._records.get(address)

    def read(self, address: str, model: Type[BaseModel]):
        if address in self._records:
            record = self._records[address]
            if record is None or not isinstance(record, model):
                raise NotFound(f"{model.__name__} account {address} does not exist")
        else:
            record, self.versions[address] = self.store.load(address, model)
            self._records[address] = record
        return record.model_copy(deep=True)

    def exists(self, address: str, model: Type[BaseModel]) -> bool:
        try:
            self.read(address, model)
        except NotFound:
            return False
        return True

    def create(self, address: str, record: BaseModel):
        self._writable(address)
        if address in self._records or self.store.occupied(address):
            raise AlreadyExists(f"{type(record).__name__} account {address} already in use")
        check_capacity(record)
        self._records[address] = record.model_copy(deep=True)
        self.creates.append(address)

    def mutate(self, address: str, model: Type[BaseModel], fn: Callable):
        self._writable(address)
        record = self.read(address, model)
        result = fn(record)
        if result is not None:
            record = result
        check_capacity(record)
        self._records[address] = record
        if address not in self.creates and address not in self.updates:
            self.updates.append(address)
        return record

    def close(self, address: str, model: Type[BaseModel], recipient: str):
        self._writable(address)
        self.read(address, model)
        if address in self.creates:
            raise InvalidAddress(f"Account {address} cannot be closed in the transaction that creates it")
        self._records[address] = None
        self.closes[address] = recipient
        if address in self.updates:
            self.updates.remove(address)

    def commit(self, payer: Optional[str]) -> Changes:
        changes = self.store.apply(self, payer)
        logger.debug("committed %d created, %d updated, %d closed",
                     len(changes.created), len(changes.updated), len(changes.closed))
        return changes
