"""
Runtime

Stands in for the host that executes the program: it serializes
operations, supplies the current time, funds storage deposits and returns
refunds. Each operation runs to completion against one `Transaction` and
either commits everything or nothing.
"""

import logging
import threading
import time
from collections import defaultdict
from typing import Any, List, Optional

from addresses import community_address, config_address, normalize_identity, survey_address, user_address, vote_address
from auth import AuthorizationGate
from database import get_backend
from errors import InvalidArguments, InvalidClock, NotFound, ProgramError
from handlers import INSTRUCTIONS, Context
from schemas import Community, ProgramConfig, Receipt, Survey, SurveyView, TransactionRequest, User, VoteRecord, VoteStatus
from store import EntityStore, Transaction

logger = logging.getLogger(__name__)

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


class SystemClock:
    def now(self) -> int:
        return int(time.time())


class FixedClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, timestamp: int):
        self.timestamp = timestamp

    def now(self) -> int:
        return self.timestamp

    def advance(self, seconds: int) -> int:
        self.timestamp += seconds
        return self.timestamp


class InMemoryLedger:
    """
    Tracks storage deposits as net lamport flows per identity. Balances may
    go negative; funding accounts is the host's concern.
    """

    def __init__(self):
        self._balances = defaultdict(int)
        self._lock = threading.Lock()

    def debit(self, identity: str, amount: int):
        with self._lock:
            self._balances[identity] -= amount

    def credit(self, identity: str, amount: int):
        with self._lock:
            self._balances[identity] += amount

    def balance(self, identity: str) -> int:
        with self._lock:
            return self._balances[identity]


class Runtime:
    def __init__(self, backend=None, clock=None, ledger=None):
        self.backend = backend if backend is not None else get_backend()
        self.clock = clock or SystemClock()
        self.ledger = ledger or InMemoryLedger()
        self.store = EntityStore(self.backend, self.ledger)
        self.gate = AuthorizationGate(self.backend)
        self._lock = threading.Lock()

    def now(self) -> int:
        timestamp = self.clock.now()
        if not isinstance(timestamp, int) or not INT64_MIN <= timestamp <= INT64_MAX:
            raise InvalidClock(f"Clock returned an invalid timestamp: {timestamp!r}")
        return timestamp

    def submit(self, request: TransactionRequest) -> Receipt:
        caller = self.gate.authenticate(request)
        return self.execute(request.operation, request.args, request.accounts, caller)

    def execute(self, operation: str, args: List[Any], accounts: List[str], caller: str) -> Receipt:
        instruction = INSTRUCTIONS.get(operation)
        if instruction is None:
            raise InvalidArguments(f"Unknown operation: {operation}")
        caller = normalize_identity(caller)
        params = instruction.parse_args(args)
        roles = instruction.bind_accounts(accounts)

        with self._lock:
            try:
                now = self.now()
                tx = Transaction(self.store, roles.values())
                instruction.handler(Context(tx, caller, now, roles), params)
                changes = tx.commit(caller)
            except ProgramError as e:
                logger.warning("%s rejected for %s: %s (%s)", operation, caller, e.code, e.message)
                raise

        return Receipt(
            operation=operation,
            caller=caller,
            timestamp=now,
            created=changes.created,
            updated=changes.updated,
            closed=changes.closed,
            deposits=changes.deposits,
            refunds=changes.refunds,
        )

    # Lookups, always by derived address

    def get_config(self) -> ProgramConfig:
        return self.store.read(config_address(), ProgramConfig)

    def get_user(self, identity: str) -> User:
        return self.store.read(user_address(identity), User)

    def get_community(self, name: str) -> Community:
        return self.store.read(community_address(name), Community)

    def get_survey(self, address: str) -> SurveyView:
        survey = self.store.read(address, Survey)
        return SurveyView(
            address=address,
            survey=survey,
            total_votes=sum(answer.vote_count for answer in survey.answers),
            closed=self.now() >= survey.limit_timestamp,
        )

    def list_community_surveys(self, name: str) -> List[SurveyView]:
        community = self.get_community(name)
        views = []
        for title in community.surveys:
            try:
                views.append(self.get_survey(survey_address(community.name, title)))
            except NotFound:
                logger.warning("community %s lists missing survey %r", community.name, title)
        return views

    def has_voted(self, survey: str, voter: str) -> VoteStatus:
        voter = normalize_identity(voter)
        record = vote_address(survey, voter)
        voted = self.store.exists(record, VoteRecord)
        return VoteStatus(survey=survey, voter=voter, has_voted=voted, vote_record=record if voted else None)

    def describe(self) -> dict:
        return self.backend.describe()


_runtime: Optional[Runtime] = None


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        _runtime = Runtime()
    return _runtime
