"""
Address derivation

Every account lives at an address computed from its kind and seed parts,
the same way a program-derived address is computed on chain. The address is
both the lookup key and the uniqueness lock: creating the same seeds twice
lands on the same address and fails.
"""

import hashlib
import re
from enum import Enum
from typing import Union

from config import settings
from errors import InvalidAddress, PolicyViolation

MAX_SEED_LEN = 32

_IDENTITY_RE = re.compile(r"^0x[0-9a-f]{40}$")
_ADDRESS_RE = re.compile(r"^[0-9a-f]{64}$")

Seed = Union[str, bytes]


class Kind(str, Enum):
    CONFIG = "config"
    COMMUNITY = "community"
    USER = "user"
    SURVEY = "survey"
    VOTE = "vote"


def normalize_identity(value: str) -> str:
    """Lower-case a 0x-prefixed 20-byte hex identity, rejecting anything else."""
    identity = (value or "").strip().lower()
    if not _IDENTITY_RE.match(identity):
        raise InvalidAddress(f"Invalid identity: {value!r}")
    return identity


def is_address(value: str) -> bool:
    return bool(value) and bool(_ADDRESS_RE.match(value))


def _seed_bytes(part: Seed) -> bytes:
    raw = part if isinstance(part, bytes) else part.encode("utf-8")
    if len(raw) > MAX_SEED_LEN:
        raise PolicyViolation(f"Seed exceeds {MAX_SEED_LEN} bytes")
    return raw


def derive(kind: Kind, *seeds: Seed, program_id: str = None) -> str:
    """
    Hash (program id, kind, seeds) into a 32-byte hex address.

    Each component is length-prefixed so ("ab", "c") and ("a", "bc") never
    collide.
    """
    namespace = (program_id or settings.PROGRAM_ID).encode("utf-8")
    h = hashlib.sha256()
    for component in (namespace, Kind(kind).value.encode("utf-8")) + tuple(_seed_bytes(s) for s in seeds):
        h.update(len(component).to_bytes(2, "big"))
        h.update(component)
    return h.hexdigest()


def config_address() -> str:
    return derive(Kind.CONFIG)


def community_address(name: str) -> str:
    return derive(Kind.COMMUNITY, name)


def user_address(identity: str) -> str:
    return derive(Kind.USER, bytes.fromhex(normalize_identity(identity)[2:]))


def survey_address(community_name: str, title: str) -> str:
    return derive(Kind.SURVEY, community_name, title)


def vote_address(survey: str, voter: str) -> str:
    if not is_address(survey):
        raise InvalidAddress(f"Invalid survey address: {survey!r}")
    return derive(Kind.VOTE, bytes.fromhex(survey), bytes.fromhex(normalize_identity(voter)[2:]))


def verify(role: str, claimed: str, expected: str) -> str:
    """Reject a caller-supplied address that does not re-derive."""
    if claimed != expected:
        raise InvalidAddress(f"{role} account does not match its derived address")
    return claimed
