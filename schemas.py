"""
Account Schemas

Define the program's account layouts here using Pydantic models.
Each account is stored as one document keyed by its derived address:
- ProgramConfig -> seeds ("config")
- Community -> seeds ("community", name)
- User -> seeds ("user", authority)
- Survey -> seeds ("survey", community_name, title)
- VoteRecord -> seeds ("vote", survey_address, voter)

Lists are bounded; the bound is part of the account layout and is what
the storage deposit pays for.
"""

from pydantic import BaseModel, Field
from typing import Any, ClassVar, Dict, List, Optional

from addresses import Kind

MAX_COMMUNITIES_PER_USER = 10
MAX_SURVEYS_PER_COMMUNITY = 5
MAX_SURVEY_ANSWERS = 4
MIN_SURVEY_ANSWERS = 2
MAX_COMMUNITY_NAME_LEN = 32
ALL_COMMUNITY = "all"

# Space of the largest ProgramConfig values; layouts are sized against these
LAYOUT_TITLE_LEN = 32
LAYOUT_QUESTION_LEN = 256
LAYOUT_ANSWER_LEN = 64

DISCRIMINATOR = 8
PUBKEY = 20
STRING_PREFIX = 4
VEC_PREFIX = 4


class ProgramConfig(BaseModel):
    """
    Singleton program settings
    Seeds: ("config")
    """
    kind: ClassVar[Kind] = Kind.CONFIG
    space: ClassVar[int] = DISCRIMINATOR + 3 * 2
    capacity: ClassVar[Dict[str, int]] = {}

    max_title_len: int = Field(30, description="Maximum survey title length in bytes")
    max_question_len: int = Field(200, description="Maximum survey question length in bytes")
    max_answer_len: int = Field(50, description="Maximum answer text length in bytes")


class Community(BaseModel):
    """
    Community account
    Seeds: ("community", name)
    """
    kind: ClassVar[Kind] = Kind.COMMUNITY
    space: ClassVar[int] = (
        DISCRIMINATOR
        + STRING_PREFIX + MAX_COMMUNITY_NAME_LEN
        + PUBKEY
        + VEC_PREFIX + MAX_SURVEYS_PER_COMMUNITY * (STRING_PREFIX + LAYOUT_TITLE_LEN)
    )
    capacity: ClassVar[Dict[str, int]] = {"surveys": MAX_SURVEYS_PER_COMMUNITY}

    name: str = Field(..., description="Unique community name")
    authority: str = Field(..., description="Identity allowed to moderate the community")
    surveys: List[str] = Field(default_factory=list, description="Titles of the community's surveys")


class CommunityRef(BaseModel):
    name: str = Field(..., description="Community name")
    address: str = Field(..., description="Derived address of the community account")


class User(BaseModel):
    """
    Registered user
    Seeds: ("user", authority)
    """
    kind: ClassVar[Kind] = Kind.USER
    space: ClassVar[int] = (
        DISCRIMINATOR
        + PUBKEY
        + VEC_PREFIX + MAX_COMMUNITIES_PER_USER * (STRING_PREFIX + MAX_COMMUNITY_NAME_LEN + 32)
    )
    capacity: ClassVar[Dict[str, int]] = {"communities": MAX_COMMUNITIES_PER_USER}

    authority: str = Field(..., description="Wallet identity owning this account")
    communities: List[CommunityRef] = Field(default_factory=list, description="Joined communities")

    def is_member(self, address: str) -> bool:
        return any(ref.address == address for ref in self.communities)


class Answer(BaseModel):
    text: str = Field(..., description="Answer text")
    vote_count: int = Field(0, description="Number of votes cast for this answer")


class Survey(BaseModel):
    """
    Survey account
    Seeds: ("survey", community_name, title)
    """
    kind: ClassVar[Kind] = Kind.SURVEY
    space: ClassVar[int] = (
        DISCRIMINATOR
        + STRING_PREFIX + LAYOUT_TITLE_LEN
        + STRING_PREFIX + MAX_COMMUNITY_NAME_LEN
        + STRING_PREFIX + LAYOUT_QUESTION_LEN
        + VEC_PREFIX + MAX_SURVEY_ANSWERS * (STRING_PREFIX + LAYOUT_ANSWER_LEN + 8)
        + 8
    )
    capacity: ClassVar[Dict[str, int]] = {"answers": MAX_SURVEY_ANSWERS}

    title: str = Field(..., description="Survey title, unique within its community")
    community_name: str = Field(..., description="Name of the owning community")
    questions: str = Field(..., description="Survey question")
    answers: List[Answer] = Field(default_factory=list, description="Possible answers with their tallies")
    limit_timestamp: int = Field(..., description="Unix timestamp at which voting closes")


class VoteRecord(BaseModel):
    """
    Proof that `voter` has voted on a survey; its existence is the fact
    Seeds: ("vote", survey_address, voter)
    """
    kind: ClassVar[Kind] = Kind.VOTE
    space: ClassVar[int] = DISCRIMINATOR + PUBKEY
    capacity: ClassVar[Dict[str, int]] = {}

    voter: str = Field(..., description="Identity of the voter")


class Nonce(BaseModel):
    """
    One-time nonce per address to prevent replay
    Collection: "nonce"
    """
    address: str = Field(..., description="Wallet address")
    nonce: str = Field(..., description="Random nonce value")
    used: bool = Field(False, description="Whether nonce has been consumed")


ACCOUNT_TYPES = {model.kind: model for model in (ProgramConfig, Community, User, Survey, VoteRecord)}


# Request / response bodies

class TransactionRequest(BaseModel):
    operation: str = Field(..., description="Instruction name, e.g. create_survey")
    args: List[Any] = Field(default_factory=list, description="Ordered instruction arguments")
    accounts: List[str] = Field(default_factory=list, description="Ordered account addresses")
    caller: str = Field(..., description="Signer identity")
    nonce: str = Field(..., description="Nonce obtained from /api/nonce")
    signature: str = Field(..., description="Signature of the transaction message")


class MessageRequest(BaseModel):
    operation: str
    args: List[Any] = Field(default_factory=list)
    accounts: List[str] = Field(default_factory=list)
    nonce: str


class Receipt(BaseModel):
    operation: str
    caller: str
    timestamp: int
    created: List[str] = Field(default_factory=list)
    updated: List[str] = Field(default_factory=list)
    closed: List[str] = Field(default_factory=list)
    deposits: int = Field(0, description="Storage deposit debited from the caller")
    refunds: int = Field(0, description="Storage deposit credited back")


class NonceResponse(BaseModel):
    address: str
    nonce: str


class SurveyView(BaseModel):
    address: str
    survey: Survey
    total_votes: int
    closed: bool


class VoteStatus(BaseModel):
    survey: str
    voter: str
    has_voted: bool
    vote_record: Optional[str] = None
