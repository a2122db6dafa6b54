"""
Instructions

One handler per state transition. A handler first checks that every
account it was given sits at the address derived from its seeds, then that
the signer is allowed to act on it, then the data invariants, and only then
stages writes on the transaction. The runtime commits the writes if the
handler returns and drops them if it raises.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, Field, ValidationError

from addresses import (
    MAX_SEED_LEN,
    community_address,
    config_address,
    is_address,
    survey_address,
    user_address,
    verify,
    vote_address,
)
from auth import require_authority
from config import settings
from errors import (
    AlreadyMember,
    EmptyValue,
    InvalidAddress,
    InvalidAnswerIndex,
    InvalidArguments,
    LimitDateInPast,
    NotAMember,
    NotFound,
    PolicyViolation,
    SurveyNotInCommunity,
    TooFewAnswers,
    TooManyAnswers,
    ValueTooLong,
    VotingClosed,
)
from schemas import (
    ALL_COMMUNITY,
    LAYOUT_ANSWER_LEN,
    LAYOUT_QUESTION_LEN,
    MAX_COMMUNITY_NAME_LEN,
    MAX_SURVEY_ANSWERS,
    MIN_SURVEY_ANSWERS,
    Answer,
    Community,
    CommunityRef,
    ProgramConfig,
    Survey,
    User,
    VoteRecord,
)
from store import Transaction

logger = logging.getLogger(__name__)


class Context:
    def __init__(self, tx: Transaction, caller: str, now: int, accounts: Dict[str, str]):
        self.tx = tx
        self.caller = caller
        self.now = now
        self.accounts = accounts

    def account(self, role: str) -> str:
        return self.accounts[role]

    def expect(self, role: str, expected: str) -> str:
        return verify(role, self.accounts[role], expected)

    @property
    def config(self) -> ProgramConfig:
        return self.tx.read(config_address(), ProgramConfig)


class Instruction:
    def __init__(self, name: str, handler: Callable, accounts: Tuple[str, ...], args: Type[BaseModel]):
        self.name = name
        self.handler = handler
        self.accounts = accounts
        self.args = args

    def parse_args(self, values: List) -> BaseModel:
        fields = list(self.args.model_fields)
        if len(values) > len(fields):
            raise InvalidArguments(f"{self.name} takes at most {len(fields)} arguments")
        try:
            return self.args(**dict(zip(fields, values)))
        except ValidationError as e:
            raise InvalidArguments(f"Invalid arguments for {self.name}: {e.errors()[0]['msg']}")

    def bind_accounts(self, addresses: List[str]) -> Dict[str, str]:
        if len(addresses) != len(self.accounts):
            raise InvalidAddress(f"{self.name} expects accounts ({', '.join(self.accounts)})")
        for address in addresses:
            if not is_address(address):
                raise InvalidAddress(f"Malformed account address: {address!r}")
        return dict(zip(self.accounts, addresses))


INSTRUCTIONS: Dict[str, Instruction] = {}


def instruction(name: str, accounts: Tuple[str, ...], args: Type[BaseModel] = None):
    def register(fn):
        INSTRUCTIONS[name] = Instruction(name, fn, accounts, args or NoArgs)
        return fn
    return register


def check_text(label: str, value: str, limit: int):
    if not value or not value.strip():
        raise EmptyValue(f"{label} must not be empty")
    if len(value.encode("utf-8")) > limit:
        raise ValueTooLong(f"{label} must be {limit} bytes or less")


# Argument layouts

class NoArgs(BaseModel):
    pass


class InitializeArgs(BaseModel):
    max_title_len: Optional[int] = None
    max_question_len: Optional[int] = None
    max_answer_len: Optional[int] = None


class CreateCommunityArgs(BaseModel):
    name: str


class CreateSurveyArgs(BaseModel):
    title: str
    questions: str
    answers: List[str]
    limit_timestamp: int = Field(..., ge=-(2 ** 63), le=2 ** 63 - 1)


class VoteArgs(BaseModel):
    answer_index: int


@instruction("initialize", accounts=("community", "config"), args=InitializeArgs)
def initialize(ctx: Context, args: InitializeArgs):
    community = ctx.expect("community", community_address(ALL_COMMUNITY))
    config = ctx.expect("config", config_address())

    program_config = ProgramConfig(
        max_title_len=settings.MAX_TITLE_LEN if args.max_title_len is None else args.max_title_len,
        max_question_len=settings.MAX_QUESTION_LEN if args.max_question_len is None else args.max_question_len,
        max_answer_len=settings.MAX_ANSWER_LEN if args.max_answer_len is None else args.max_answer_len,
    )
    # Titles are address seeds, and every bound must fit the account layout
    if not 1 <= program_config.max_title_len <= MAX_SEED_LEN:
        raise PolicyViolation(f"max_title_len must be between 1 and {MAX_SEED_LEN}")
    if not 1 <= program_config.max_question_len <= LAYOUT_QUESTION_LEN:
        raise PolicyViolation(f"max_question_len must be between 1 and {LAYOUT_QUESTION_LEN}")
    if not 1 <= program_config.max_answer_len <= LAYOUT_ANSWER_LEN:
        raise PolicyViolation(f"max_answer_len must be between 1 and {LAYOUT_ANSWER_LEN}")

    ctx.tx.create(config, program_config)
    ctx.tx.create(community, Community(name=ALL_COMMUNITY, authority=ctx.caller))
    logger.info("'all' community created at %s by %s", community, ctx.caller)


@instruction("register_user", accounts=("user", "all_community"))
def register_user(ctx: Context, args: NoArgs):
    user = ctx.expect("user", user_address(ctx.caller))
    all_community = ctx.expect("all_community", community_address(ALL_COMMUNITY))

    ctx.tx.read(all_community, Community)
    ctx.tx.create(user, User(
        authority=ctx.caller,
        communities=[CommunityRef(name=ALL_COMMUNITY, address=all_community)],
    ))
    logger.info("Registering user %s at %s", ctx.caller, user)


@instruction("create_community", accounts=("user", "community"), args=CreateCommunityArgs)
def create_community(ctx: Context, args: CreateCommunityArgs):
    user_addr = ctx.expect("user", user_address(ctx.caller))
    user = ctx.tx.read(user_addr, User)
    require_authority(user, ctx.caller)

    check_text("Community name", args.name, MAX_COMMUNITY_NAME_LEN)
    community_addr = ctx.expect("community", community_address(args.name))

    ctx.tx.create(community_addr, Community(name=args.name, authority=ctx.caller))
    # The creator joins the community it creates
    ctx.tx.mutate(user_addr, User, lambda u: u.communities.append(
        CommunityRef(name=args.name, address=community_addr)))
    logger.info("Community %r created at %s by %s", args.name, community_addr, ctx.caller)


@instruction("join_community", accounts=("user", "community"))
def join_community(ctx: Context, args: NoArgs):
    user_addr = ctx.expect("user", user_address(ctx.caller))
    user = ctx.tx.read(user_addr, User)
    require_authority(user, ctx.caller)

    community_addr = ctx.account("community")
    community = ctx.tx.read(community_addr, Community)
    if not community.name:
        raise NotFound("Community is not initialized")
    ctx.expect("community", community_address(community.name))

    if user.is_member(community_addr):
        raise AlreadyMember(f"Already a member of {community.name!r}")
    ctx.tx.mutate(user_addr, User, lambda u: u.communities.append(
        CommunityRef(name=community.name, address=community_addr)))
    logger.info("%s joined community %r", ctx.caller, community.name)


@instruction("create_survey", accounts=("user", "community", "survey"), args=CreateSurveyArgs)
def create_survey(ctx: Context, args: CreateSurveyArgs):
    user_addr = ctx.expect("user", user_address(ctx.caller))
    user = ctx.tx.read(user_addr, User)
    require_authority(user, ctx.caller)

    community_addr = ctx.account("community")
    community = ctx.tx.read(community_addr, Community)
    ctx.expect("community", community_address(community.name))
    if not user.is_member(community_addr):
        raise NotAMember("User is not a member of this community")

    config = ctx.config
    check_text("Survey title", args.title, config.max_title_len)
    check_text("Survey question", args.questions, config.max_question_len)
    if len(args.answers) > MAX_SURVEY_ANSWERS:
        raise TooManyAnswers(f"A survey has at most {MAX_SURVEY_ANSWERS} answers")
    if len(args.answers) < MIN_SURVEY_ANSWERS:
        raise TooFewAnswers(f"A survey needs at least {MIN_SURVEY_ANSWERS} answers")
    for answer in args.answers:
        check_text("Answer", answer, config.max_answer_len)
    if args.limit_timestamp <= ctx.now:
        raise LimitDateInPast("Limit date must be in the future")

    survey_addr = ctx.expect("survey", survey_address(community.name, args.title))
    ctx.tx.create(survey_addr, Survey(
        title=args.title,
        community_name=community.name,
        questions=args.questions,
        answers=[Answer(text=text) for text in args.answers],
        limit_timestamp=args.limit_timestamp,
    ))
    ctx.tx.mutate(community_addr, Community, lambda c: c.surveys.append(args.title))
    logger.info("Survey %r created in %r at %s", args.title, community.name, survey_addr)


@instruction("vote", accounts=("user", "community", "survey", "vote"), args=VoteArgs)
def vote(ctx: Context, args: VoteArgs):
    user_addr = ctx.expect("user", user_address(ctx.caller))
    user = ctx.tx.read(user_addr, User)
    require_authority(user, ctx.caller)

    survey_addr = ctx.account("survey")
    survey = ctx.tx.read(survey_addr, Survey)
    ctx.expect("survey", survey_address(survey.community_name, survey.title))
    community_addr = ctx.account("community")
    community = ctx.tx.read(community_addr, Community)
    ctx.expect("community", community_address(community.name))

    # The survey names its community rather than pointing at its address
    if survey.community_name != community.name:
        raise SurveyNotInCommunity("Survey does not belong to this community")
    if not user.is_member(community_addr):
        raise NotAMember("User is not a member of this community")
    if ctx.now >= survey.limit_timestamp:
        raise VotingClosed("Voting is closed")
    if not 0 <= args.answer_index < len(survey.answers):
        raise InvalidAnswerIndex(f"Answer index {args.answer_index} out of range")

    vote_addr = ctx.expect("vote", vote_address(survey_addr, ctx.caller))
    # Creating the vote record is the double-vote guard; it must precede the tally
    ctx.tx.create(vote_addr, VoteRecord(voter=ctx.caller))

    def tally(s: Survey):
        s.answers[args.answer_index].vote_count += 1

    ctx.tx.mutate(survey_addr, Survey, tally)
    logger.info("%s voted %d on %r", ctx.caller, args.answer_index, survey.title)


@instruction("delete_survey", accounts=("community", "survey"))
def delete_survey(ctx: Context, args: NoArgs):
    community_addr = ctx.account("community")
    community = ctx.tx.read(community_addr, Community)
    require_authority(community, ctx.caller, "Authority is not the community authority.")
    ctx.expect("community", community_address(community.name))

    survey_addr = ctx.account("survey")
    survey = ctx.tx.read(survey_addr, Survey)
    ctx.expect("survey", survey_address(survey.community_name, survey.title))
    if survey.community_name != community.name:
        raise SurveyNotInCommunity("Survey does not belong to this community")

    def unlist(c: Community):
        if survey.title not in c.surveys:
            raise NotFound(f"Survey {survey.title!r} is not listed in {c.name!r}")
        c.surveys.remove(survey.title)

    ctx.tx.mutate(community_addr, Community, unlist)
    ctx.tx.close(survey_addr, Survey, recipient=ctx.caller)
    logger.info("Survey %r deleted from %r by %s", survey.title, community.name, ctx.caller)
