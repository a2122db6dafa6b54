"""
Shared fixtures: an in-memory runtime on a fixed clock and a small driver
that fills in the derived accounts for each instruction.
"""

import pytest

from addresses import community_address, config_address, survey_address, user_address, vote_address
from database import MemoryBackend
from runtime import FixedClock, Runtime

NOW = 1_700_000_000

ADMIN = "0x" + "a1" * 20
ALICE = "0x" + "b2" * 20
BOB = "0x" + "c3" * 20


def identity(n: int) -> str:
    return "0x%040x" % n


class ProgramDriver:
    def __init__(self, runtime: Runtime):
        self.runtime = runtime

    def initialize(self, caller=ADMIN, *args):
        return self.runtime.execute("initialize", list(args), [community_address("all"), config_address()], caller)

    def register(self, caller):
        return self.runtime.execute("register_user", [], [user_address(caller), community_address("all")], caller)

    def create_community(self, caller, name):
        return self.runtime.execute(
            "create_community", [name], [user_address(caller), community_address(name)], caller)

    def join(self, caller, name):
        return self.runtime.execute("join_community", [], [user_address(caller), community_address(name)], caller)

    def create_survey(self, caller, community, title, answers=("Red", "Blue"), limit=None, questions="Favourite colour?"):
        limit = NOW + 100 if limit is None else limit
        return self.runtime.execute(
            "create_survey",
            [title, questions, list(answers), limit],
            [user_address(caller), community_address(community), survey_address(community, title)],
            caller,
        )

    def vote(self, caller, community, title, index):
        survey = survey_address(community, title)
        return self.runtime.execute(
            "vote",
            [index],
            [user_address(caller), community_address(community), survey, vote_address(survey, caller)],
            caller,
        )

    def delete_survey(self, caller, community, title):
        return self.runtime.execute(
            "delete_survey", [], [community_address(community), survey_address(community, title)], caller)

    def survey(self, community, title):
        return self.runtime.get_survey(survey_address(community, title)).survey


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def runtime(backend, clock):
    return Runtime(backend=backend, clock=clock)


@pytest.fixture
def program(runtime):
    driver = ProgramDriver(runtime)
    driver.initialize(ADMIN)
    return driver
