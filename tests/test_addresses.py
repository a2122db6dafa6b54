import pytest

from addresses import (
    Kind,
    community_address,
    derive,
    normalize_identity,
    survey_address,
    user_address,
    verify,
    vote_address,
)
from errors import InvalidAddress, PolicyViolation

from conftest import ALICE, BOB


def test_derive_is_deterministic():
    assert community_address("dev") == community_address("dev")
    assert len(community_address("dev")) == 64


def test_kind_separates_addresses():
    assert derive(Kind.COMMUNITY, "x") != derive(Kind.SURVEY, "x")


def test_seed_boundaries_do_not_collide():
    assert survey_address("ab", "c") != survey_address("a", "bc")


def test_program_id_namespaces_addresses():
    assert derive(Kind.COMMUNITY, "dev", program_id="one") != derive(Kind.COMMUNITY, "dev", program_id="two")


def test_identity_case_does_not_matter():
    checksum_style = "0x" + ALICE[2:].upper()
    assert user_address(checksum_style) == user_address(ALICE)


@pytest.mark.parametrize("value", ["", "0x1234", "b2" * 20, "0x" + "zz" * 20])
def test_invalid_identity_rejected(value):
    with pytest.raises(InvalidAddress):
        normalize_identity(value)


def test_seed_longer_than_32_bytes_rejected():
    with pytest.raises(PolicyViolation):
        community_address("x" * 33)


def test_vote_address_depends_on_voter_and_survey():
    survey = survey_address("dev", "S")
    other = survey_address("dev", "T")
    assert vote_address(survey, ALICE) != vote_address(survey, BOB)
    assert vote_address(survey, ALICE) != vote_address(other, ALICE)


def test_vote_address_requires_survey_address():
    with pytest.raises(InvalidAddress):
        vote_address("not-an-address", ALICE)


def test_verify_rejects_mismatch():
    expected = community_address("dev")
    assert verify("community", expected, expected) == expected
    with pytest.raises(InvalidAddress):
        verify("community", community_address("ops"), expected)
