import pytest

from addresses import community_address, survey_address, user_address, vote_address
from errors import AlreadyExists, CapacityExceeded, Conflict, InvalidAddress, NotFound
from runtime import Runtime
from schemas import Answer, Community, CommunityRef, Survey, User, VoteRecord
from store import EntityStore, Transaction, deposit_for

from conftest import ADMIN, ALICE, BOB, NOW, ProgramDriver


@pytest.fixture
def store(runtime):
    return runtime.store


def make_survey(title="S"):
    return Survey(
        title=title,
        community_name="dev",
        questions="Q?",
        answers=[Answer(text="a"), Answer(text="b")],
        limit_timestamp=NOW + 100,
    )


def test_create_and_read(store):
    address = community_address("dev")
    deposit = store.create(address, Community(name="dev", authority=ALICE), payer=ALICE)

    assert deposit == deposit_for(Community)
    assert store.read(address, Community).authority == ALICE
    assert store.ledger.balance(ALICE) == -deposit


def test_second_create_fails(store):
    address = community_address("dev")
    store.create(address, Community(name="dev", authority=ALICE), payer=ALICE)

    with pytest.raises(AlreadyExists):
        store.create(address, Community(name="dev", authority=BOB), payer=BOB)
    assert store.read(address, Community).authority == ALICE
    assert store.ledger.balance(BOB) == 0


def test_read_missing_and_wrong_kind(store):
    address = community_address("dev")
    with pytest.raises(NotFound):
        store.read(address, Community)

    store.create(address, Community(name="dev", authority=ALICE), payer=ALICE)
    with pytest.raises(NotFound):
        store.read(address, User)


def test_mutate_respects_capacity(store):
    address = community_address("dev")
    store.create(address, Community(name="dev", authority=ALICE, surveys=["1", "2", "3", "4", "5"]), payer=ALICE)

    with pytest.raises(CapacityExceeded):
        store.mutate(address, Community, lambda c: c.surveys.append("6"))
    assert len(store.read(address, Community).surveys) == 5


def test_mutate_missing_account(store):
    with pytest.raises(NotFound):
        store.mutate(user_address(ALICE), User, lambda u: None)


def test_close_refunds_and_tombstones(store):
    address = survey_address("dev", "S")
    deposit = store.create(address, make_survey(), payer=ALICE)

    refund = store.close(address, Survey, recipient=BOB)

    assert refund == deposit
    assert store.ledger.balance(BOB) == deposit
    assert not store.exists(address)
    with pytest.raises(NotFound):
        store.read(address, Survey)
    # The same seeds never come back
    with pytest.raises(AlreadyExists):
        store.create(address, make_survey(), payer=ALICE)


def test_transaction_rejects_undeclared_writes(store):
    tx = Transaction(store, [community_address("dev")])
    with pytest.raises(InvalidAddress):
        tx.create(community_address("ops"), Community(name="ops", authority=ALICE))


def test_transaction_sees_its_own_writes(store):
    address = user_address(ALICE)
    tx = Transaction(store, [address])
    tx.create(address, User(authority=ALICE))
    tx.mutate(address, User, lambda u: u.communities.append(CommunityRef(name="dev", address=community_address("dev"))))

    assert len(tx.read(address, User).communities) == 1
    assert not store.exists(address)

    tx.commit(ALICE)
    assert len(store.read(address, User).communities) == 1


def test_abandoned_transaction_writes_nothing(store):
    address = community_address("dev")
    tx = Transaction(store, [address])
    tx.create(address, Community(name="dev", authority=ALICE))

    assert not store.occupied(address)


def test_commit_applies_creates_before_updates(store, backend):
    survey = survey_address("dev", "S")
    store.create(survey, make_survey(), payer=ADMIN)
    record = vote_address(survey, ALICE)

    tx = Transaction(store, [survey, record])
    tx.create(record, VoteRecord(voter=ALICE))

    def tally(s):
        s.answers[0].vote_count += 1

    tx.mutate(survey, Survey, tally)

    # Another submission lands the same vote record first
    backend.insert({"_id": record, "kind": "vote", "data": {"voter": ALICE}, "deposit": 0, "payer": ALICE, "closed": False})

    with pytest.raises(AlreadyExists):
        tx.commit(ALICE)
    assert store.read(survey, Survey).answers[0].vote_count == 0


def test_failed_commit_rolls_back_earlier_writes(store, backend):
    first = community_address("dev")
    second = community_address("ops")
    tx = Transaction(store, [first, second])
    tx.create(first, Community(name="dev", authority=ALICE))
    tx.create(second, Community(name="ops", authority=ALICE))

    backend.insert({"_id": second, "kind": "community", "data": {"name": "ops", "authority": BOB, "surveys": []},
                    "deposit": 0, "payer": BOB, "closed": False})

    with pytest.raises(AlreadyExists):
        tx.commit(ALICE)
    assert not store.occupied(first)
    assert store.ledger.balance(ALICE) == 0


def test_entity_store_without_runtime(backend):
    from runtime import InMemoryLedger

    store = EntityStore(backend, InMemoryLedger())
    store.create(user_address(ALICE), User(authority=ALICE), payer=ALICE)
    assert store.read_any(user_address(ALICE)) == User(authority=ALICE)
    assert store.read_any(user_address(BOB)) is None


def test_stale_update_conflicts(store):
    address = community_address("dev")
    store.create(address, Community(name="dev", authority=ALICE), payer=ALICE)

    stale = Transaction(store, [address])
    stale.mutate(address, Community, lambda c: c.surveys.append("old"))
    store.mutate(address, Community, lambda c: c.surveys.append("new"))

    with pytest.raises(Conflict):
        stale.commit(ALICE)
    assert store.read(address, Community).surveys == ["new"]


def test_stale_close_conflicts(store):
    survey = survey_address("dev", "S")
    store.create(survey, make_survey(), payer=ADMIN)

    stale = Transaction(store, [survey])
    stale.close(survey, Survey, ADMIN)
    store.mutate(survey, Survey, lambda s: setattr(s.answers[0], "vote_count", 1))

    with pytest.raises(Conflict):
        stale.commit(None)
    assert store.read(survey, Survey).answers[0].vote_count == 1


def test_workers_sharing_a_backend_count_every_vote(backend, clock):
    worker_a = ProgramDriver(Runtime(backend=backend, clock=clock))
    worker_b = ProgramDriver(Runtime(backend=backend, clock=clock))
    worker_a.initialize(ADMIN)
    worker_a.register(ALICE)
    worker_a.register(BOB)
    worker_a.create_community(ALICE, "dev")
    worker_a.join(BOB, "dev")
    worker_a.create_survey(ALICE, "dev", "S")

    apply = worker_b.runtime.store.apply

    def apply_after_alice_votes(tx, payer):
        worker_a.vote(ALICE, "dev", "S", 0)
        return apply(tx, payer)

    # Bob's vote is staged on worker B, then Alice's lands on worker A first
    worker_b.runtime.store.apply = apply_after_alice_votes
    with pytest.raises(Conflict):
        worker_b.vote(BOB, "dev", "S", 1)

    survey = survey_address("dev", "S")
    assert [a.vote_count for a in worker_a.survey("dev", "S").answers] == [1, 0]
    assert worker_a.runtime.has_voted(survey, ALICE).has_voted
    assert not worker_a.runtime.has_voted(survey, BOB).has_voted

    worker_b.runtime.store.apply = apply
    worker_b.vote(BOB, "dev", "S", 1)
    assert [a.vote_count for a in worker_a.survey("dev", "S").answers] == [1, 1]
