# truthstake/tests/test_votes.py
from decimal import Decimal

import pytest
from pydantic import ValidationError

from backend.truthstake.errors import DuplicateVote, InvalidStake, InvalidState
from backend.truthstake.models import Vote
from backend.truthstake.schema import VoteIn
from backend.truthstake.votes import VoteService

from conftest import addr

ONE = 10 ** 18


@pytest.fixture
def votes(store, lifecycle):
    return VoteService(store, lifecycle)


def vote_in(i=1, position="truth", stake="1", **kw):
    data = dict(
        voter_address=addr(i),
        position=position,
        stake=stake,
        evidence=["https://reuters.com/story"],
        badge_tier="expert",
    )
    data.update(kw)
    return VoteIn(**data)


def test_vote_is_weighted_and_cached_in_totals(votes, store, voting_claim):
    cid = voting_claim.claim_id
    v = votes.submit_vote(cid, vote_in(1, stake="2", badge_tier="gold",
                                       evidence_quality_score=0.5, weight_truth_score=0.5))
    assert v.id is not None
    assert v.stake_wei == str(2 * ONE)
    # 2 * 0.8 * 0.75
    assert v.weight_wei == str(12 * 10 ** 17)
    assert v.weight == pytest.approx(1.2)

    votes.submit_vote(cid, vote_in(2, position="fake", stake="0.5"))
    totals = store.get_claim(cid).totals
    assert totals["truth"]["votes"] == 1
    assert totals["fake"]["stake_wei"] == str(ONE // 2)


def test_address_is_normalized(votes, voting_claim):
    v = votes.submit_vote(voting_claim.claim_id, vote_in(voter_address="0x" + "AB" * 20))
    assert v.voter_address == "0x" + "ab" * 20


def test_one_vote_per_wallet(votes, voting_claim):
    cid = voting_claim.claim_id
    votes.submit_vote(cid, vote_in(1))
    with pytest.raises(DuplicateVote):
        votes.submit_vote(cid, vote_in(1, position="fake"))


def test_unique_constraint_is_the_guard(store, voting_claim):
    def row():
        return Vote(claim_id=voting_claim.claim_id, voter_address=addr(5), position="truth",
                    stake=1.0, stake_wei=str(ONE), weight=1.0, weight_wei=str(ONE))

    store.insert_vote(row())
    with pytest.raises(DuplicateVote) as exc:
        store.insert_vote(row())
    assert exc.value.field == "voter_address"
    assert len(store.find_votes(voting_claim.claim_id)) == 1


def test_same_wallet_may_vote_on_other_claims(votes, lifecycle, claim_in, voting_claim):
    other = lifecycle.open_voting(lifecycle.create_claim(claim_in).claim_id)
    votes.submit_vote(voting_claim.claim_id, vote_in(1))
    votes.submit_vote(other.claim_id, vote_in(1))


def test_stake_below_minimum(votes, voting_claim):
    with pytest.raises(InvalidStake):
        votes.submit_vote(voting_claim.claim_id, vote_in(stake="0.0001"))


def test_custom_minimum_stake(store, lifecycle, voting_claim):
    service = VoteService(store, lifecycle, min_stake=Decimal("5"))
    with pytest.raises(InvalidStake):
        service.submit_vote(voting_claim.claim_id, vote_in(stake="1"))


def test_explicit_minor_units_are_kept(votes, voting_claim):
    v = votes.submit_vote(voting_claim.claim_id, vote_in(stake="1", stake_wei=str(ONE + 3)))
    assert v.stake_wei == str(ONE + 3)


def test_voting_closed_after_deadline(votes, clock, store, voting_claim):
    clock.advance(601)
    with pytest.raises(InvalidState):
        votes.submit_vote(voting_claim.claim_id, vote_in(1))
    assert store.get_claim(voting_claim.claim_id).status == "ended"


def test_pending_claim_rejects_votes(votes, lifecycle, claim_in):
    claim = lifecycle.create_claim(claim_in)
    with pytest.raises(InvalidState):
        votes.submit_vote(claim.claim_id, vote_in(1))


def test_settled_claim_rejects_votes(votes, store, voting_claim):
    store.update_claim(voting_claim.claim_id, {"payout": {"status": "settled"}})
    with pytest.raises(InvalidState):
        votes.submit_vote(voting_claim.claim_id, vote_in(1))


@pytest.mark.parametrize("bad", [
    {"voter_address": "0x123"},
    {"voter_address": "not-an-address"},
    {"evidence": []},
    {"evidence": ["   "]},
    {"stake_wei": "-1"},
    {"stake_wei": "007"},
    {"position": "maybe"},
    {"evidence_quality_score": 1.5},
])
def test_vote_input_validation(bad):
    with pytest.raises(ValidationError):
        vote_in(**bad)


def test_stake_mirror_follows_minor_units(votes, voting_claim):
    v = votes.submit_vote(voting_claim.claim_id, vote_in(stake="1000", stake_wei=str(10 ** 15)))
    assert v.stake_wei == str(10 ** 15)
    assert v.stake == pytest.approx(0.001)
