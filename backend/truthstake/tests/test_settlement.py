# truthstake/tests/test_settlement.py
import threading

import pytest
from sqlmodel import create_engine

from backend.truthstake.errors import AlreadyFinalized, AlreadyFinalizing, ClaimNotFound, InvalidState
from backend.truthstake.lifecycle import ClaimLifecycle
from backend.truthstake.schema import VerificationResult
from backend.truthstake.settlement import SettlementEngine, clamp_fee_bps, compute_totals
from backend.truthstake.storage import ClaimStore

from conftest import add_vote, set_verdict

ONE = 10 ** 18


@pytest.fixture
def engine(store, clock):
    return SettlementEngine(store, clock=clock)


@pytest.fixture
def ended_claim(store, clock, voting_claim):
    clock.advance(601)
    return voting_claim


def test_reference_payout(store, engine, ended_claim):
    cid = ended_claim.claim_id
    add_vote(store, cid, 1, "truth", stake_wei=5, weight_wei=1)
    add_vote(store, cid, 2, "truth", stake_wei=5, weight_wei=2)
    add_vote(store, cid, 3, "fake", stake_wei=1_000_000, weight_wei=7)
    set_verdict(store, cid, "Truth", score=71)

    out = engine.finalize(cid, fee_bps=250)

    assert out.winner == "truth" and out.loser == "fake"
    assert out.payout.status == "settled"
    assert out.payout.fee_wei == "25000"
    assert out.payout.distributable_wei == "975000"
    assert out.payout.per_weight_wei == "325000"
    assert [r.reward_wei for r in out.rewards] == ["325000", "650000"]
    assert out.total_distributed_wei == "975000"
    assert out.final_verdict.side == "truth"
    assert out.final_verdict.score == 71

    claim = store.get_claim(cid)
    assert claim.status == "resolved"
    assert claim.finalized_at is not None
    assert claim.payout["status"] == "settled"
    assert claim.final_verdict["side"] == "truth"
    rewards = {v.voter_address[-1]: v.reward_wei for v in store.find_votes(cid)}
    assert rewards == {"1": "325000", "2": "650000", "3": "0"}


def test_rewards_never_exceed_distributable(store, engine, ended_claim):
    cid = ended_claim.claim_id
    for i, w in enumerate([3, 7, 11], start=1):
        add_vote(store, cid, i, "fake", stake_wei=ONE, weight_wei=w)
    add_vote(store, cid, 9, "truth", stake_wei=1_000_003, weight_wei=5)
    set_verdict(store, cid, "Fake")

    out = engine.finalize(cid, fee_bps=100)

    distributable = int(out.payout.distributable_wei)
    assert int(out.total_distributed_wei) <= distributable
    assert int(out.payout.per_weight_wei) == distributable // 21


def test_large_amounts_stay_exact(store, engine, ended_claim):
    cid = ended_claim.claim_id
    add_vote(store, cid, 1, "truth", stake_wei=ONE, weight_wei=3)
    add_vote(store, cid, 2, "fake", stake_wei=10 ** 30 + 1, weight_wei=ONE)
    set_verdict(store, cid, "Truth")

    out = engine.finalize(cid)
    assert out.payout.per_weight_wei == str((10 ** 30 + 1) // 3)
    assert out.rewards[0].reward_wei == str((10 ** 30 + 1) // 3 * 3)


def test_no_losing_pool_skips_payout(store, engine, ended_claim):
    cid = ended_claim.claim_id
    add_vote(store, cid, 1, "truth", stake_wei=ONE, weight_wei=ONE)
    set_verdict(store, cid, "Truth")

    out = engine.finalize(cid, fee_bps=500)

    assert out.payout.status == "skipped"
    assert out.rewards == []
    assert store.get_claim(cid).status == "resolved"
    assert store.find_votes(cid)[0].reward_wei == "0"


def test_no_winners_skips_payout(store, engine, ended_claim):
    cid = ended_claim.claim_id
    add_vote(store, cid, 1, "truth", stake_wei=ONE, weight_wei=ONE)
    set_verdict(store, cid, "Fake")

    out = engine.finalize(cid)
    assert out.payout.status == "skipped"
    assert out.winner == "fake"


def test_second_finalize_is_rejected(store, engine, ended_claim):
    cid = ended_claim.claim_id
    add_vote(store, cid, 1, "truth", stake_wei=ONE, weight_wei=ONE)
    add_vote(store, cid, 2, "fake", stake_wei=ONE, weight_wei=ONE)
    set_verdict(store, cid, "Truth")

    engine.finalize(cid)
    before = [v.reward_wei for v in store.find_votes(cid)]
    with pytest.raises(AlreadyFinalized):
        engine.finalize(cid)
    assert [v.reward_wei for v in store.find_votes(cid)] == before


def test_stale_snapshot_loses_the_compare_and_swap(store, clock, ended_claim):
    cid = ended_claim.claim_id
    add_vote(store, cid, 1, "truth", stake_wei=ONE, weight_wei=ONE)
    add_vote(store, cid, 2, "fake", stake_wei=ONE, weight_wei=ONE)
    set_verdict(store, cid, "Truth")

    slow = SettlementEngine(store, clock=clock)
    fast = SettlementEngine(store, clock=clock)
    snapshot = slow._check_preconditions(cid)
    fast.finalize(cid)

    with pytest.raises(AlreadyFinalized):
        slow._acquire(snapshot)


def test_reverification_before_the_swap_settles_on_the_new_verdict(store, lifecycle, clock, ended_claim, monkeypatch):
    cid = ended_claim.claim_id
    add_vote(store, cid, 1, "truth", stake_wei=ONE, weight_wei=ONE)
    add_vote(store, cid, 2, "fake", stake_wei=ONE, weight_wei=ONE)
    set_verdict(store, cid, "Truth")

    engine = SettlementEngine(store, clock=clock)
    stale = engine._check_preconditions(cid)
    lifecycle.record_verification(cid, VerificationResult(result="Fake", final_score=22, confidence=22))
    monkeypatch.setattr(engine, "_check_preconditions", lambda claim_id: stale)

    out = engine.finalize(cid)

    assert out.winner == "fake"
    assert out.final_verdict.side == "fake"
    assert out.final_verdict.score == 22
    claim = store.get_claim(cid)
    assert claim.final_verdict["side"] == "fake"
    assert claim.ai_verification["result"] == "Fake"
    assert [v.reward_wei for v in store.find_votes(cid)] == ["0", str(ONE)]


def test_verdict_withdrawn_before_the_swap_releases_claim(store, lifecycle, clock, ended_claim, monkeypatch):
    cid = ended_claim.claim_id
    set_verdict(store, cid, "Truth")

    engine = SettlementEngine(store, clock=clock)
    stale = engine._check_preconditions(cid)
    lifecycle.record_verification(cid, VerificationResult(result="Uncertain"))
    monkeypatch.setattr(engine, "_check_preconditions", lambda claim_id: stale)

    with pytest.raises(InvalidState, match="Uncertain"):
        engine.finalize(cid)
    claim = store.get_claim(cid)
    assert claim.status == "verified"
    assert claim.final_verdict is None
    assert claim.payout is None


def test_claim_in_resolving_reports_finalizing(store, engine, ended_claim):
    cid = ended_claim.claim_id
    set_verdict(store, cid, "Truth", status="resolving")
    with pytest.raises(AlreadyFinalizing):
        engine.finalize(cid)


def test_failure_after_acquire_releases_claim(store, engine, ended_claim, monkeypatch):
    cid = ended_claim.claim_id
    add_vote(store, cid, 1, "truth", stake_wei=ONE, weight_wei=ONE)
    add_vote(store, cid, 2, "fake", stake_wei=ONE, weight_wei=ONE)
    set_verdict(store, cid, "Truth")

    def boom(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "apply_settlement", boom)
    with pytest.raises(RuntimeError):
        engine.finalize(cid)
    assert store.get_claim(cid).status == "verified"


def test_precondition_errors(store, engine, lifecycle, clock, claim_in, ended_claim):
    with pytest.raises(ClaimNotFound):
        engine.finalize("missing")

    pending = lifecycle.create_claim(claim_in)
    with pytest.raises(InvalidState):
        engine.finalize(pending.claim_id)

    # verdict present but still no AI decision
    set_verdict(store, ended_claim.claim_id, "Uncertain", status="ended")
    with pytest.raises(InvalidState):
        engine.finalize(ended_claim.claim_id)


def test_voting_not_over_yet(store, engine, voting_claim):
    set_verdict(store, voting_claim.claim_id, "Truth", status="voting")
    with pytest.raises(InvalidState, match="not ended"):
        engine.finalize(voting_claim.claim_id)


def test_finalize_straight_from_voting_after_deadline(store, engine, clock, voting_claim):
    cid = voting_claim.claim_id
    add_vote(store, cid, 1, "fake", stake_wei=ONE, weight_wei=ONE)
    add_vote(store, cid, 2, "truth", stake_wei=ONE, weight_wei=ONE)
    set_verdict(store, cid, "Fake", status="voting")
    clock.advance(600)

    out = engine.finalize(cid)
    assert out.payout.status == "settled"
    assert out.rewards[0].reward_wei == str(ONE)


def test_default_fee_and_clamping(store, clock, ended_claim):
    cid = ended_claim.claim_id
    add_vote(store, cid, 1, "truth", stake_wei=1, weight_wei=1)
    add_vote(store, cid, 2, "fake", stake_wei=10_000, weight_wei=1)
    set_verdict(store, cid, "Truth")

    out = SettlementEngine(store, clock=clock, default_fee_bps=1000).finalize(cid)
    assert out.fee_bps == 1000
    assert out.payout.fee_wei == "1000"

    assert clamp_fee_bps(-5) == 0
    assert clamp_fee_bps(20_000) == 10_000
    assert clamp_fee_bps(None) == 0


def test_compute_totals_is_exact(store, ended_claim):
    cid = ended_claim.claim_id
    add_vote(store, cid, 1, "truth", stake_wei=ONE + 1, weight_wei=ONE)
    add_vote(store, cid, 2, "truth", stake_wei=ONE, weight_wei=2)
    totals = compute_totals(store.find_votes(cid))
    assert totals.truth.votes == 2
    assert totals.truth.stake_wei == str(2 * ONE + 1)
    assert totals.truth.weight_wei == str(ONE + 2)
    assert totals.fake.votes == 0
    assert totals.fake.stake_wei == "0"


def test_concurrent_finalize_settles_once(tmp_path, clock, claim_in):
    engine_ = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    store = ClaimStore(engine=engine_)
    lifecycle = ClaimLifecycle(store, clock=clock)
    cid = lifecycle.open_voting(lifecycle.create_claim(claim_in).claim_id).claim_id
    add_vote(store, cid, 1, "truth", stake_wei=ONE, weight_wei=ONE)
    add_vote(store, cid, 2, "fake", stake_wei=ONE, weight_wei=ONE)
    set_verdict(store, cid, "Truth")
    clock.advance(601)

    results, errors = [], []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        try:
            results.append(SettlementEngine(store, clock=clock).finalize(cid))
        except (AlreadyFinalized, AlreadyFinalizing) as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 1
    assert len(errors) == 7
    assert store.get_claim(cid).status == "resolved"
    assert [v.reward_wei for v in store.find_votes(cid)] == [str(ONE), "0"]
