# truthstake/settlement.py
"""
Claim settlement.

All money math runs on the integer minor-unit fields (stake_wei, weight_wei).
The float `stake`/`weight`/`reward` columns are display mirrors and never feed
the payout formula.

    fee           = losing_pool * fee_bps // 10000
    distributable = losing_pool - fee
    per_weight    = distributable // winning_weight
    reward(vote)  = per_weight * vote.weight_wei

The remainder of the per-weight division is never redistributed, so the sum
of rewards is at most `distributable`.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List

from .errors import AlreadyFinalized, AlreadyFinalizing, ClaimNotFound, InvalidState
from .lifecycle import FINALIZABLE, ClaimStatus, voting_deadline
from .models import Claim, Vote, as_utc, utcnow
from .schema import (
    FinalVerdict, PayoutRecord, SettlementOutcome, SideTotals, Totals, VoteReward,
)
from .storage import ClaimStore
from .weights import BPS, format_minor_units, from_wei, parse_minor_units

logger = logging.getLogger(__name__)

SIDES = ("truth", "fake")


def clamp_fee_bps(fee_bps) -> int:
    try:
        value = int(fee_bps or 0)
    except (TypeError, ValueError):
        value = 0
    return max(0, min(BPS, value))


def _sum_exact(votes: Iterable[Vote]) -> Dict[str, Dict[str, int]]:
    sums = {side: {"votes": 0, "stake_wei": 0, "weight_wei": 0} for side in SIDES}
    for v in votes:
        side = "truth" if v.position == "truth" else "fake"
        sums[side]["votes"] += 1
        sums[side]["stake_wei"] += parse_minor_units(v.stake_wei, "stake_wei")
        sums[side]["weight_wei"] += parse_minor_units(v.weight_wei, "weight_wei")
    return sums


def compute_totals(votes: Iterable[Vote]) -> Totals:
    """Per-side vote count and exact stake/weight sums, with decimal mirrors."""
    sums = _sum_exact(votes)
    return Totals(**{
        side: SideTotals(
            votes=s["votes"],
            stake=str(from_wei(s["stake_wei"])),
            weight=str(from_wei(s["weight_wei"])),
            stake_wei=format_minor_units(s["stake_wei"]),
            weight_wei=format_minor_units(s["weight_wei"]),
        )
        for side, s in sums.items()
    })


def _require_decision(claim: Claim) -> None:
    result = (claim.ai_verification or {}).get("result") or "Uncertain"
    if result not in ("Truth", "Fake"):
        raise InvalidState(f"AI result is {result}; cannot finalize", status=claim.status)


class SettlementEngine:
    def __init__(self, store: ClaimStore, clock: Callable[[], datetime] = utcnow,
                 default_fee_bps: int = 0):
        self.store = store
        self.clock = clock
        self.default_fee_bps = default_fee_bps

    def _check_preconditions(self, claim_id: str) -> Claim:
        claim = self.store.get_claim(claim_id)
        if claim is None:
            raise ClaimNotFound(claim_id)
        if claim.status == ClaimStatus.RESOLVED.value:
            raise AlreadyFinalized(claim_id)
        if claim.status == ClaimStatus.RESOLVING.value:
            raise AlreadyFinalizing(claim_id)
        if claim.status not in FINALIZABLE:
            raise InvalidState(f"Cannot finalize from status {claim.status}", status=claim.status)

        deadline = voting_deadline(claim)
        if deadline is not None and as_utc(self.clock()) < deadline:
            raise InvalidState("Voting period not ended yet", status=claim.status)

        _require_decision(claim)
        return claim

    def _acquire(self, claim: Claim) -> None:
        """Compare-and-swap into `resolving`; only one caller can win."""
        if self.store.update_claim(claim.claim_id, {"status": ClaimStatus.RESOLVING.value},
                                   expected_status=claim.status):
            return
        latest = self.store.get_claim(claim.claim_id)
        if latest is not None and latest.status == ClaimStatus.RESOLVED.value:
            raise AlreadyFinalized(claim.claim_id)
        if latest is not None and latest.status == ClaimStatus.RESOLVING.value:
            raise AlreadyFinalizing(claim.claim_id)
        raise InvalidState(
            f"Claim {claim.claim_id} changed status to {latest.status if latest else None} before finalize",
            status=latest.status if latest else None,
        )

    def _release(self, claim: Claim) -> None:
        released = self.store.update_claim(claim.claim_id, {"status": claim.status},
                                           expected_status=ClaimStatus.RESOLVING.value)
        logger.warning(f"Finalize of claim {claim.claim_id} aborted, released={released} to {claim.status}")

    def finalize(self, claim_id: str, fee_bps: int = None) -> SettlementOutcome:
        fee_bps = clamp_fee_bps(self.default_fee_bps if fee_bps is None else fee_bps)
        claim = self._check_preconditions(claim_id)
        self._acquire(claim)
        try:
            # the verdict may have been replaced between the check and the swap
            locked = self.store.get_claim(claim_id)
            _require_decision(locked)
            outcome = self._settle(locked, fee_bps)
        except Exception:
            self._release(claim)
            raise
        return outcome

    def _settle(self, claim: Claim, fee_bps: int) -> SettlementOutcome:
        claim_id = claim.claim_id
        ai = claim.ai_verification or {}
        winner = "truth" if ai.get("result") == "Truth" else "fake"
        loser = "fake" if winner == "truth" else "truth"

        # fresh full scan; cached totals are never trusted here
        votes = self.store.find_votes(claim_id)
        sums = _sum_exact(votes)
        totals = compute_totals(votes)
        winning_weight = sums[winner]["weight_wei"]
        losing_pool = sums[loser]["stake_wei"]

        verdict = FinalVerdict(
            side=winner,
            score=int(ai.get("final_score") or 0),
            reason=ai.get("reasoning") or "",
            sources=list(ai.get("sources") or []),
        )

        rewards: List[VoteReward] = []
        vote_updates: Dict[int, dict] = {}
        if winning_weight == 0 or losing_pool == 0:
            payout = PayoutRecord(status="skipped")
            message = "Finalized with no payouts (no winners or no losing pool)"
            total_distributed = 0
        else:
            fee = losing_pool * fee_bps // BPS
            distributable = losing_pool - fee
            per_weight = distributable // winning_weight
            total_distributed = 0
            for v in votes:
                if v.position != winner:
                    continue
                reward = per_weight * parse_minor_units(v.weight_wei, "weight_wei")
                total_distributed += reward
                vote_updates[v.id] = {
                    "reward_wei": format_minor_units(reward),
                    "reward": float(from_wei(reward)),
                    "rewarded": False,
                }
                rewards.append(VoteReward(
                    vote_id=v.id,
                    voter_address=v.voter_address,
                    weight_wei=v.weight_wei,
                    reward_wei=format_minor_units(reward),
                ))
            payout = PayoutRecord(
                status="settled",
                distributable_wei=format_minor_units(distributable),
                pool=str(from_wei(distributable)),
                fee_wei=format_minor_units(fee),
                per_weight_wei=format_minor_units(per_weight),
                tx_hash="",
            )
            message = "Finalized"

        claim_fields = {
            "final_verdict": verdict.model_dump(mode="json"),
            "payout": payout.model_dump(mode="json"),
            "totals": totals.model_dump(mode="json"),
            "finalized_at": self.clock(),
            "status": ClaimStatus.RESOLVED.value,
        }
        if not self.store.apply_settlement(claim_id, vote_updates, claim_fields,
                                           expected_status=ClaimStatus.RESOLVING.value):
            raise InvalidState(f"Claim {claim_id} left resolving during finalize")

        logger.info(
            f"Claim {claim_id} resolved: winner={winner} pool={losing_pool} fee_bps={fee_bps} "
            f"per_weight={payout.per_weight_wei} payout={payout.status} winners={len(rewards)}"
        )
        return SettlementOutcome(
            claim_id=claim_id,
            winner=winner,
            loser=loser,
            fee_bps=fee_bps,
            totals=totals,
            final_verdict=verdict,
            payout=payout,
            rewards=rewards,
            total_distributed_wei=format_minor_units(total_distributed),
            message=message,
        )
