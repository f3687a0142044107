# truthstake/votes.py
import logging
from decimal import Decimal

from .errors import DuplicateVote, InvalidState
from .lifecycle import ClaimLifecycle
from .models import Vote
from .schema import VoteIn
from .settlement import compute_totals
from .storage import ClaimStore
from .weights import DEFAULT_MIN_STAKE, compute_weight, format_minor_units, from_wei, parse_minor_units

logger = logging.getLogger(__name__)


class VoteService:
    def __init__(self, store: ClaimStore, lifecycle: ClaimLifecycle, min_stake: Decimal = DEFAULT_MIN_STAKE):
        self.store = store
        self.lifecycle = lifecycle
        self.min_stake = min_stake

    def submit_vote(self, claim_id: str, data: VoteIn) -> Vote:
        """
        Record one vote per wallet per claim.

        The unique (claim_id, voter_address) constraint is the only thing that
        enforces uniqueness; the lookup before it just avoids a pointless
        weight computation for an obvious duplicate.
        """
        claim = self.lifecycle.refresh_status(self.lifecycle.get(claim_id))
        if (claim.payout or {}).get("status") == "settled":
            raise InvalidState(f"Claim {claim_id} is settled; votes are locked", status=claim.status)
        if claim.status != "voting":
            raise InvalidState(f"Claim {claim_id} is not open for voting ({claim.status})", status=claim.status)

        existing = self.store.find_vote(claim_id, data.voter_address)
        if existing is not None:
            raise DuplicateVote(claim_id, data.voter_address)

        stake_wei = parse_minor_units(data.stake_wei, "stake_wei") if data.stake_wei else None
        w = compute_weight(
            data.stake,
            data.badge_tier,
            data.evidence_quality_score,
            data.weight_truth_score,
            min_stake=self.min_stake,
            stake_wei=stake_wei,
        )

        vote = Vote(
            claim_id=claim_id,
            voter_address=data.voter_address,
            position=data.position,
            stake=float(from_wei(w.stake_wei)),  # mirror of the authoritative stake_wei
            stake_wei=format_minor_units(w.stake_wei),
            weight=float(w.weight),
            weight_wei=format_minor_units(w.weight_wei),
            evidence=list(data.evidence),
            evidence_quality_score=data.evidence_quality_score,
            weight_truth_score=data.weight_truth_score,
            badge_tier=data.badge_tier,
            tx_hash=data.tx_hash,
            block_number=data.block_number,
            chain_id=data.chain_id,
        )
        vote = self.store.insert_vote(vote)
        logger.info(f"Vote {vote.id} on {claim_id}: {vote.position} stake_wei={vote.stake_wei} weight_wei={vote.weight_wei}")

        self.refresh_totals(claim_id)
        return vote

    def refresh_totals(self, claim_id: str) -> None:
        """Advisory cache only; settlement recomputes from the votes."""
        totals = compute_totals(self.store.find_votes(claim_id))
        self.store.update_claim(claim_id, {"totals": totals.model_dump(mode="json")})
