# truthstake/pipeline.py
import logging
from typing import Optional

from .errors import InvalidState
from .lifecycle import VERIFIABLE, ClaimLifecycle
from .models import Claim
from .schema import ClaimSummary, EvidenceItem, VoterCredibility, WeightPlan
from .storage import ClaimStore
from .verification import VerificationOrchestrator

logger = logging.getLogger(__name__)


def verify_claim(
    store: ClaimStore,
    lifecycle: ClaimLifecycle,
    orchestrator: VerificationOrchestrator,
    claim_id: str,
    weight_plan: Optional[WeightPlan] = None,
) -> Claim:
    """
    Gather the claim's evidence and its voters' credibility, run verification
    and record the result on the claim.
    """
    claim = lifecycle.refresh_status(lifecycle.get(claim_id))
    if claim.status not in VERIFIABLE:
        raise InvalidState(f"Cannot verify claim in status {claim.status}", status=claim.status)
    votes = store.find_votes(claim_id)

    claim_evidence = [EvidenceItem.model_validate(e) for e in (claim.evidence or [])]
    vote_evidence = [EvidenceItem(url=u) for v in votes for u in (v.evidence or [])]
    voters = [
        VoterCredibility(
            voter_address=v.voter_address,
            badge_tier=v.badge_tier,
            stake=v.stake,
            position=v.position,
        )
        for v in votes
    ]
    logger.info(
        f"Verifying claim {claim_id}: {len(claim_evidence)} claim evidence, "
        f"{len(vote_evidence)} vote evidence, {len(voters)} voters"
    )

    result = orchestrator.verify(
        ClaimSummary(title=claim.title, url=claim.url, summary=claim.summary),
        [claim_evidence, vote_evidence],
        voters,
        weight_plan,
    )
    logger.info(f"[verify] modelUsed: {result.model_used} tried: {result.models_tried}")
    return lifecycle.record_verification(claim_id, result)
