# truthstake/lifecycle.py
"""
Claim lifecycle state machine.

    pending -> voting -> ended -> verified -> resolving -> resolved

`flagged` is reachable from any state before `resolving` and returns to the
state the claim had when it was flagged. `resolving` is held for the duration
of a finalize call; a failed finalize releases it back to the previous state.
`voting -> ended` happens lazily, the first time an operation notices the
deadline has passed. Nothing leaves `resolved`.
"""
import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional

from .errors import ClaimNotFound, InvalidInput, InvalidState
from .models import Claim, as_utc, utcnow
from .schema import ClaimIn, VerificationResult
from .storage import ClaimStore

logger = logging.getLogger(__name__)


class ClaimStatus(str, Enum):
    PENDING = "pending"
    VOTING = "voting"
    ENDED = "ended"
    VERIFIED = "verified"
    FLAGGED = "flagged"
    RESOLVING = "resolving"
    RESOLVED = "resolved"


S = ClaimStatus

TRANSITIONS: Dict[ClaimStatus, FrozenSet[ClaimStatus]] = {
    S.PENDING: frozenset({S.VOTING, S.FLAGGED}),
    S.VOTING: frozenset({S.ENDED, S.VERIFIED, S.RESOLVING, S.FLAGGED}),
    S.ENDED: frozenset({S.VERIFIED, S.RESOLVING, S.FLAGGED}),
    S.VERIFIED: frozenset({S.VERIFIED, S.RESOLVING, S.FLAGGED}),
    S.RESOLVING: frozenset({S.RESOLVED, S.VOTING, S.ENDED, S.VERIFIED}),
    S.FLAGGED: frozenset({S.PENDING, S.VOTING, S.ENDED, S.VERIFIED}),
    S.RESOLVED: frozenset(),
}

# plain strings: Claim.status is stored as str
FINALIZABLE = frozenset({"voting", "ended", "verified"})
VERIFIABLE = frozenset({"voting", "ended", "verified"})
FLAGGABLE = frozenset({"pending", "voting", "ended", "verified"})


def can_transition(current: str, target: str) -> bool:
    return ClaimStatus(target) in TRANSITIONS[ClaimStatus(current)]


def assert_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidState(f"Cannot move claim from {current} to {target}", status=current)


def voting_deadline(claim: Claim) -> Optional[datetime]:
    """votingEndsAt, or postedAt + duration when it was never set."""
    if claim.voting_ends_at is not None:
        return as_utc(claim.voting_ends_at)
    if claim.posted_at is not None and claim.voting_duration_sec:
        return as_utc(claim.posted_at) + timedelta(seconds=claim.voting_duration_sec)
    return None


def effective_status(claim: Claim, now: datetime) -> ClaimStatus:
    status = ClaimStatus(claim.status)
    if status == S.VOTING:
        deadline = voting_deadline(claim)
        if deadline is not None and as_utc(now) >= deadline:
            return S.ENDED
    return status


class ClaimLifecycle:
    """Store-backed transitions; every write is conditional on the status it read."""

    def __init__(self, store: ClaimStore, clock: Callable[[], datetime] = utcnow,
                 default_duration_sec: int = 300):
        self.store = store
        self.clock = clock
        self.default_duration_sec = default_duration_sec

    def get(self, claim_id: str) -> Claim:
        claim = self.store.get_claim(claim_id)
        if claim is None:
            raise ClaimNotFound(claim_id)
        return claim

    def create_claim(self, data: ClaimIn) -> Claim:
        now = as_utc(self.clock())
        duration = data.voting_duration_sec or self.default_duration_sec
        if duration <= 0:
            raise InvalidInput("voting_duration_sec must be positive", field="voting_duration_sec")
        claim = Claim(
            claim_id=str(uuid.uuid4()),
            title=data.title,
            summary=data.summary,
            url=data.url,
            category=data.category,
            poster=data.poster,
            evidence=[e.model_dump() for e in data.evidence],
            posted_at=now,
            voting_duration_sec=duration,
            voting_ends_at=now + timedelta(seconds=duration),
            status=S.PENDING.value,
        )
        claim = self.store.create_claim(claim)
        logger.info(f"Created claim {claim.claim_id} ({claim.category}), voting {duration}s")
        return claim

    def _move(self, claim_id: str, current: str, target: ClaimStatus, **fields) -> None:
        assert_transition(current, target.value)
        fields["status"] = target.value
        if not self.store.update_claim(claim_id, fields, expected_status=current):
            latest = self.get(claim_id)
            raise InvalidState(
                f"Claim {claim_id} changed from {current} to {latest.status} concurrently",
                status=latest.status,
            )
        logger.info(f"Claim {claim_id}: {current} -> {target.value}")

    def open_voting(self, claim_id: str, started_at: datetime = None, tx_hash: str = None,
                    chain_id: int = None, block_number: int = None) -> Claim:
        """pending -> voting once claim creation is confirmed on-chain."""
        claim = self.get(claim_id)
        started_at = as_utc(started_at) or as_utc(self.clock())
        duration = claim.voting_duration_sec or self.default_duration_sec
        self._move(
            claim_id, claim.status, S.VOTING,
            voting_starts_at=started_at,
            voting_ends_at=started_at + timedelta(seconds=duration),
            tx_hash=tx_hash,
            chain_id=chain_id,
            block_number=block_number,
        )
        return self.get(claim_id)

    def refresh_status(self, claim: Claim) -> Claim:
        """Apply the lazy voting -> ended transition if the deadline passed."""
        if claim.status == S.VOTING.value and effective_status(claim, self.clock()) == S.ENDED:
            # losing this race is fine, someone else moved the claim on
            if self.store.update_claim(claim.claim_id, {"status": S.ENDED.value},
                                       expected_status=S.VOTING.value):
                logger.info(f"Claim {claim.claim_id}: voting -> ended (deadline passed)")
            return self.get(claim.claim_id)
        return claim

    def record_verification(self, claim_id: str, result: VerificationResult) -> Claim:
        """Store a verification result; a definite result moves the claim to verified."""
        claim = self.refresh_status(self.get(claim_id))
        if claim.status not in VERIFIABLE:
            raise InvalidState(f"Cannot verify claim in status {claim.status}", status=claim.status)

        fields = {"ai_verification": result.model_dump(mode="json")}
        if result.result == "Uncertain":
            ok = self.store.update_claim(claim_id, fields, expected_status=claim.status)
            if not ok:
                raise InvalidState(f"Claim {claim_id} changed status during verification")
        else:
            self._move(claim_id, claim.status, S.VERIFIED, **fields)
        return self.get(claim_id)

    def flag(self, claim_id: str) -> Claim:
        claim = self.get(claim_id)
        if claim.status not in FLAGGABLE:
            raise InvalidState(f"Cannot flag claim in status {claim.status}", status=claim.status)
        self._move(claim_id, claim.status, S.FLAGGED, prior_status=claim.status)
        return self.get(claim_id)

    def unflag(self, claim_id: str) -> Claim:
        claim = self.get(claim_id)
        if claim.status != S.FLAGGED.value:
            raise InvalidState(f"Claim {claim_id} is not flagged", status=claim.status)
        restore = ClaimStatus(claim.prior_status or S.PENDING.value)
        self._move(claim_id, claim.status, restore, prior_status=None)
        return self.get(claim_id)
