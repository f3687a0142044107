# truthstake/storage.py (claims + votes)
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, Session, create_engine, select

from .errors import DuplicateVote
from .models import Claim, Vote

logger = logging.getLogger(__name__)

StatusFilter = Union[str, Iterable[str], None]


def _statuses(expected: StatusFilter) -> Optional[List[str]]:
    if expected is None:
        return None
    if isinstance(expected, str):
        return [expected]
    return list(expected)


class ClaimStore:
    """
    SQLModel-backed storage for claims and votes.

    Status changes go through conditional updates (UPDATE ... WHERE status IN ...)
    so only one caller can win a given transition. Vote uniqueness per
    (claim_id, voter_address) is enforced by the table's unique constraint.
    """

    def __init__(self, database_url: str = None, engine: Engine = None):
        if engine is None:
            engine = create_engine(database_url, echo=False)
        self.engine = engine
        SQLModel.metadata.create_all(self.engine)

    # ---------- claims ----------

    def create_claim(self, claim: Claim) -> Claim:
        with Session(self.engine) as session:
            session.add(claim)
            session.commit()
            session.refresh(claim)
        return claim

    def get_claim(self, claim_id: str) -> Optional[Claim]:
        with Session(self.engine) as session:
            return session.get(Claim, claim_id)

    def update_claim(
        self,
        claim_id: str,
        fields: Dict[str, Any],
        expected_status: StatusFilter = None,
    ) -> bool:
        """
        Update claim fields, optionally only if the current status is one of
        `expected_status`. Returns True if a row was updated.
        """
        stmt = update(Claim).where(Claim.claim_id == claim_id)
        statuses = _statuses(expected_status)
        if statuses is not None:
            stmt = stmt.where(Claim.status.in_(statuses))
        stmt = stmt.values(**fields)

        with Session(self.engine) as session:
            result = session.exec(stmt)
            session.commit()
            updated = result.rowcount == 1

        if not updated:
            logger.debug(f"Conditional update missed for claim {claim_id} (expected {statuses})")
        return updated

    # ---------- votes ----------

    def insert_vote(self, vote: Vote) -> Vote:
        with Session(self.engine) as session:
            session.add(vote)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise DuplicateVote(vote.claim_id, vote.voter_address)
            session.refresh(vote)
        return vote

    def find_vote(self, claim_id: str, voter_address: str) -> Optional[Vote]:
        with Session(self.engine) as session:
            stmt = select(Vote).where(Vote.claim_id == claim_id, Vote.voter_address == voter_address)
            return session.exec(stmt).first()

    def find_votes(self, claim_id: str, position: str = None) -> List[Vote]:
        with Session(self.engine) as session:
            stmt = select(Vote).where(Vote.claim_id == claim_id)
            if position is not None:
                stmt = stmt.where(Vote.position == position)
            return list(session.exec(stmt.order_by(Vote.id)).all())

    def update_votes(self, updates: Dict[int, Dict[str, Any]]) -> int:
        """Bulk update votes keyed by vote id."""
        with Session(self.engine) as session:
            for vote_id, values in updates.items():
                session.exec(update(Vote).where(Vote.id == vote_id).values(**values))
            session.commit()
        return len(updates)

    # ---------- settlement ----------

    def apply_settlement(
        self,
        claim_id: str,
        vote_updates: Dict[int, Dict[str, Any]],
        claim_fields: Dict[str, Any],
        expected_status: StatusFilter,
    ) -> bool:
        """
        Write vote rewards and the claim's verdict/payout/status in one
        transaction. Nothing is written unless the claim is still in
        `expected_status`.
        """
        statuses = _statuses(expected_status)
        with Session(self.engine) as session:
            result = session.exec(
                update(Claim)
                .where(Claim.claim_id == claim_id, Claim.status.in_(statuses))
                .values(**claim_fields)
            )
            if result.rowcount != 1:
                session.rollback()
                logger.warning(f"Settlement write rejected for claim {claim_id}: status no longer in {statuses}")
                return False
            for vote_id, values in vote_updates.items():
                session.exec(update(Vote).where(Vote.id == vote_id).values(**values))
            session.commit()
        return True
