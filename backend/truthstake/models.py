# truthstake/models.py
from sqlalchemy import Column, DateTime, JSON, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field
from typing import Optional, List
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC; naive values are taken to already be UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC in and out, including on SQLite which stores no offset."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


def utc_column(nullable: bool = True) -> Column:
    return Column(UTCDateTime(), nullable=nullable)


class Claim(SQLModel, table=True):
    claim_id: str = Field(primary_key=True)
    title: str
    summary: str = ""
    url: str = ""
    category: str = Field(index=True)
    poster: str = Field(index=True)
    evidence: List[dict] = Field(default_factory=list, sa_column=Column(JSON))

    posted_at: datetime = Field(default_factory=utcnow, sa_column=utc_column(nullable=False))
    voting_duration_sec: int = 300
    voting_starts_at: Optional[datetime] = Field(default=None, sa_column=utc_column())
    voting_ends_at: Optional[datetime] = Field(default=None, sa_column=utc_column())

    status: str = Field(default="pending", index=True)
    prior_status: Optional[str] = None  # restored on unflag

    ai_verification: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    totals: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    final_verdict: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    payout: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    finalized_at: Optional[datetime] = Field(default=None, sa_column=utc_column())

    tx_hash: Optional[str] = None
    chain_id: Optional[int] = None
    block_number: Optional[int] = None


class Vote(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("claim_id", "voter_address", name="uq_vote_claim_voter"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    claim_id: str = Field(index=True)
    voter_address: str = Field(index=True)
    position: str = Field(index=True)  # truth|fake

    stake: float  # display mirror
    stake_wei: str
    weight: float  # display mirror
    weight_wei: str

    evidence: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    evidence_quality_score: float = 1.0
    weight_truth_score: float = 1.0
    badge_tier: str = ""

    reward_wei: str = "0"
    reward: float = 0.0
    rewarded: bool = False

    tx_hash: str = ""
    block_number: Optional[int] = None
    chain_id: Optional[int] = None
    voted_at: datetime = Field(default_factory=utcnow, sa_column=utc_column(nullable=False))
