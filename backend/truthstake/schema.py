# truthstake/schema.py
from datetime import datetime
from decimal import Decimal
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from .models import utcnow

ADDRESS_RE = re.compile(r"^0x[a-f0-9]{40}$")
MINOR_UNITS_RE = re.compile(r"^(0|[1-9][0-9]*)$")

Position = Literal["truth", "fake"]
Category = Literal["Tech", "Health", "Politics", "Finance", "Science"]
Verdict = Literal["Truth", "Fake", "Uncertain"]


# ---------- inputs ----------

class EvidenceItem(BaseModel):
    url: str
    domain: Optional[str] = None
    quality_score: Optional[float] = None  # 0..1 or 0..100
    added_by: Optional[str] = None


class ClaimIn(BaseModel):
    title: str = Field(min_length=1)
    summary: str = ""
    url: str = ""
    category: Category
    poster: str = Field(min_length=1)
    evidence: List[EvidenceItem] = []
    voting_duration_sec: Optional[int] = None


class OpenVotingIn(BaseModel):
    started_at: Optional[datetime] = None  # confirmed block time
    tx_hash: Optional[str] = None
    chain_id: Optional[int] = None
    block_number: Optional[int] = None


class VoteIn(BaseModel):
    voter_address: str
    position: Position
    stake: Decimal
    stake_wei: Optional[str] = None  # exact on-chain amount, derived from stake if absent
    evidence: List[str] = Field(min_length=1)
    evidence_quality_score: float = Field(default=1.0, ge=0, le=1)
    weight_truth_score: float = Field(default=1.0, ge=0, le=1)
    badge_tier: str = ""
    tx_hash: str = ""
    block_number: Optional[int] = None
    chain_id: Optional[int] = None

    @field_validator("voter_address", mode="before")
    @classmethod
    def normalize_address(cls, v):
        v = str(v or "").strip().lower()
        if not ADDRESS_RE.match(v):
            raise ValueError("Invalid EVM address")
        return v

    @field_validator("stake_wei", mode="before")
    @classmethod
    def canonical_minor_units(cls, v):
        if v is None or v == "":
            return None
        v = str(v)
        if not MINOR_UNITS_RE.match(v):
            raise ValueError("stake_wei must be a canonical non-negative integer string")
        return v

    @field_validator("evidence")
    @classmethod
    def non_blank_urls(cls, v):
        urls = [u.strip() for u in v if u and u.strip()]
        if not urls:
            raise ValueError("At least one evidence URL is required")
        return urls


class VoterCredibility(BaseModel):
    voter_address: str = ""
    badge_tier: str = ""
    stake: float = 0.0
    position: Optional[str] = None


class WeightPlan(BaseModel):
    ai: Optional[float] = Field(default=None, ge=0)
    evidence: Optional[float] = Field(default=None, ge=0)
    user_credibility: Optional[float] = Field(default=None, ge=0)
    source: Optional[float] = Field(default=None, ge=0)


class ClaimSummary(BaseModel):
    title: str = ""
    url: str = ""
    summary: str = ""


class VerifyIn(BaseModel):
    weight_plan: Optional[WeightPlan] = None


class FinalizeIn(BaseModel):
    fee_bps: Optional[int] = None


# ---------- AI response shape ----------

Score0to100 = Annotated[float, Field(ge=0, le=100, strict=True, allow_inf_nan=False)]


class LLMScores(BaseModel):
    """The JSON object the verification prompt asks the model for."""
    model_config = ConfigDict(populate_by_name=True)

    evidence_score: Score0to100 = Field(alias="evidenceScore")
    user_credibility_score: Score0to100 = Field(alias="userCredibilityScore")
    source_score: Score0to100 = Field(alias="sourceScore")
    ai_meta_score: Score0to100 = Field(alias="aiMetaScore")
    notes: List[Any]
    per_evidence: List[Any] = Field(alias="perEvidence")
    ai_sources: List[str] = Field(default_factory=list, alias="aiSources")

    @field_validator("ai_sources", mode="before")
    @classmethod
    def keep_url_strings(cls, v):
        if not isinstance(v, list):
            return []
        return [u.strip() for u in v if isinstance(u, str) and u.strip()]


# ---------- verification result ----------

class AISubScore(BaseModel):
    source: Literal["ai"] = "ai"
    value: float


class HeuristicSubScore(BaseModel):
    source: Literal["heuristic"] = "heuristic"
    value: float


SubScore = Annotated[Union[AISubScore, HeuristicSubScore], Field(discriminator="source")]


class Breakdown(BaseModel):
    ai_score: SubScore
    evidence_score: SubScore
    user_credibility_score: SubScore
    source_score: SubScore
    ai_weight: float
    evidence_weight: float
    user_cred_weight: float
    source_weight: float
    llm_notes: List[Any] = []
    llm_per_evidence: List[Any] = []


class VerificationResult(BaseModel):
    result: Verdict = "Uncertain"
    final_score: int = Field(default=0, ge=0, le=100)
    confidence: int = Field(default=0, ge=0, le=100)
    reasoning: str = ""
    breakdown: Optional[Breakdown] = None
    sources: List[str] = Field(default_factory=list, max_length=6)
    verified_at: datetime = Field(default_factory=utcnow)
    model_used: Optional[str] = None
    models_tried: List[str] = []


# ---------- settlement ----------

class SideTotals(BaseModel):
    votes: int = 0
    stake: str = "0"  # decimal mirror, native units
    weight: str = "0"
    stake_wei: str = "0"
    weight_wei: str = "0"


class Totals(BaseModel):
    truth: SideTotals = SideTotals()
    fake: SideTotals = SideTotals()


class FinalVerdict(BaseModel):
    side: Position
    score: int
    reason: str = ""
    sources: List[str] = []


class PayoutRecord(BaseModel):
    status: Literal["pending", "settled", "skipped"] = "pending"
    distributable_wei: str = "0"
    pool: str = "0"  # decimal mirror of distributable_wei, display only
    fee_wei: str = "0"
    per_weight_wei: str = "0"
    tx_hash: str = ""


class VoteReward(BaseModel):
    vote_id: int
    voter_address: str
    weight_wei: str
    reward_wei: str


class SettlementOutcome(BaseModel):
    claim_id: str
    winner: Position
    loser: Position
    fee_bps: int
    totals: Totals
    final_verdict: FinalVerdict
    payout: PayoutRecord
    rewards: List[VoteReward] = []
    total_distributed_wei: str = "0"
    message: str = ""
