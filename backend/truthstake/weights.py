# truthstake/weights.py
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import Union

from .errors import InvalidInput, InvalidStake


logger = logging.getLogger(__name__)

WEI_PER_UNIT = 10 ** 18
BPS = 10_000
DEFAULT_MIN_STAKE = Decimal("0.001")

TIER_MULTIPLIER_BPS = {
    "expert": 10_000,
    "gold": 8_000,
    "silver": 6_000,
    "bronze": 5_000,
}
DEFAULT_TIER_BPS = 5_000

DIGITS_RE = re.compile(r"^[0-9]+$")

Number = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class VoteWeight:
    stake_wei: int
    weight_wei: int
    weight: Decimal  # display mirror of weight_wei


def tier_multiplier_bps(badge_tier: str) -> int:
    return TIER_MULTIPLIER_BPS.get(str(badge_tier or "").strip().lower(), DEFAULT_TIER_BPS)


def tier_to_weight(badge_tier: str) -> float:
    """expert=1.0, gold=0.8, silver=0.6, bronze/unknown=0.5"""
    return tier_multiplier_bps(badge_tier) / BPS


def parse_minor_units(value, field: str = "minor_units") -> int:
    """Parse an integer-string amount. Missing values count as zero."""
    if value is None or value == "":
        return 0
    text = str(value).strip()
    if not DIGITS_RE.match(text):
        raise InvalidInput(f"{field} must be a non-negative integer string, got {value!r}", field=field)
    return int(text)


def format_minor_units(amount: int) -> str:
    if amount < 0:
        raise ValueError(f"negative minor-unit amount: {amount}")
    return str(int(amount))


def to_decimal(value: Number, field: str = "stake") -> Decimal:
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidInput(f"{field} is not a number: {value!r}", field=field)
    if not d.is_finite():
        raise InvalidInput(f"{field} must be finite", field=field)
    return d


def to_wei(amount: Number) -> int:
    """Native units to minor units, truncating below 1 wei."""
    d = to_decimal(amount)
    return int((d * WEI_PER_UNIT).to_integral_value(rounding=ROUND_DOWN))


def from_wei(amount: int) -> Decimal:
    return Decimal(amount) / WEI_PER_UNIT


def _score_bps(score: float) -> int:
    s = min(max(to_decimal(score, "score"), Decimal(0)), Decimal(1))
    return int((s * 2_500).to_integral_value(rounding=ROUND_HALF_UP))


def secondary_modifier_bps(evidence_quality_score: float, weight_truth_score: float) -> int:
    """Evidence and truth scores scale weight within [0.5, 1.0]."""
    return 5_000 + _score_bps(evidence_quality_score) + _score_bps(weight_truth_score)


def compute_weight_wei(stake_wei: int, badge_tier: str, evidence_quality_score: float = 1.0,
                       weight_truth_score: float = 1.0) -> int:
    tier = tier_multiplier_bps(badge_tier)
    modifier = secondary_modifier_bps(evidence_quality_score, weight_truth_score)
    return stake_wei * tier * modifier // (BPS * BPS)


def compute_weight(
    stake: Number,
    badge_tier: str = "",
    evidence_quality_score: float = 1.0,
    weight_truth_score: float = 1.0,
    min_stake: Decimal = DEFAULT_MIN_STAKE,
    stake_wei: int = None,
) -> VoteWeight:
    """
    Voting weight for a stake.

    weight_wei = stake_wei * tier * (0.5 + 0.25*evidence_quality + 0.25*truth_score)

    `stake_wei`, when given, is the exact on-chain amount and takes precedence
    over `stake` for the integer result; `stake` is still checked against the
    minimum.
    """
    d_stake = to_decimal(stake)
    if d_stake < min_stake:
        raise InvalidStake(f"Minimum stake is {min_stake}, got {d_stake}")

    if stake_wei is None:
        stake_wei = to_wei(d_stake)
    if stake_wei < to_wei(min_stake):
        raise InvalidStake(f"stake_wei {stake_wei} is below the minimum stake {min_stake}")

    weight_wei = compute_weight_wei(stake_wei, badge_tier, evidence_quality_score, weight_truth_score)
    return VoteWeight(stake_wei=stake_wei, weight_wei=weight_wei, weight=from_wei(weight_wei))
