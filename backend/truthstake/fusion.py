# truthstake/fusion.py
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple, Union

from .schema import AISubScore, HeuristicSubScore, WeightPlan

DEFAULT_WEIGHTS = {"ai": 0.35, "evidence": 0.25, "user_credibility": 0.20, "source": 0.20}
TRUTH_THRESHOLD = 50

SubScoreValue = Union[AISubScore, HeuristicSubScore]


@dataclass(frozen=True)
class NormalizedWeights:
    ai: float
    evidence: float
    user_credibility: float
    source: float

    def prefers_ai_sources(self) -> bool:
        # AI weight high enough and at least the other three combined
        return self.ai >= 0.3 and self.ai >= max(0.0, 1.0 - self.ai)


def normalize_weights(plan: Optional[WeightPlan] = None, defaults: dict = None) -> NormalizedWeights:
    """Fill missing weights from defaults and scale them to sum to 1."""
    defaults = defaults or DEFAULT_WEIGHTS
    raw = {}
    for name, fallback in defaults.items():
        value = getattr(plan, name, None) if plan is not None else None
        raw[name] = float(fallback if value is None else value)

    s = sum(raw.values())
    if s <= 0:
        # all-zero plan: nothing to scale, fall back to defaults
        raw = {k: float(v) for k, v in defaults.items()}
        s = sum(raw.values())
    return NormalizedWeights(**{k: v / s for k, v in raw.items()})


def pick(ai_value: Optional[float], heuristic) -> SubScoreValue:
    """Use the validated AI value when there is one, else compute the heuristic."""
    if ai_value is not None:
        return AISubScore(value=float(ai_value))
    return HeuristicSubScore(value=float(heuristic()))


def round_half_up(x: float) -> int:
    return int(Decimal(str(x)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def blend(ai: SubScoreValue, evidence: SubScoreValue, user_credibility: SubScoreValue,
          source: SubScoreValue, weights: NormalizedWeights) -> Tuple[int, str]:
    """Weighted sum of the four sub-scores, rounded and clamped to 0..100."""
    total = (
        ai.value * weights.ai
        + evidence.value * weights.evidence
        + user_credibility.value * weights.user_credibility
        + source.value * weights.source
    )
    score = min(100, max(0, round_half_up(total)))
    verdict = "Truth" if score >= TRUTH_THRESHOLD else "Fake"
    return score, verdict
