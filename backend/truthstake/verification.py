# truthstake/verification.py
"""
Multi-source claim verification.

One structured prompt goes to each configured model in order until a model
returns JSON that survives repair and shape validation. Every sub-score the
model did not provide is replaced by a heuristic, so a result is produced
even when every model fails.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .clients.llm_client import AIProvider
from .config import DEFAULT_MODEL_ORDER, DEFAULT_TRUSTED_DOMAINS, Settings
from .errors import ConfigurationError, ProviderFailure
from .evidence import EvidenceScorer, item_url, clamp100
from .fusion import DEFAULT_WEIGHTS, blend, normalize_weights, pick
from .json_repair import repair_json
from .prompts import VERIFICATION_PROMPT, format_evidence_urls, format_voters
from .schema import Breakdown, LLMScores, VerificationResult, VoterCredibility, WeightPlan
from .weights import tier_to_weight

logger = logging.getLogger(__name__)

MAX_SOURCES = 6
AI_NEUTRAL_SCORE = 60.0
NO_VOTERS_SCORE = 50.0


@dataclass(frozen=True)
class VerificationConfig:
    model_order: Tuple[str, ...] = tuple(DEFAULT_MODEL_ORDER.split(","))
    temperature: float = 0.15
    max_output_tokens: int = 900
    timeout_sec: float = 30.0
    weight_ai: float = DEFAULT_WEIGHTS["ai"]
    weight_evidence: float = DEFAULT_WEIGHTS["evidence"]
    weight_user_cred: float = DEFAULT_WEIGHTS["user_credibility"]
    weight_source: float = DEFAULT_WEIGHTS["source"]
    trusted_domains: Tuple[str, ...] = tuple(DEFAULT_TRUSTED_DOMAINS.split(","))

    @classmethod
    def from_settings(cls, s: Settings) -> "VerificationConfig":
        return cls(
            model_order=tuple(s.model_order),
            temperature=s.llm_temperature,
            max_output_tokens=s.llm_max_output_tokens,
            timeout_sec=s.llm_timeout_sec,
            weight_ai=s.weight_ai,
            weight_evidence=s.weight_evidence,
            weight_user_cred=s.weight_user_cred,
            weight_source=s.weight_source,
            trusted_domains=tuple(s.trusted_domain_list),
        )

    @property
    def default_weights(self) -> dict:
        return {
            "ai": self.weight_ai,
            "evidence": self.weight_evidence,
            "user_credibility": self.weight_user_cred,
            "source": self.weight_source,
        }


def dedupe(urls: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for u in urls:
        if u and u not in seen:
            seen.add(u)
            out.append(u)
    return out


def user_credibility_score(voters: Sequence[VoterCredibility]) -> float:
    """Stake-weighted average of badge-tier weight x 100; 50 with no voters."""
    if not voters:
        return NO_VOTERS_SCORE
    num = den = 0.0
    for v in voters:
        stake = v.stake if v.stake and v.stake > 0 else 1.0
        num += stake * tier_to_weight(v.badge_tier) * 100
        den += stake
    return clamp100(num / den) if den > 0 else NO_VOTERS_SCORE


def pick_sources(prefer_ai: bool, evidence_urls: Sequence[str], ai_sources: Sequence[str]) -> List[str]:
    ordered = list(ai_sources) + list(evidence_urls) if prefer_ai else list(evidence_urls) + list(ai_sources)
    return dedupe(ordered)[:MAX_SOURCES]


class VerificationOrchestrator:
    def __init__(self, provider: Optional[AIProvider], config: VerificationConfig = None,
                 scorer: EvidenceScorer = None):
        self.provider = provider
        self.config = config or VerificationConfig()
        self.scorer = scorer or EvidenceScorer(self.config.trusted_domains)
        # one worker per model so a hung attempt never blocks the next model
        self._executor = ThreadPoolExecutor(
            max_workers=max(2, len(self.config.model_order)),
            thread_name_prefix="verify",
        )

    def verify(
        self,
        claim: Any,
        evidence_sets: Sequence[Sequence[Any]] = (),
        voter_credibility: Sequence[Any] = (),
        weight_plan: Optional[WeightPlan] = None,
    ) -> VerificationResult:
        if self.provider is None:
            raise ConfigurationError("No AI provider configured for verification")
        if not self.config.model_order:
            raise ConfigurationError("No AI models configured for verification")

        if isinstance(weight_plan, dict):
            weight_plan = WeightPlan.model_validate(weight_plan)
        weights = normalize_weights(weight_plan, self.config.default_weights)

        evidence_items = [item for items in evidence_sets for item in items]
        evidence_urls = dedupe(item_url(item) for item in evidence_items)
        voters = [v if isinstance(v, VoterCredibility) else VoterCredibility.model_validate(v)
                  for v in voter_credibility]
        claim_url = getattr(claim, "url", "") or ""

        prompt = VERIFICATION_PROMPT.format(
            title=getattr(claim, "title", "") or "",
            url=claim_url,
            summary=getattr(claim, "summary", "") or "",
            evidence_urls=format_evidence_urls(evidence_urls),
            voters=format_voters(voters),
        )
        llm, model_used, tried = self._query_models(prompt)

        ai = pick(llm.ai_meta_score if llm else None, lambda: AI_NEUTRAL_SCORE)
        evidence = pick(llm.evidence_score if llm else None,
                        lambda: self.scorer.score_evidence(evidence_items))
        user_cred = pick(llm.user_credibility_score if llm else None,
                         lambda: user_credibility_score(voters))
        source = pick(llm.source_score if llm else None,
                      lambda: self.scorer.score_source_reliability(claim_url, evidence_urls))

        score, verdict = blend(ai, evidence, user_cred, source, weights)
        sources = pick_sources(weights.prefers_ai_sources(), evidence_urls, llm.ai_sources if llm else [])

        if llm:
            reasoning = (
                f"AI analyzed evidence ({evidence.value:g}), voter credibility ({user_cred.value:g}), "
                f"and sources ({source.value:g}). AI meta score: {ai.value:g}."
            )
        else:
            reasoning = "Heuristic decision based on evidence, voter credibility, and sources."

        logger.info(f"Verification: {verdict} ({score}) model={model_used} tried={tried}")
        return VerificationResult(
            result=verdict,
            final_score=score,
            confidence=score,
            reasoning=reasoning,
            breakdown=Breakdown(
                ai_score=ai,
                evidence_score=evidence,
                user_credibility_score=user_cred,
                source_score=source,
                ai_weight=weights.ai,
                evidence_weight=weights.evidence,
                user_cred_weight=weights.user_credibility,
                source_weight=weights.source,
                llm_notes=llm.notes if llm else [],
                llm_per_evidence=llm.per_evidence if llm else [],
            ),
            sources=sources,
            model_used=model_used,
            models_tried=tried,
        )

    def _query_models(self, prompt: str) -> Tuple[Optional[LLMScores], Optional[str], List[str]]:
        """Try each model in order; the first validated response wins."""
        tried: List[str] = []
        for model_id in self.config.model_order:
            tried.append(model_id)
            try:
                raw = self._call(model_id, prompt)
                parsed = repair_json(raw)
                if parsed is None:
                    raise ProviderFailure("JSON parse failed after repair", model=model_id)
                if not isinstance(parsed, dict):
                    raise ProviderFailure("Response is not a JSON object", model=model_id)
                try:
                    scores = LLMScores.model_validate(parsed)
                except ValidationError as e:
                    raise ProviderFailure(f"Response shape invalid: {e.error_count()} error(s)", model=model_id) from e
                return scores, model_id, tried
            except Exception as e:
                logger.warning(f"[{model_id}] failed -> {e}")

        logger.warning(f"All models failed ({tried}), using heuristics")
        return None, None, tried

    def _call(self, model_id: str, prompt: str) -> str:
        timeout = self.config.timeout_sec
        future = self._executor.submit(
            self.provider.generate,
            model_id,
            prompt,
            temperature=self.config.temperature,
            max_output_tokens=self.config.max_output_tokens,
            expect_json=True,
            timeout=timeout,
        )
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout:
            if not future.cancel():
                logger.warning(f"[{model_id}] abandoned after {timeout}s; provider call still running in background")
            raise ProviderFailure(f"timed out after {timeout}s", model=model_id)
