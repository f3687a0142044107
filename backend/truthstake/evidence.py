# truthstake/evidence.py
"""
Heuristic credibility scoring for evidence and source URLs.

Used for any sub-score the AI provider could not supply. Scores are on a
0..100 scale.
"""
import logging
from typing import Any, Iterable, List, Optional, Sequence

import tldextract

from .config import DEFAULT_TRUSTED_DOMAINS

logger = logging.getLogger(__name__)

EMPTY_EVIDENCE_SCORE = 28.0
TRUSTED_DOMAIN_SCORE = 62.0
GOV_EDU_SCORE = 68.0
UNKNOWN_DOMAIN_SCORE = 45.0
DUPLICATE_PENALTY = 3.0

NO_SOURCES_SCORE = 38.0
UNTRUSTED_SOURCES_BASE = 42.0
TRUSTED_RATIO_POINTS = 55.0
GOV_EDU_BONUS_EACH = 2.0
GOV_EDU_BONUS_MAX = 8.0

# bundled public-suffix snapshot only, never fetched at runtime
_extract = tldextract.TLDExtract(suffix_list_urls=())


def clamp100(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def extract_domain(url: str) -> str:
    """Registered domain of a URL, e.g. https://www.bbc.co.uk/news -> bbc.co.uk"""
    url = str(url or "")
    t = _extract(url)
    domain = ".".join([p for p in [t.domain, t.suffix] if p])
    logger.debug(f"Extracted domain {domain!r} from {url!r}")
    return domain.lower()


def is_gov_or_edu(url: str) -> bool:
    t = _extract(str(url or ""))
    return bool(t.domain) and t.suffix.split(".")[0].lower() in ("gov", "edu")


def item_url(item: Any) -> str:
    if isinstance(item, str):
        return item.strip()
    if isinstance(item, dict):
        return str(item.get("url") or "").strip()
    return str(getattr(item, "url", "") or "").strip()


def _item_quality(item: Any) -> Optional[float]:
    if isinstance(item, str):
        return None
    if isinstance(item, dict):
        q = item.get("quality_score", item.get("qualityScore"))
    else:
        q = getattr(item, "quality_score", None)
    if isinstance(q, bool) or not isinstance(q, (int, float)):
        return None
    return float(q)


class EvidenceScorer:
    def __init__(self, trusted_domains: Iterable[str] = None):
        if trusted_domains is None:
            trusted_domains = DEFAULT_TRUSTED_DOMAINS.split(",")
        self.trusted_domains = frozenset(d.strip().lower() for d in trusted_domains if d.strip())

    def is_trusted(self, url: str) -> bool:
        domain = extract_domain(url)
        if not domain:
            return False
        return any(domain == td or domain.endswith("." + td) for td in self.trusted_domains)

    def score_item(self, item: Any) -> float:
        quality = _item_quality(item)
        if quality is not None:
            return clamp100(quality * 100 if quality <= 1 else quality)
        url = item_url(item)
        if is_gov_or_edu(url):
            return GOV_EDU_SCORE
        if self.is_trusted(url):
            return TRUSTED_DOMAIN_SCORE
        return UNKNOWN_DOMAIN_SCORE

    def score_evidence(self, evidence: Sequence[Any]) -> float:
        """
        Average item score minus a fixed penalty per repeated URL.

        Each distinct URL contributes once to the average (first occurrence
        wins), so repeating a link can only lower the score.
        """
        if not evidence:
            return EMPTY_EVIDENCE_SCORE

        seen = set()
        values: List[float] = []
        repeats = 0
        for item in evidence:
            url = item_url(item)
            if url:
                if url in seen:
                    repeats += 1
                    continue
                seen.add(url)
            values.append(self.score_item(item))

        if not values:
            return EMPTY_EVIDENCE_SCORE
        avg = sum(values) / len(values)
        if repeats:
            logger.debug(f"Evidence has {repeats} repeated URL(s), penalty {repeats * DUPLICATE_PENALTY}")
        return clamp100(avg - repeats * DUPLICATE_PENALTY)

    def score_source_reliability(self, claim_url: Optional[str], evidence_urls: Sequence[str]) -> float:
        urls = ([claim_url] if claim_url else []) + [u for u in evidence_urls if u]
        if not urls:
            return NO_SOURCES_SCORE

        hits = sum(1 for u in urls if self.is_trusted(u))
        gov_edu = sum(1 for u in urls if is_gov_or_edu(u))
        ratio = hits / len(urls)
        bonus = min(GOV_EDU_BONUS_MAX, gov_edu * GOV_EDU_BONUS_EACH)
        return clamp100(UNTRUSTED_SOURCES_BASE + ratio * TRUSTED_RATIO_POINTS + bonus)


_default_scorer = EvidenceScorer()


def score_evidence(evidence: Sequence[Any]) -> float:
    return _default_scorer.score_evidence(evidence)


def score_source_reliability(claim_url: Optional[str], evidence_urls: Sequence[str]) -> float:
    return _default_scorer.score_source_reliability(claim_url, evidence_urls)
