VERIFICATION_PROMPT = """You are a strict JSON generator. Output ONLY valid JSON (no prose, no code fences) with this exact shape and 0..100 integers:
{{
  "evidenceScore": 0,
  "userCredibilityScore": 0,
  "sourceScore": 0,
  "aiMetaScore": 0,
  "notes": ["..."],
  "perEvidence": [{{"url": "...", "score": 0, "comment": "..."}}],
  "aiSources": ["https://...", "..."]
}}

Definitions:
- evidenceScore: quality & coverage of provided evidence URLs for the claim.
- userCredibilityScore: credibility of voters based on badge tier and stake.
- sourceScore: reliability of the claim's origin + evidence domains.
- aiMetaScore: your own research-based confidence that the claim is true, after considering everything.
- aiSources: up to 6 URLs (news, primary/government, reputable orgs) that support your aiMetaScore.

Claim:
- Title: {title}
- URL: {url}
- Summary: {summary}

Evidence URLs:
{evidence_urls}

Voter credibility (badge & stake):
{voters}

Rules:
- If uncertain about some scores, use conservative mid-values (40..60) but still return valid JSON.
- NEVER include explanations outside of the JSON.
"""


def format_evidence_urls(urls):
    return "\n".join(f" {i}. {u}" for i, u in enumerate(urls, 1)) or " (none)"


def format_voters(voters):
    lines = []
    for v in voters:
        addr = (v.voter_address or "")[:8]
        lines.append(f" - addr:{addr}… tier:{v.badge_tier or 'none'} stake:{v.stake or 0} pos:{v.position or ''}")
    return "\n".join(lines) or " (none)"
