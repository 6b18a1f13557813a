"""
Request complexity scoring.

Deterministic sizing of a generation request. The score only drives the
advisory pre-check; settlement is always priced from measured usage.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Tuple


class ComplexityTier(Enum):
    """Scoring bands, ordered from cheapest to most expensive."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


# Integration names recognised in free text
INTEGRATION_KEYWORDS: Tuple[str, ...] = (
    "hubspot", "shopify", "slack", "gmail", "sheets", "airtable", "notion",
    "asana", "jira", "github", "linkedin", "facebook", "instagram", "twitter",
    "whatsapp", "telegram", "mongodb", "openai", "langchain", "stripe",
    "salesforce", "postgres", "mysql", "discord", "trello", "zendesk",
    "calendar", "drive", "dropbox", "webhook",
)

# Phrases that imply branching or multi-path control flow
BRANCHING_KEYWORDS: Tuple[str, ...] = (
    "if ", "else", "otherwise", "when ", "unless", "depending", "route",
    "branch", "switch", "approve", "reject", "escalate", "retry", "fallback",
    "for each", "loop", "parallel", "schedule", "wait",
)

_WORD_RE = re.compile(r"[A-Za-z0-9']+")


@dataclass(frozen=True)
class ComplexityEstimate:
    """Advisory sizing of one request."""
    score: int
    word_count: int
    branching_hits: int
    integration_hits: int
    app_count: int
    tier: ComplexityTier


def find_integrations(text: str, extra: Iterable[str] = ()) -> List[str]:
    """Integrations mentioned in ``text`` plus declared ones, in first-seen order."""
    lowered = text.lower()
    found: List[str] = []
    for name in INTEGRATION_KEYWORDS:
        if re.search(rf"\b{re.escape(name)}\b", lowered) and name not in found:
            found.append(name)
    for name in extra:
        name = name.strip().lower()
        if name and name not in found:
            found.append(name)
    return found


def score_request(
    prompt: str,
    declared_integrations: Iterable[str] = (),
    bands: Tuple[int, int, int] = (10, 20, 35),
) -> ComplexityEstimate:
    """Score a request and place it in a tier.

    score = min(words, 300) // 10
            + 3 * branching phrases
            + 2 * integrations mentioned
            + 5 * (distinct apps - 1)

    Args:
        prompt: Free-text request
        declared_integrations: Integration hints supplied with the request
        bands: Lower bounds of the MEDIUM, HIGH and VERY_HIGH tiers

    Returns:
        ComplexityEstimate for the request
    """
    lowered = prompt.lower()
    word_count = len(_WORD_RE.findall(prompt))
    branching_hits = sum(lowered.count(keyword) for keyword in BRANCHING_KEYWORDS)
    mentioned = find_integrations(prompt)
    apps = find_integrations(prompt, declared_integrations)

    score = (
        min(word_count, 300) // 10
        + 3 * branching_hits
        + 2 * len(mentioned)
        + 5 * max(0, len(apps) - 1)
    )

    return ComplexityEstimate(
        score=score,
        word_count=word_count,
        branching_hits=branching_hits,
        integration_hits=len(mentioned),
        app_count=len(apps),
        tier=tier_for_score(score, bands),
    )


def tier_for_score(score: int, bands: Tuple[int, int, int]) -> ComplexityTier:
    medium, high, very_high = bands
    if score >= very_high:
        return ComplexityTier.VERY_HIGH
    if score >= high:
        return ComplexityTier.HIGH
    if score >= medium:
        return ComplexityTier.MEDIUM
    return ComplexityTier.LOW
