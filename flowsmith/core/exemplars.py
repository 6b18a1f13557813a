"""
Exemplar corpus and selection.

A fixed, versioned set of reference workflows used to ground generation.
Selection is a pure function of the request and the corpus: the same
inputs always give the same exemplars in the same order.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .complexity import ComplexityEstimate, ComplexityTier, score_request
from .request import GenerationRequest


CORPUS_VERSION = "2025.02"


class ExemplarComplexity(Enum):
    SIMPLE = 0
    MEDIUM = 1
    COMPLEX = 2


@dataclass(frozen=True)
class Exemplar:
    """A read-only reference workflow."""
    name: str
    description: str
    category: str
    tags: Tuple[str, ...]
    complexity: ExemplarComplexity
    node_count: int
    node_types: Tuple[str, ...]


_N = "n8n-nodes-base."

CORPUS: Tuple[Exemplar, ...] = (
    Exemplar(
        name="AI Agent Routing",
        description="AI-powered decision routing with switch logic and multiple outputs",
        category="AI & Automation",
        tags=("ai", "agent", "routing", "decision", "switch", "langchain", "openai"),
        complexity=ExemplarComplexity.SIMPLE,
        node_count=10,
        node_types=(_N + "webhook", "@n8n/n8n-nodes-langchain.agent", _N + "switch", _N + "respondToWebhook"),
    ),
    Exemplar(
        name="WhatsApp RAG Chatbot",
        description="Chatbot with retrieval, vector search and multi-modal input",
        category="AI & Automation",
        tags=("whatsapp", "chatbot", "rag", "vector", "pdf", "ai", "langchain", "mongodb", "messaging"),
        complexity=ExemplarComplexity.COMPLEX,
        node_count=50,
        node_types=(_N + "whatsAppTrigger", _N + "switch", "@n8n/n8n-nodes-langchain.vectorStoreMongoDBAtlas",
                    "@n8n/n8n-nodes-langchain.agent", _N + "whatsApp"),
    ),
    Exemplar(
        name="Social Media Automation",
        description="Multi-platform content creation for LinkedIn, Instagram, Facebook and Twitter",
        category="Marketing",
        tags=("social media", "content", "linkedin", "instagram", "facebook", "twitter", "marketing", "ai"),
        complexity=ExemplarComplexity.COMPLEX,
        node_count=60,
        node_types=(_N + "scheduleTrigger", _N + "openAi", _N + "linkedIn", _N + "facebookGraphApi", _N + "twitter"),
    ),
    Exemplar(
        name="Token Usage Tracking",
        description="Monitor AI token usage and estimate cost in a spreadsheet",
        category="Analytics",
        tags=("tracking", "monitoring", "cost", "analytics", "token", "ai", "sheets"),
        complexity=ExemplarComplexity.MEDIUM,
        node_count=25,
        node_types=(_N + "executeWorkflowTrigger", _N + "code", _N + "googleSheets", _N + "aggregate"),
    ),
    Exemplar(
        name="HubSpot Customer Onboarding",
        description="Customer onboarding with CRM, email and calendar",
        category="CRM & Sales",
        tags=("hubspot", "crm", "onboarding", "customer", "gmail", "calendar", "sales"),
        complexity=ExemplarComplexity.MEDIUM,
        node_count=35,
        node_types=(_N + "hubspotTrigger", _N + "hubspot", _N + "gmail", _N + "googleCalendar", _N + "if"),
    ),
    Exemplar(
        name="LinkedIn Lead Scoring",
        description="Lead enrichment and scoring with a spreadsheet CRM",
        category="CRM & Sales",
        tags=("linkedin", "lead", "scoring", "sales", "crm", "sheets", "enrichment"),
        complexity=ExemplarComplexity.MEDIUM,
        node_count=28,
        node_types=(_N + "googleSheetsTrigger", _N + "httpRequest", _N + "code", _N + "googleSheets"),
    ),
    Exemplar(
        name="AI Email Marketing",
        description="Personalized email campaigns with generated content",
        category="Marketing",
        tags=("email", "marketing", "ai", "personalization", "campaign", "gmail"),
        complexity=ExemplarComplexity.MEDIUM,
        node_count=30,
        node_types=(_N + "scheduleTrigger", _N + "googleSheets", _N + "openAi", _N + "gmail", _N + "wait"),
    ),
    Exemplar(
        name="Shopify to HubSpot Sync",
        description="E-commerce order sync to CRM",
        category="E-commerce",
        tags=("shopify", "hubspot", "ecommerce", "order", "crm", "sync", "customer"),
        complexity=ExemplarComplexity.SIMPLE,
        node_count=12,
        node_types=(_N + "shopifyTrigger", _N + "set", _N + "hubspot"),
    ),
    Exemplar(
        name="Google Sheets Gmail Automation",
        description="Data processing and automated email workflows",
        category="Data & Communication",
        tags=("sheets", "gmail", "data", "email", "automation", "sync"),
        complexity=ExemplarComplexity.COMPLEX,
        node_count=45,
        node_types=(_N + "googleSheetsTrigger", _N + "splitInBatches", _N + "if", _N + "gmail", _N + "googleSheets"),
    ),
    Exemplar(
        name="Airtable Database Operations",
        description="Database automation and record management",
        category="Data Operations",
        tags=("airtable", "database", "data", "automation", "records"),
        complexity=ExemplarComplexity.MEDIUM,
        node_count=22,
        node_types=(_N + "airtableTrigger", _N + "airtable", _N + "merge", _N + "set"),
    ),
    Exemplar(
        name="Slack Team Notifications",
        description="Automated team alerts and notifications",
        category="Communication",
        tags=("slack", "notification", "alert", "team", "communication", "webhook"),
        complexity=ExemplarComplexity.MEDIUM,
        node_count=32,
        node_types=(_N + "webhook", _N + "switch", _N + "slack", _N + "respondToWebhook"),
    ),
    Exemplar(
        name="Asana to Notion Sync",
        description="Cross-platform project and task synchronization",
        category="Project Management",
        tags=("asana", "notion", "project", "task", "sync", "productivity"),
        complexity=ExemplarComplexity.MEDIUM,
        node_count=18,
        node_types=(_N + "asanaTrigger", _N + "notion", _N + "if", _N + "asana"),
    ),
    Exemplar(
        name="Jira Ticket Management",
        description="Issue tracking and ticket automation",
        category="Project Management",
        tags=("jira", "ticket", "issue", "tracking", "devops", "project"),
        complexity=ExemplarComplexity.MEDIUM,
        node_count=16,
        node_types=(_N + "jiraTrigger", _N + "jira", _N + "slack"),
    ),
    Exemplar(
        name="GitHub DevOps Automation",
        description="CI/CD and repository automation workflows",
        category="Developer Tools",
        tags=("github", "devops", "ci/cd", "repository", "automation", "developer"),
        complexity=ExemplarComplexity.COMPLEX,
        node_count=38,
        node_types=(_N + "githubTrigger", _N + "github", _N + "if", _N + "httpRequest", _N + "slack"),
    ),
)

# Vocabulary matched against the request text
_VOCABULARY = (
    "hubspot", "shopify", "slack", "gmail", "sheets", "airtable", "notion",
    "asana", "jira", "github", "linkedin", "facebook", "instagram", "twitter",
    "whatsapp", "telegram", "mongodb", "openai", "langchain",
    "chatbot", "crm", "email", "lead", "customer", "order", "sync", "automation",
    "notification", "alert", "ai", "agent", "tracking", "monitoring", "project",
    "task", "ticket", "devops", "marketing", "social media", "onboarding", "data",
)

_WORKFLOW_TYPE_CATEGORIES = {
    "customer_journey": ("CRM & Sales", "Marketing", "E-commerce"),
    "data_pipeline": ("Data Operations", "Data & Communication", "Analytics"),
    "multi_department": ("Communication", "Project Management"),
    "complex_integration": ("AI & Automation", "Developer Tools"),
}

_TIER_BUCKETS = {
    ComplexityTier.LOW: ExemplarComplexity.SIMPLE,
    ComplexityTier.MEDIUM: ExemplarComplexity.MEDIUM,
    ComplexityTier.HIGH: ExemplarComplexity.COMPLEX,
    ComplexityTier.VERY_HIGH: ExemplarComplexity.COMPLEX,
}

TAG_WEIGHT = 10
CATEGORY_BONUS = 5
PROXIMITY_WEIGHT = 2


def request_keywords(request: GenerationRequest) -> List[str]:
    """Vocabulary words found in the prompt plus declared integrations."""
    text = request.prompt.lower()
    keywords = [word for word in _VOCABULARY if re.search(rf"\b{re.escape(word)}\b", text)]
    for name in request.integrations:
        name = name.strip().lower()
        if name and name not in keywords:
            keywords.append(name)
    return keywords


def score_exemplar(
    exemplar: Exemplar,
    keywords: Sequence[str],
    workflow_type: Optional[str],
    estimate: ComplexityEstimate,
) -> int:
    """keyword overlap + category match + complexity proximity."""
    overlap = len(set(keywords) & set(exemplar.tags))

    category = exemplar.category.lower()
    category_match = (
        exemplar.category in _WORKFLOW_TYPE_CATEGORIES.get(workflow_type or "", ())
        or any(keyword in category for keyword in keywords)
    )

    distance = abs(_TIER_BUCKETS[estimate.tier].value - exemplar.complexity.value)
    proximity = max(0, 2 - distance) * PROXIMITY_WEIGHT

    return TAG_WEIGHT * overlap + (CATEGORY_BONUS if category_match else 0) + proximity


def select_exemplars(
    request: GenerationRequest,
    k: int,
    corpus: Sequence[Exemplar] = CORPUS,
    estimate: Optional[ComplexityEstimate] = None,
) -> List[Exemplar]:
    """Pick up to ``k`` relevant, structurally varied exemplars.

    No two picks share a category unless the corpus has fewer than ``k``
    categories; then the free slots are filled from the best remaining
    exemplars. Ties keep corpus order. Never fails: an empty corpus gives
    an empty list.

    Args:
        request: The generation request
        k: Maximum number of exemplars
        corpus: Reference workflows, in their stable corpus order
        estimate: Complexity estimate; computed from the request when omitted

    Returns:
        Up to ``k`` exemplars, best first
    """
    if k <= 0 or not corpus:
        return []

    if estimate is None:
        estimate = score_request(request.prompt, request.integrations)
    keywords = request_keywords(request)

    ranked = sorted(
        enumerate(corpus),
        key=lambda item: (-score_exemplar(item[1], keywords, request.workflow_type, estimate), item[0]),
    )

    chosen: List[int] = []
    categories = set()
    for position, (_, exemplar) in enumerate(ranked):
        if len(chosen) == k:
            break
        if exemplar.category not in categories:
            categories.add(exemplar.category)
            chosen.append(position)

    # Only reachable when the corpus has fewer than k categories
    for position in range(len(ranked)):
        if len(chosen) == k:
            break
        if position not in chosen:
            chosen.append(position)

    return [ranked[position][1] for position in sorted(chosen)]


def exemplars_by_category(category: str, corpus: Sequence[Exemplar] = CORPUS) -> List[Exemplar]:
    return [exemplar for exemplar in corpus if exemplar.category == category]


def exemplars_by_complexity(
    complexity: ExemplarComplexity,
    corpus: Sequence[Exemplar] = CORPUS,
) -> List[Exemplar]:
    return [exemplar for exemplar in corpus if exemplar.complexity is complexity]
