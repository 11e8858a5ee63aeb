"""
Brand Awareness Probing

Direct "what do you know about X" questions, as opposed to the organic
customer-style questions of the scan:

- brand_recall: does the platform know the business at all?
- service_check: does it know the business offers each of its top services?
- competitor_compare: how does it position the business against a competitor?

Answers are judged with string heuristics; nothing here calls a second model.
"""

import asyncio
import logging
import time
import unicodedata
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..analyzer.content import BusinessAnalysis
from ..integrations.base import BaseAIProvider

logger = logging.getLogger(__name__)

BRAND_SYSTEM_PROMPT = """You are a helpful assistant providing information about businesses based on current web search results. When asked about a specific company:
- Share what you find about the business from your search
- Be specific about their services, products, and location
- If you can't find specific information, say so clearly
- Do not make up information about businesses you can't verify"""

MAX_SERVICE_CHECKS = 3

UNKNOWN_PHRASES = [
    "i don't have specific information",
    "i don't have specific details",
    "i don't have detailed information",
    "i'm not familiar with",
    "i don't have data about",
    "i cannot find information",
    "no specific information",
    "i'm unable to provide specific",
    "i don't have access to",
    "i don't know about",
    "i'm not aware of",
    "i couldn't find any",
    "no information available",
    "it's best to visit their official website",
    "visit their website directly",
    "contact them directly",
    "check their official website",
    "i don't have real-time",
    "i don't have current information",
    "my knowledge doesn't include",
    "i cannot provide specific details",
]

CONFIDENT_PHRASES = ["known for", "specializes in", "recognized for", "expertise in", "leading provider"]


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class BrandAwarenessQuery:
    query_type: str          # brand_recall, service_check, competitor_compare
    prompt: str
    tested_entity: str
    tested_domain: Optional[str] = None
    tested_attribute: Optional[str] = None
    compared_to: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BrandAwarenessQuery":
        return cls(**data)


@dataclass
class BrandAwarenessResult:
    platform: str
    query_type: str
    tested_entity: str
    tested_attribute: Optional[str] = None
    entity_recognized: bool = False
    attribute_mentioned: bool = False
    response_text: str = ""
    confidence_score: int = 0
    compared_to: Optional[str] = None
    positioning: str = "not_compared"
    response_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BrandAwarenessResult":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


@dataclass
class BrandAwarenessAnalysis:
    """Roll-up across platforms."""
    overall_recognition: int = 0
    service_knowledge: List[Dict[str, Any]] = field(default_factory=list)
    knowledge_gaps: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# QUERY GENERATION
# =============================================================================

def generate_brand_awareness_queries(
    analysis: BusinessAnalysis,
    domain: str,
    competitors: Optional[List[str]] = None,
) -> List[BrandAwarenessQuery]:
    """One recall probe, up to three service checks, one comparison per competitor."""
    business_name = analysis.business_name or domain
    identifier = f"{business_name} ({domain})" if analysis.business_name else domain

    queries = [
        BrandAwarenessQuery(
            query_type="brand_recall",
            prompt=(
                f"What do you know about {identifier}? What services do they offer and where "
                f"are they located? Please include any information you have about their "
                f"website at {domain}."
            ),
            tested_entity=business_name,
            tested_domain=domain,
        )
    ]

    for service in analysis.services[:MAX_SERVICE_CHECKS]:
        queries.append(BrandAwarenessQuery(
            query_type="service_check",
            prompt=(
                f'I found {identifier} online. Based on your knowledge, does this specific '
                f'company offer "{service}" as one of their services? I\'m specifically asking '
                f'about {business_name} at {domain}, not about {service} in general.'
            ),
            tested_entity=business_name,
            tested_domain=domain,
            tested_attribute=service,
        ))

    location_clause = f" in {analysis.location}" if analysis.location else ""
    for competitor in competitors or []:
        queries.append(BrandAwarenessQuery(
            query_type="competitor_compare",
            prompt=(
                f"I'm choosing between {business_name} and {competitor} for "
                f"{analysis.business_type} services{location_clause}. Compare these two "
                f"companies directly - what are the pros and cons of each? Which would you "
                f"recommend and why?"
            ),
            tested_entity=business_name,
            tested_domain=domain,
            compared_to=competitor,
        ))

    return queries


# =============================================================================
# RESPONSE HEURISTICS
# =============================================================================

def strip_accents(text: str) -> str:
    """"Ella Baché" -> "Ella Bache"."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def check_entity_recognized(response: str, entity: str, domain: Optional[str] = None) -> bool:
    """Entity or domain present, and no "I don't know this business" phrasing."""
    lower_response = strip_accents(response.lower())
    lower_entity = strip_accents(entity.lower())

    has_entity = bool(lower_entity) and lower_entity in lower_response
    has_domain = bool(domain) and domain.lower() in lower_response
    if not has_entity and not has_domain:
        return False

    return not any(phrase in lower_response for phrase in UNKNOWN_PHRASES)


def calculate_confidence(response: str, query: BrandAwarenessQuery, recognized: bool) -> int:
    if not recognized:
        return 0

    score = 50
    lower_response = response.lower()

    if query.tested_attribute and query.tested_attribute.lower() in lower_response:
        score += 25

    if len(response) > 500:
        score += 10
    if len(response) > 1000:
        score += 10

    for phrase in CONFIDENT_PHRASES:
        if phrase in lower_response:
            score += 5

    return min(score, 100)


def analyze_positioning(response: str, entity: str, competitor: str) -> str:
    """stronger / weaker / equal / not_compared from comparative phrasing."""
    lower_response = strip_accents(response.lower())
    entity = strip_accents(entity.lower())
    competitor = strip_accents(competitor.lower())

    stronger = [
        f"{entity} is better",
        f"{entity} excels",
        f"{entity} offers more",
        f"prefer {entity}",
        f"recommend {entity}",
        f"{entity} stands out",
    ]
    weaker = [
        f"{competitor} is better",
        f"{competitor} excels",
        f"{competitor} is larger",
        f"{competitor} has more",
        f"recommend {competitor}",
        f"{competitor} is more established",
    ]

    if any(indicator in lower_response for indicator in stronger):
        return "stronger"
    if any(indicator in lower_response for indicator in weaker):
        return "weaker"
    if entity in lower_response and competitor in lower_response:
        return "equal"
    return "not_compared"


def analyze_brand_awareness(results: List[BrandAwarenessResult]) -> BrandAwarenessAnalysis:
    recall = [r for r in results if r.query_type == "brand_recall"]
    recognized = sum(1 for r in recall if r.entity_recognized)
    overall = int(recognized / len(recall) * 100 + 0.5) if recall else 0

    by_service: Dict[str, List[BrandAwarenessResult]] = {}
    for result in results:
        if result.query_type == "service_check" and result.tested_attribute:
            by_service.setdefault(result.tested_attribute, []).append(result)

    knowledge = []
    gaps = []
    for service, service_results in by_service.items():
        known_by = [r.platform for r in service_results if r.attribute_mentioned]
        unknown_by = [r.platform for r in service_results if not r.attribute_mentioned]
        knowledge.append({"service": service, "known_by": known_by, "unknown_by": unknown_by})
        if not known_by:
            gaps.append(service)

    return BrandAwarenessAnalysis(
        overall_recognition=overall,
        service_knowledge=knowledge,
        knowledge_gaps=gaps,
    )


# =============================================================================
# PROBER
# =============================================================================

class BrandAwarenessProber:
    """
    Runs brand awareness probes against one platform at a time.

    Individual probe failures become unrecognized results carrying the
    error text; a platform's batch always returns one result per query.
    """

    def __init__(self, providers: Dict[str, BaseAIProvider], timeout: float = 90.0):
        self.providers = providers
        self.timeout = timeout

    async def run_query(self, query: BrandAwarenessQuery, platform: str) -> BrandAwarenessResult:
        start = time.monotonic()
        result = BrandAwarenessResult(
            platform=platform,
            query_type=query.query_type,
            tested_entity=query.tested_entity,
            tested_attribute=query.tested_attribute,
            compared_to=query.compared_to,
        )

        provider = self.providers.get(platform)
        if provider is None:
            result.response_text = f"{platform} is not configured"
            return result

        try:
            answer = await asyncio.wait_for(
                provider.search(query.prompt, BRAND_SYSTEM_PROMPT),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            result.response_text = f"Timed out after {self.timeout:.0f}s"
            result.response_time_ms = int((time.monotonic() - start) * 1000)
            return result
        except Exception as e:
            logger.error(f"Brand awareness query failed for {platform}: {e}")
            result.response_text = str(e) or "Query failed"
            result.response_time_ms = int((time.monotonic() - start) * 1000)
            return result

        text = answer.text
        result.response_text = text
        result.response_time_ms = int((time.monotonic() - start) * 1000)
        result.entity_recognized = check_entity_recognized(text, query.tested_entity, query.tested_domain)
        result.attribute_mentioned = bool(
            query.tested_attribute and query.tested_attribute.lower() in text.lower()
        )
        result.confidence_score = calculate_confidence(text, query, result.entity_recognized)
        if query.query_type == "competitor_compare" and query.compared_to:
            result.positioning = analyze_positioning(text, query.tested_entity, query.compared_to)

        return result

    async def run_for_platform(
        self,
        queries: List[BrandAwarenessQuery],
        platform: str,
    ) -> List[BrandAwarenessResult]:
        logger.info(f"{platform}: starting {len(queries)} brand awareness queries")
        results = await asyncio.gather(*(self.run_query(q, platform) for q in queries))
        recognized = sum(1 for r in results if r.entity_recognized)
        logger.info(f"{platform}: {len(results)} brand results, {recognized} recognized")
        return list(results)
