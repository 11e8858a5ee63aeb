"""
Platform Query Engine

Asks one AI platform one customer-style question and judges the answer:
- was the business mentioned without being named in the question?
- where in the answer did the first mention land (first / middle / last third)?
- which other businesses were named?

`PlatformQueryEngine.query` never raises. Timeouts, provider errors and
missing configuration come back as error-flagged results so a fan-out over
many (prompt, platform) pairs always completes.
"""

import asyncio
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..integrations.base import BaseAIProvider, LocationContext, ProviderError
from ..utils.parsing import extract_json_array

logger = logging.getLogger(__name__)

PLATFORMS = ["chatgpt", "claude", "gemini", "perplexity"]

SYSTEM_PROMPT = """You are a helpful assistant providing information based on current web search results. When users ask for recommendations or information about businesses and services:
- Be specific and mention actual company/business names when your search results include them
- Include location context when relevant
- Cite your sources when possible
- Be objective and balanced in your recommendations"""

COMPETITOR_EXTRACTION_PROMPT = """Extract company/business names mentioned in this AI response. Only extract actual company names, NOT:
- Generic terms (e.g., "AI consulting firms", "marketing agencies")
- Locations (cities, countries, regions)
- Common nouns or phrases
- The target domain being searched for

Target domain to EXCLUDE: {domain}

AI Response:
{response}

Return a JSON array of company names found. If no specific companies are mentioned, return an empty array.
Example: ["Accenture", "Deloitte", "PwC"]
Return ONLY the JSON array, nothing else."""

MIN_EXTRACTION_LENGTH = 50
EXTRACTION_CHARS = 2000
MAX_COMPETITORS = 5
CONTEXT_CHARS = 30

COMMON_ENDINGS = [
    "lovers", "works", "labs", "hub", "hq", "studio", "studios",
    "shop", "store", "market", "place", "space", "box", "bay",
    "cloud", "tech", "soft", "ware", "app", "apps", "io", "ly",
    "ify", "able", "er", "ers", "ing", "tion", "sion", "ment",
    "ness", "ful", "less", "ous", "ive", "al", "ical", "ology",
    "house", "home", "land", "world", "zone", "spot", "point",
    "direct", "online", "digital", "media", "group", "team",
    "company", "solutions", "services", "partners", "consulting",
    "auto", "motors", "finance",
]

COMMON_BEGINNINGS = [
    "the", "my", "our", "your", "get", "go", "pro", "super",
    "mega", "ultra", "smart", "easy", "fast", "quick", "best",
    "top", "prime", "first", "new", "big", "little", "red",
    "blue", "green", "black", "white", "gold", "silver",
]


@dataclass
class PlatformResult:
    """One platform's answer to one question, judged for the target domain."""
    platform: str
    query: str
    response: str = ""
    sources: List[Dict[str, str]] = field(default_factory=list)
    search_enabled: bool = False
    domain_mentioned: bool = False
    mention_position: Optional[int] = None
    competitors: List[Dict[str, str]] = field(default_factory=list)
    response_time_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlatformResult":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


# =============================================================================
# MENTION DETECTION
# =============================================================================

def generate_spaced_versions(domain_without_tld: str) -> List[str]:
    """
    Likely multi-word spellings of a run-together brand.

    "loungelovers" -> "lounge lovers"; "therecruitmentcompany" ->
    "the recruitmentcompany", "the recruitment company".
    """
    versions = []
    lower = domain_without_tld.lower()

    for ending in COMMON_ENDINGS:
        if lower.endswith(ending) and len(lower) > len(ending) + 2:
            prefix = lower[:-len(ending)]
            if len(prefix) >= 2:
                versions.append(f"{prefix} {ending}")

    for beginning in COMMON_BEGINNINGS:
        if lower.startswith(beginning) and len(lower) > len(beginning) + 2:
            suffix = lower[len(beginning):]
            if len(suffix) >= 2:
                versions.append(f"{beginning} {suffix}")

                for ending in COMMON_ENDINGS:
                    if suffix.endswith(ending) and len(suffix) > len(ending) + 2:
                        middle = suffix[:-len(ending)]
                        if len(middle) >= 2:
                            versions.append(f"{beginning} {middle} {ending}")

    return versions


def _split_brand(domain_without_tld: str) -> str:
    spaced = re.sub(r"([a-z])([A-Z])", r"\1 \2", domain_without_tld)
    spaced = re.sub(r"([a-zA-Z])(\d)", r"\1 \2", spaced)
    spaced = re.sub(r"(\d)([a-zA-Z])", r"\1 \2", spaced)
    return spaced.lower()


def check_domain_mention(response: str, domain: str) -> Dict[str, Any]:
    """
    Detect whether the domain or its brand appears in a response.

    Candidates are tried in order: full domain, domain without TLD, the
    letter/number split brand, then dictionary-spaced versions. The first
    candidate found decides the position: 1 if it starts in the first
    third of the response, 2 in the middle third, 3 in the last.

    Returns:
        {"mentioned": bool, "position": Optional[int]}
    """
    if not response:
        return {"mentioned": False, "position": None}

    lower_response = response.lower()
    lower_domain = domain.lower()
    domain_without_tld = lower_domain.split(".")[0]
    brand_with_spaces = _split_brand(domain.split(".")[0])

    candidates = [lower_domain, domain_without_tld]
    if brand_with_spaces != domain_without_tld:
        candidates.append(brand_with_spaces)
    candidates.extend(generate_spaced_versions(domain_without_tld))

    first_index = -1
    for candidate in candidates:
        if not candidate:
            continue
        first_index = lower_response.find(candidate)
        if first_index != -1:
            break

    if first_index == -1:
        return {"mentioned": False, "position": None}

    relative = first_index / len(response)
    if relative < 0.33:
        position = 1
    elif relative < 0.66:
        position = 2
    else:
        position = 3

    return {"mentioned": True, "position": position}


def filter_competitor_names(names: List[Any], response: str, domain: str) -> List[Dict[str, str]]:
    """Drop the target brand, keep the first five, attach a context snippet."""
    domain_base = domain.lower().split(".")[0]
    lower_response = response.lower()

    competitors = []
    for name in names:
        if not isinstance(name, str) or not name.strip():
            continue
        name = name.strip()
        if domain_base and domain_base in name.lower():
            continue

        index = lower_response.find(name.lower())
        context = ""
        if index != -1:
            start = max(0, index - CONTEXT_CHARS)
            end = min(len(response), index + len(name) + CONTEXT_CHARS)
            context = f"...{response[start:end].strip()}..."

        competitors.append({"name": name, "context": context})
        if len(competitors) >= MAX_COMPETITORS:
            break

    return competitors


async def extract_competitors(
    provider: Optional[BaseAIProvider],
    response: str,
    domain: str,
) -> List[Dict[str, str]]:
    """Competitor names via a small model. Failures yield an empty list."""
    if provider is None or not response or len(response) < MIN_EXTRACTION_LENGTH:
        return []

    prompt = COMPETITOR_EXTRACTION_PROMPT.format(domain=domain, response=response[:EXTRACTION_CHARS])

    try:
        text = await provider.generate_text(prompt, max_tokens=200)
    except ProviderError as e:
        logger.warning(f"Competitor extraction failed: {e}")
        return []

    names = extract_json_array(text)
    if names is None:
        return []

    return filter_competitor_names(names, response, domain)


# =============================================================================
# ENGINE
# =============================================================================

class PlatformQueryEngine:
    """
    Queries AI platforms as a customer would.

    Usage:
        engine = PlatformQueryEngine(providers, extractor=mini_provider)
        result = await engine.query("claude", "best plumber sydney", "acme.com.au")
    """

    def __init__(
        self,
        providers: Dict[str, BaseAIProvider],
        extractor: Optional[BaseAIProvider] = None,
        timeout: float = 90.0,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self.providers = providers
        self.extractor = extractor
        self.timeout = timeout
        self.system_prompt = system_prompt

    async def query(
        self,
        platform: str,
        question: str,
        domain: str,
        location: Optional[LocationContext] = None,
    ) -> PlatformResult:
        start = time.monotonic()

        provider = self.providers.get(platform)
        if provider is None:
            logger.warning(f"{platform} not configured, recording error result")
            return PlatformResult(platform=platform, query=question, error=f"{platform} is not configured")

        try:
            answer = await asyncio.wait_for(
                provider.search(question, self.system_prompt, location),
                timeout=self.timeout,
            )
            mention = check_domain_mention(answer.text, domain)
            competitors = await extract_competitors(self.extractor, answer.text, domain)
        except asyncio.TimeoutError:
            elapsed = int((time.monotonic() - start) * 1000)
            logger.error(f"{platform} timed out after {self.timeout}s: {question[:60]}")
            return PlatformResult(
                platform=platform,
                query=question,
                response_time_ms=elapsed,
                error=f"Timed out after {self.timeout:.0f}s",
            )
        except Exception as e:
            elapsed = int((time.monotonic() - start) * 1000)
            logger.error(f"{platform} query failed: {e}")
            return PlatformResult(
                platform=platform,
                query=question,
                response_time_ms=elapsed,
                error=str(e) or e.__class__.__name__,
            )

        elapsed = int((time.monotonic() - start) * 1000)
        logger.info(
            f"{platform}: mentioned={mention['mentioned']} "
            f"competitors={len(competitors)} ({elapsed}ms)"
        )

        return PlatformResult(
            platform=platform,
            query=question,
            response=answer.text,
            sources=answer.sources,
            search_enabled=answer.search_enabled,
            domain_mentioned=mention["mentioned"],
            mention_position=mention["position"],
            competitors=competitors,
            response_time_ms=elapsed,
        )
