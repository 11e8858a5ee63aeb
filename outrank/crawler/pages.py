"""
Page Extraction

Regex-based extraction of page metadata, visible text and JSON-LD
structured data. No JavaScript execution and no DOM parser: pages that
need a browser to render are simply thin.
"""

import json
import logging
import re
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

MAX_HEADINGS = 20
MAX_BODY_CHARS = 5000

TAG_PATTERN = re.compile(r"<[^>]+>")
TITLE_PATTERN = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE)
DESCRIPTION_PATTERNS = [
    re.compile(r"<meta[^>]*name=[\"']description[\"'][^>]*content=[\"']([^\"']+)[\"']", re.IGNORECASE),
    re.compile(r"<meta[^>]*content=[\"']([^\"']+)[\"'][^>]*name=[\"']description[\"']", re.IGNORECASE),
]
H1_PATTERN = re.compile(r"<h1[^>]*>([\s\S]*?)</h1>", re.IGNORECASE)
H2_PATTERN = re.compile(r"<h2[^>]*>([\s\S]*?)</h2>", re.IGNORECASE)
H3_PATTERN = re.compile(r"<h3[^>]*>([\s\S]*?)</h3>", re.IGNORECASE)
BODY_PATTERN = re.compile(r"<body[^>]*>([\s\S]*?)</body>", re.IGNORECASE)
JSON_LD_PATTERN = re.compile(
    r"<script[^>]*type=[\"']application/ld\+json[\"'][^>]*>([\s\S]*?)</script>",
    re.IGNORECASE,
)
STRIPPED_BLOCKS = [
    re.compile(rf"<{tag}[^>]*>[\s\S]*?</{tag}>", re.IGNORECASE)
    for tag in ("script", "style", "nav", "footer", "header")
]


@dataclass
class SchemaData:
    """One JSON-LD item, reduced to the fields the analysis uses."""
    type: str
    name: Optional[str] = None
    description: Optional[str] = None
    address: Optional[Dict[str, Optional[str]]] = None   # locality, region, country, street_address
    geo: Optional[Dict[str, Optional[float]]] = None     # latitude, longitude
    area_served: List[str] = field(default_factory=list)
    service_area: List[str] = field(default_factory=list)
    services: List[str] = field(default_factory=list)
    products: List[str] = field(default_factory=list)
    offers: List[Dict[str, Optional[str]]] = field(default_factory=list)
    locations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaData":
        return cls(**data)


@dataclass
class CrawledPage:
    url: str
    path: str
    title: Optional[str] = None
    description: Optional[str] = None
    h1: Optional[str] = None
    headings: List[str] = field(default_factory=list)
    body_text: str = ""
    word_count: int = 0
    schema_data: List[SchemaData] = field(default_factory=list)
    has_meta_description: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["schema_data"] = [s.to_dict() for s in self.schema_data]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawledPage":
        data = dict(data)
        data["schema_data"] = [SchemaData.from_dict(s) for s in data.get("schema_data", [])]
        return cls(**data)


def _strip_tags(html: str) -> str:
    return TAG_PATTERN.sub("", html).strip()


def _names(value: Any) -> List[str]:
    """Normalize areaServed / serviceArea (string, object or list) to names."""
    items = value if isinstance(value, list) else [value]
    names = []
    for item in items:
        if isinstance(item, dict):
            names.append(str(item["name"]) if item.get("name") else str(item))
        elif item is not None:
            names.append(str(item))
    return names


def parse_schema_item(item: Any) -> Optional[SchemaData]:
    """Parse a single schema.org item; items without @type are ignored."""
    if not isinstance(item, dict):
        return None

    raw_type = item.get("@type") or ""
    if isinstance(raw_type, list):
        raw_type = next((t for t in raw_type if isinstance(t, str)), "")
    schema_type = str(raw_type)
    if not schema_type:
        return None

    schema = SchemaData(type=schema_type)
    if item.get("name"):
        schema.name = str(item["name"])
    if item.get("description"):
        schema.description = str(item["description"])

    address = item.get("address")
    if isinstance(address, dict):
        schema.address = {
            "locality": str(address["addressLocality"]) if address.get("addressLocality") else None,
            "region": str(address["addressRegion"]) if address.get("addressRegion") else None,
            "country": _country_name(address.get("addressCountry")),
            "street_address": str(address["streetAddress"]) if address.get("streetAddress") else None,
        }

    geo = item.get("geo")
    if isinstance(geo, dict):
        schema.geo = {
            "latitude": _to_float(geo.get("latitude")),
            "longitude": _to_float(geo.get("longitude")),
        }

    if item.get("areaServed"):
        schema.area_served = _names(item["areaServed"])
    if item.get("serviceArea"):
        schema.service_area = _names(item["serviceArea"])

    catalog = item.get("hasOfferCatalog")
    if isinstance(catalog, dict) and isinstance(catalog.get("itemListElement"), list):
        schema.services = [
            str(element["name"])
            for element in catalog["itemListElement"]
            if isinstance(element, dict) and element.get("name")
        ]

    offers = item.get("makesOffer")
    if isinstance(offers, list):
        schema.offers = [
            {
                "name": str(offer["name"]),
                "description": str(offer["description"]) if offer.get("description") else None,
            }
            for offer in offers
            if isinstance(offer, dict) and offer.get("name")
        ]

    if schema_type in ("Product", "Service") and item.get("name"):
        schema.products.append(str(item["name"]))

    if "LocalBusiness" in schema_type or schema_type in ("Organization", "Store"):
        if schema.address and schema.address.get("locality"):
            parts = [schema.address["locality"], schema.address.get("region"), schema.address.get("country")]
            schema.locations.append(", ".join(p for p in parts if p))

    return schema


def _country_name(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("name")
    return str(value) if value else None


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def extract_schema_data(html: str) -> List[SchemaData]:
    """Parse every JSON-LD block, including arrays and @graph containers."""
    schemas = []

    for block in JSON_LD_PATTERN.findall(html):
        try:
            parsed = json.loads(block.strip())
        except ValueError:
            continue

        items = parsed if isinstance(parsed, list) else [parsed]
        for item in items:
            schema = parse_schema_item(item)
            if schema:
                schemas.append(schema)

            graph = item.get("@graph") if isinstance(item, dict) else None
            if isinstance(graph, list):
                for graph_item in graph:
                    graph_schema = parse_schema_item(graph_item)
                    if graph_schema:
                        schemas.append(graph_schema)

    return schemas


def extract_body_text(html: str) -> str:
    body_match = BODY_PATTERN.search(html)
    if not body_match:
        return ""

    body = body_match.group(1)
    for pattern in STRIPPED_BLOCKS:
        body = pattern.sub("", body)
    body = TAG_PATTERN.sub(" ", body)
    return re.sub(r"\s+", " ", body).strip()


def parse_page(url: str, html: str) -> CrawledPage:
    """Extract metadata, headings, visible text and JSON-LD from one page."""
    title_match = TITLE_PATTERN.search(html)
    title = title_match.group(1).strip() if title_match else None

    description = None
    for pattern in DESCRIPTION_PATTERNS:
        match = pattern.search(html)
        if match:
            description = match.group(1).strip()
            break

    h1_match = H1_PATTERN.search(html)
    h1 = _strip_tags(h1_match.group(1)) if h1_match else None

    headings = []
    for pattern in (H2_PATTERN, H3_PATTERN):
        for raw in pattern.findall(html):
            text = _strip_tags(raw)
            if text:
                headings.append(text)

    body_text = extract_body_text(html)

    return CrawledPage(
        url=url,
        path=urlparse(url).path or "/",
        title=title,
        description=description,
        h1=h1,
        headings=headings[:MAX_HEADINGS],
        body_text=body_text[:MAX_BODY_CHARS],
        word_count=len([w for w in body_text.split(" ") if w]),
        schema_data=extract_schema_data(html),
        has_meta_description=bool(description) and len(description) > 20,
    )
