"""
Canonical product model for the shelfscan crawler.
This model is the single output unit for every extraction tier
(embedded state graph, HTML fallback, detail-page enrichment).
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ExtractionMethod(str, Enum):
    """How a record (or its enrichment) was obtained."""
    GRAPH_STATE = "graph_state"
    HTML_FALLBACK = "html_fallback"
    DETAIL_ENRICHMENT = "detail_enrichment"


class CandidateKind(str, Enum):
    """Source shape of a candidate node handed to the normalizer."""
    LISTING_ITEM = "listing_item"  # Items:/LandingTaxonomyProducts: entries
    ENTITY = "entity"              # Product:/Item: nodes and ROOT_QUERY arrays
    HTML_CARD = "html_card"        # product card scraped from markup


@dataclass
class CandidateNode:
    """A product-shaped node awaiting normalization."""
    kind: CandidateKind
    payload: Dict[str, Any]
    source_key: Optional[str] = None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProductRecord(BaseModel):
    """
    Canonical product record.

    Identity is the first non-empty of product_id, product_url, name.
    Records are created by the normalizer and mutated only by the
    merge engine.
    """
    # Identity
    product_id: Optional[str] = None
    product_url: Optional[str] = None
    name: Optional[str] = None

    # Commerce
    price: Optional[Decimal] = None
    original_price: Optional[Decimal] = None
    unit_price: Optional[str] = None
    in_stock: bool = True
    currency: Optional[str] = None

    # Descriptive
    brand: Optional[str] = None
    size: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    category: Optional[str] = None

    # Provenance
    store: Optional[str] = None
    store_slug: Optional[str] = None
    zipcode: Optional[str] = None
    extraction_method: ExtractionMethod = ExtractionMethod.GRAPH_STATE
    detail_extraction_method: Optional[str] = None
    captured_at: datetime = Field(default_factory=utc_now)
    enriched_at: Optional[datetime] = None
    source_url: Optional[str] = None

    def needs_enrichment(self) -> bool:
        """A record is worth a detail-page visit when price or brand is missing."""
        return bool(self.product_url) and (not self.price or not self.brand)

    def get_present_fields(self) -> List[str]:
        """Return list of populated descriptive/commerce fields."""
        return [f for f in TRACKED_FIELDS if getattr(self, f) not in (None, "")]

    def get_missing_fields(self) -> List[str]:
        """Return list of empty descriptive/commerce fields."""
        present = self.get_present_fields()
        return [f for f in TRACKED_FIELDS if f not in present]


TRACKED_FIELDS = [
    "product_id",
    "product_url",
    "name",
    "price",
    "original_price",
    "unit_price",
    "currency",
    "brand",
    "size",
    "image_url",
    "category",
    "store",
]
