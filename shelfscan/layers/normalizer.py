"""
Field Normalizer for the shelfscan crawler.
Maps the competing source shapes of one logical product onto the
canonical ProductRecord using ordered per-field fallback chains.
"""
import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, urljoin, urlparse

from shelfscan.config import config
from shelfscan.layers.state_graph import entity_id_from_key
from shelfscan.models.product import (
    CandidateKind,
    CandidateNode,
    ExtractionMethod,
    ProductRecord,
)
from shelfscan.utils.logger import LayerLogger

Path = Tuple[str, ...]

# Placeholder tokens used by templated image URLs
IMAGE_TEMPLATE_TOKENS = ("{width=}", "{height=}", "{width}", "{height}")

# Path segments under /store/ that are not retailer slugs
NON_RETAILER_SEGMENTS = {"items", "products", "categories"}

# Most specific symbols first so "A$" is not read as "$"
CURRENCY_SYMBOLS = [
    ("A$", "AUD"),
    ("C$", "CAD"),
    ("$", "USD"),
    ("€", "EUR"),
    ("£", "GBP"),
    ("¥", "JPY"),
    ("₹", "INR"),
    ("₽", "RUB"),
]


def _paths(prefixes: Sequence[Path], *names: str) -> List[Path]:
    return [prefix + (name,) for prefix in prefixes for name in names]


# Store pages: item.price.viewSection.{itemCard,itemDetails}
_PRICE_SECTION: Path = ("price", "viewSection")
_ITEM_CARD: Path = _PRICE_SECTION + ("itemCard",)
_ITEM_DETAILS: Path = _PRICE_SECTION + ("itemDetails",)

# Legacy layout: viewSection (or image.viewSection) with a priceInfo/pricing block
_VIEW_SECTIONS: List[Path] = [("viewSection",), ("image", "viewSection")]
_PRICE_INFOS: List[Path] = [vs + (block,) for vs in _VIEW_SECTIONS for block in ("priceInfo", "pricing")] + [("priceInfo",)]

_LISTING_PRICE: List[Path] = (
    _paths([_ITEM_CARD], "priceString", "price")
    + _paths([_PRICE_SECTION], "priceString", "price")
    + [("priceString",), ("price",)]
    + _paths(_PRICE_INFOS, "price", "currentPrice", "priceString")
    + _paths(_VIEW_SECTIONS, "price", "currentPrice")
)

_LISTING_ORIGINAL_PRICE: List[Path] = (
    _paths([_ITEM_CARD], "plainFullPriceString", "fullPriceString", "originalPrice", "wasPrice")
    + _paths([_PRICE_SECTION], "plainFullPriceString", "originalPrice")
    + [("originalPrice",), ("wasPrice",)]
    + _paths(_PRICE_INFOS, "originalPrice", "wasPrice")
    + _paths(_VIEW_SECTIONS, "originalPrice")
)

_LISTING_UNIT_PRICE: List[Path] = (
    _paths([_ITEM_DETAILS], "pricePerUnitString", "unitPrice")
    + _paths([_PRICE_SECTION], "pricePerUnitString", "unitPrice")
    + [("unitPrice",), ("pricePerUnit",)]
    + _paths(_PRICE_INFOS, "unitPrice", "pricePerUnit")
    + _paths(_VIEW_SECTIONS, "unitPrice")
)

_STORE_FIELDS: List[Path] = (
    [("retailerName",), ("retailer", "name"), ("retailer",), ("storeName",), ("store",)]
    + _paths(_VIEW_SECTIONS, "retailerName", "storeName")
)

_URL_FIELDS: List[Path] = [("url",), ("permalink",), ("link",), ("productUrl",)]

LISTING_RULES: Dict[str, List[Path]] = {
    "product_id": [("id",), ("productId",)],
    "name": [("name",), ("title",)],
    "size": [("size",)],
    "description": [("description",)],
    "price": _LISTING_PRICE,
    "original_price": _LISTING_ORIGINAL_PRICE,
    "unit_price": _LISTING_UNIT_PRICE,
    "brand": (
        [("brand",), ("brandName",), ("brandInfo", "name")]
        + _paths(_VIEW_SECTIONS, "brand", "brandName")
        + [("manufacturer",)]
    ),
    "image": (
        [("image", "viewSection", "productImage", "templateUrl"), ("image", "url"), ("image", "templateUrl"),
         ("imageUrl",), ("primaryImageUrl",), ("viewSection", "productImage", "templateUrl")]
    ),
    "store": _STORE_FIELDS,
    "url": _URL_FIELDS,
    "slug": [("landingParam",)],
    "legacy_id": [("legacyId",)],
}

ENTITY_RULES: Dict[str, List[Path]] = {
    "product_id": [("id",), ("productId",), ("product_id",), ("legacyId",), ("sku",)],
    "name": [("name",), ("title",), ("displayName",)],
    "size": [("size",), ("packageSize",), ("unitSize",)],
    "description": [("description",)],
    # Flat fields first, then the store-page nesting Item nodes also carry
    "price": [("price",), ("currentPrice",), ("pricing", "price"), ("priceString",)] + _LISTING_PRICE,
    "original_price": [("originalPrice",), ("wasPrice",), ("pricing", "originalPrice")] + _LISTING_ORIGINAL_PRICE,
    "unit_price": _LISTING_UNIT_PRICE,
    "brand": [("brand",), ("brand", "name"), ("brandName",)],
    "image": [("image", "url"), ("imageUrl",), ("primaryImage", "url"), ("thumbnail",),
              ("image", "viewSection", "productImage", "templateUrl")],
    "store": _STORE_FIELDS,
    "url": _URL_FIELDS,
    "slug": [("landingParam",)],
    "legacy_id": [("legacyId",)],
}

HTML_CARD_RULES: Dict[str, List[Path]] = {
    "name": [("name",)],
    "price": [("price_text",)],
    "image": [("image",)],
    "url": [("href",)],
}

FIELD_RULES: Dict[CandidateKind, Dict[str, List[Path]]] = {
    CandidateKind.LISTING_ITEM: LISTING_RULES,
    CandidateKind.ENTITY: ENTITY_RULES,
    CandidateKind.HTML_CARD: HTML_CARD_RULES,
}


# =========================================================================
# Pure helpers
# =========================================================================

def dig(payload: Any, path: Path) -> Any:
    """Walk nested dicts along path, returning None on any miss."""
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _is_present(value: Any) -> bool:
    if value is None or isinstance(value, (bool, dict, list)):
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def first_value(payload: Dict[str, Any], paths: Sequence[Path]) -> Any:
    """First non-empty scalar found along the ordered paths."""
    for path in paths:
        value = dig(payload, path)
        if _is_present(value):
            return value.strip() if isinstance(value, str) else value
    return None


def parse_price(value: Any) -> Optional[Decimal]:
    """
    Parse a free-text price.

    Keeps only digits and the decimal point. Empty or unparsable
    input gives None, never zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return Decimal(str(value))

    cleaned = re.sub(r"[^0-9.]", "", str(value))
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def detect_currency(value: Any) -> Optional[str]:
    """ISO currency code for the symbol in a price string, if any."""
    if not isinstance(value, str):
        return None
    for symbol, code in CURRENCY_SYMBOLS:
        if symbol in value:
            return code
    return None


def expand_image_template(url: str, dimension: int = config.IMAGE_DIMENSION) -> str:
    """Substitute width/height placeholders with a fixed dimension."""
    for token in IMAGE_TEMPLATE_TOKENS:
        url = url.replace(token, str(dimension))
    return url


def clean_image_url(url: Any) -> Optional[str]:
    """
    Strip responsive-image artifacts.

    Keeps the first srcset candidate and drops width/density
    descriptors and trailing commas.
    """
    if not isinstance(url, str):
        return None
    text = url.strip()
    if not text:
        return None
    first = re.split(r",\s+", text)[0]
    first = re.sub(r"\s+\d+(?:\.\d+)?[wx]\b.*$", "", first)
    first = first.strip().rstrip(",").strip()
    return first or None


def retailer_slug_from_url(url: Optional[str]) -> Optional[str]:
    """Retailer slug from /store/<slug>/... or a retailerSlug/retailer query param."""
    if not url:
        return None
    parsed = urlparse(url)
    match = re.search(r"/store/([^/?#]+)", parsed.path)
    if match and match.group(1).lower() not in NON_RETAILER_SEGMENTS:
        return match.group(1).lower()
    params = parse_qs(parsed.query)
    for name in ("retailerSlug", "retailer"):
        values = params.get(name)
        if values and values[0].strip():
            return values[0].strip().lower()
    return None


def store_name_from_slug(slug: str) -> str:
    """'safeway' -> 'Safeway', 'whole-foods' -> 'Whole Foods'."""
    return slug.replace("-", " ").replace("_", " ").title()


def retailer_from_url(url: Optional[str], default: str = config.GENERIC_STORE_NAME) -> str:
    """Display name of the retailer a URL is scoped to, else the generic placeholder."""
    slug = retailer_slug_from_url(url)
    return store_name_from_slug(slug) if slug else default


def category_from_url(url: Optional[str]) -> Optional[str]:
    """'/categories/316-food/317-fresh-produce' -> 'fresh produce'."""
    if not url:
        return None
    match = re.search(r"/categories/([^?#]+)", urlparse(url).path)
    if not match:
        return None
    segments = [s for s in match.group(1).split("/") if s]
    if not segments:
        return None
    label = re.sub(r"^\d+-", "", segments[-1]).replace("-", " ").strip()
    return label or None


def absolutize(url: Optional[str], base_url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    return urljoin(base_url, url) if base_url else url


def stock_status(payload: Dict[str, Any]) -> bool:
    """
    In stock unless an availability field explicitly says otherwise.

    Absent fields never mean out of stock.
    """
    for path in (("inStock",), ("available",), ("isAvailable",), ("viewSection", "available")):
        if dig(payload, path) is False:
            return False
    status = dig(payload, ("availability", "status"))
    if isinstance(status, str) and status.lower() == "out_of_stock":
        return False
    return True


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# =========================================================================
# Normalizer
# =========================================================================

class FieldNormalizer:
    """
    Converts candidate nodes into ProductRecords.

    Every logical field is read through an explicit, ordered list of
    paths for the candidate's kind; the first non-empty value wins.
    normalize() never raises: missing or malformed fields become None.
    """

    def __init__(
        self,
        site_base_url: str = config.SITE_BASE_URL,
        generic_store: str = config.GENERIC_STORE_NAME,
        image_dimension: int = config.IMAGE_DIMENSION,
        zipcode: Optional[str] = None,
    ):
        self.site_base_url = site_base_url.rstrip("/")
        self.generic_store = generic_store
        self.image_dimension = image_dimension
        self.zipcode = zipcode
        self.logger = LayerLogger("field_normalizer")

    def normalize(self, candidate: CandidateNode, page_url: str) -> ProductRecord:
        """
        Normalize one candidate node.

        Args:
            candidate: Tagged candidate node
            page_url: URL of the page the candidate came from

        Returns:
            ProductRecord (possibly sparse)
        """
        method = (
            ExtractionMethod.HTML_FALLBACK
            if candidate.kind == CandidateKind.HTML_CARD
            else ExtractionMethod.GRAPH_STATE
        )
        try:
            return self._normalize(candidate, page_url, method)
        except Exception as e:
            self.logger.log_error(
                f"Normalization failed: {str(e)}",
                error_type="normalization_error",
                url=page_url,
                source_key=candidate.source_key,
            )
            return ProductRecord(
                source_url=page_url,
                extraction_method=method,
                store=self.generic_store,
                zipcode=self.zipcode,
            )

    def _normalize(self, candidate: CandidateNode, page_url: str, method: ExtractionMethod) -> ProductRecord:
        rules = FIELD_RULES[candidate.kind]
        payload = candidate.payload or {}

        def field_value(name: str) -> Any:
            return first_value(payload, rules.get(name, []))

        product_id = _as_text(field_value("product_id"))
        if product_id is None:
            product_id = entity_id_from_key(candidate.source_key)

        raw_price = field_value("price")
        raw_original = field_value("original_price")

        image_url = None
        raw_image = field_value("image")
        if isinstance(raw_image, str):
            image_url = clean_image_url(expand_image_template(raw_image, self.image_dimension))
            image_url = absolutize(image_url, page_url)

        inline_store = _as_text(field_value("store"))
        store_slug = retailer_slug_from_url(page_url)

        return ProductRecord(
            product_id=product_id,
            product_url=self.canonical_url(payload, rules, product_id, page_url),
            name=_as_text(field_value("name")),
            price=parse_price(raw_price),
            original_price=parse_price(raw_original),
            unit_price=_as_text(field_value("unit_price")),
            in_stock=stock_status(payload),
            currency=detect_currency(raw_price) or detect_currency(raw_original),
            brand=_as_text(field_value("brand")),
            size=_as_text(field_value("size")),
            description=_as_text(field_value("description")),
            image_url=image_url,
            category=category_from_url(page_url),
            store=inline_store or retailer_from_url(page_url, self.generic_store),
            store_slug=store_slug,
            zipcode=self.zipcode,
            extraction_method=method,
            source_url=page_url,
        )

    def canonical_url(
        self,
        payload: Dict[str, Any],
        rules: Dict[str, List[Path]],
        product_id: Optional[str],
        page_url: str,
    ) -> Optional[str]:
        """
        Canonical product URL, in priority order: explicit URL field,
        slug parameter, legacy id, numeric id.
        """
        explicit = _as_text(first_value(payload, rules.get("url", [])))
        if explicit:
            return absolutize(explicit, page_url)

        slug = _as_text(first_value(payload, rules.get("slug", [])))
        if slug:
            return f"{self.site_base_url}/products/{slug}"

        legacy_id = _as_text(first_value(payload, rules.get("legacy_id", [])))
        if legacy_id:
            return f"{self.site_base_url}/store/items/item_{legacy_id}"

        if product_id:
            return f"{self.site_base_url}/products/{product_id}"
        return None
