"""
Enrichment Layer for the shelfscan crawler.
Second pass over product detail pages for records that are
missing a price or a brand, merged back through the MergeEngine.
"""
import asyncio
import json
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse, urlunparse

from bs4 import BeautifulSoup

from shelfscan.config import config
from shelfscan.layers.fetch_strategy import FetchStrategyLayer
from shelfscan.layers.merge import MergeEngine
from shelfscan.layers.normalizer import FieldNormalizer, detect_currency, parse_price
from shelfscan.layers.state_graph import parse_state, retailer_names, resolve_refs
from shelfscan.models.product import CandidateKind, CandidateNode, ExtractionMethod, ProductRecord
from shelfscan.utils.logger import LayerLogger

# Visible-text price patterns, most specific first
EACH_PRICE_PATTERN = re.compile(r"\$(\d+\.?\d*)\s*each", re.IGNORECASE)
ANY_PRICE_PATTERN = re.compile(r"\$(\d+\.?\d*)")
UNIT_PRICE_PATTERN = re.compile(r"\$(\d+\.?\d*)\s*/\s*(\w+)")

DETAIL_FIELDS = ("price", "original_price", "unit_price", "brand", "currency")


def detail_url_for(record: ProductRecord) -> Optional[str]:
    """
    Detail page URL for a record, routed into its store context.

    /products/<x> becomes /store/<store_slug>/products/<x> when the
    record's store slug is known; other URLs are used as-is.
    """
    if not record.product_url:
        return None
    if not record.store_slug:
        return record.product_url

    parsed = urlparse(record.product_url)
    if parsed.path.startswith("/products/"):
        path = f"/store/{record.store_slug}{parsed.path}"
        return urlunparse(parsed._replace(path=path))
    return record.product_url


class DetailExtractor:
    """
    Pulls price, brand, unit price and store from a product detail page.

    Sources, in order:
    1. State graph: first entry of each Items:* query, plus retailer nodes
    2. JSON-LD Product nodes (only when no price yet)
    3. Visible page text (only for fields still missing)
    """

    def __init__(self, normalizer: FieldNormalizer, script_id: str = config.STATE_SCRIPT_ID):
        self.normalizer = normalizer
        self.script_id = script_id
        self.logger = LayerLogger("detail_extraction")

    def extract(self, html: str, page_url: str) -> Dict[str, Any]:
        """
        Extract a partial field dict from a detail page.

        Returns:
            Dict holding only the fields that were found
        """
        result: Dict[str, Any] = {}
        soup = BeautifulSoup(html, "lxml")

        self._from_graph(html, page_url, result)

        if not result.get("price"):
            self._from_jsonld(soup, result)

        if not result.get("price") or not result.get("unit_price"):
            self._from_text(soup, result)

        self.logger.log_action(
            "detail_extraction",
            "completed",
            url=page_url,
            fields=sorted(result.keys()),
        )
        return result

    def _from_graph(self, html: str, page_url: str, result: Dict[str, Any]):
        graph = parse_state(html, self.script_id)
        if graph is None:
            return

        for key, value in graph.items():
            if not key.startswith("Items:") or not isinstance(value, dict):
                continue
            for query_data in value.values():
                items = query_data.get("items") if isinstance(query_data, dict) else None
                if not isinstance(items, list) or not items:
                    continue
                first = resolve_refs(graph, items[0])
                if not isinstance(first, dict):
                    continue
                record = self.normalizer.normalize(
                    CandidateNode(CandidateKind.LISTING_ITEM, first, source_key=key),
                    page_url,
                )
                for name in DETAIL_FIELDS:
                    value_found = getattr(record, name)
                    if value_found and not result.get(name):
                        result[name] = value_found

        names = retailer_names(graph)
        if names:
            result["store"] = names[0]

    def _from_jsonld(self, soup: BeautifulSoup, result: Dict[str, Any]):
        for node in self._jsonld_products(soup):
            offers = node.get("offers")
            if isinstance(offers, list):
                offers = offers[0] if offers else None
            if isinstance(offers, dict):
                price = parse_price(offers.get("price"))
                if price and not result.get("price"):
                    result["price"] = price
                currency = offers.get("priceCurrency")
                if isinstance(currency, str) and currency.strip() and not result.get("currency"):
                    result["currency"] = currency.strip()

            brand = node.get("brand")
            if isinstance(brand, dict):
                brand = brand.get("name")
            if isinstance(brand, str) and brand.strip() and not result.get("brand"):
                result["brand"] = brand.strip()

    def _jsonld_products(self, soup: BeautifulSoup) -> List[Dict[str, Any]]:
        products = []
        for script in soup.find_all("script", type="application/ld+json"):
            if not script.string:
                continue
            try:
                data = json.loads(script.string)
            except json.JSONDecodeError:
                continue
            for node in self._flatten_jsonld(data):
                schema_type = node.get("@type")
                types = schema_type if isinstance(schema_type, list) else [schema_type]
                if "Product" in types:
                    products.append(node)
        return products

    def _flatten_jsonld(self, data: Any) -> List[Dict[str, Any]]:
        """Flatten single nodes, @graph containers and arrays into a node list."""
        nodes = []
        if isinstance(data, dict):
            if "@graph" in data:
                for item in data["@graph"]:
                    nodes.extend(self._flatten_jsonld(item))
            if "@type" in data:
                nodes.append(data)
        elif isinstance(data, list):
            for item in data:
                nodes.extend(self._flatten_jsonld(item))
        return nodes

    def _from_text(self, soup: BeautifulSoup, result: Dict[str, Any]):
        body = soup.body or soup
        for script in body.find_all(["script", "style"]):
            script.decompose()
        text = body.get_text(" ", strip=True)

        if not result.get("price"):
            match = EACH_PRICE_PATTERN.search(text) or ANY_PRICE_PATTERN.search(text)
            if match:
                result["price"] = parse_price(match.group(1))
                result.setdefault("currency", detect_currency("$"))

        if not result.get("unit_price"):
            match = UNIT_PRICE_PATTERN.search(text)
            if match:
                result["unit_price"] = match.group(0)


class EnrichmentLayer:
    """
    Enrichment Layer - bounded-concurrency detail pass.

    This layer:
    - Selects records with a product URL that miss price or brand
    - Fetches their detail pages in chunks of `concurrency`, one chunk at a time
    - Merges found fields back with method=detail_enrichment
    - Never lets one product's failure stop the pass
    """

    def __init__(
        self,
        fetcher: FetchStrategyLayer,
        extractor: DetailExtractor,
        engine: MergeEngine,
        concurrency: int = config.ENRICH_CONCURRENCY,
        chunk_pause: float = config.ENRICH_CHUNK_PAUSE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.extractor = extractor
        self.engine = engine
        self.concurrency = max(1, concurrency)
        self.chunk_pause = chunk_pause
        self.sleep = sleep
        self.logger = LayerLogger("enrichment")

    async def enrich(self, records: List[ProductRecord], limit: Optional[int] = None) -> int:
        """
        Enrich records in place.

        Args:
            records: Records from the listing pass
            limit: Stop starting new chunks once this many records were enriched

        Returns:
            Number of records changed by the pass
        """
        pending = [r for r in records if r.needs_enrichment()]
        if not pending:
            self.logger.log_decision(
                decision="skip_enrichment",
                reason="every record already has price and brand",
            )
            return 0

        self.logger.log_action(
            "enrichment",
            "started",
            candidates=len(pending),
            concurrency=self.concurrency,
        )

        enriched = 0
        for start in range(0, len(pending), self.concurrency):
            if limit is not None and enriched >= limit:
                self.logger.log_decision(
                    decision="stop_enrichment",
                    reason="enrichment limit reached",
                    enriched=enriched,
                )
                break
            if start:
                await self.sleep(self.chunk_pause)

            chunk = pending[start:start + self.concurrency]
            outcomes = await asyncio.gather(*(self._enrich_one(r) for r in chunk))
            enriched += sum(1 for changed in outcomes if changed)

        self.logger.log_action(
            "enrichment",
            "completed",
            candidates=len(pending),
            enriched=enriched,
        )
        return enriched

    async def _enrich_one(self, record: ProductRecord) -> bool:
        url = detail_url_for(record)
        try:
            html = await self.fetcher.fetch(url)
            if html is None:
                return False
            data = self.extractor.extract(html, url)
            if not data:
                return False
            return self.engine.merge_into(record, data, ExtractionMethod.DETAIL_ENRICHMENT.value)
        except Exception as e:
            self.logger.log_error(
                f"Detail enrichment failed: {str(e)}",
                error_type="enrichment_error",
                url=url,
            )
            return False
