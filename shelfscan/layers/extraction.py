"""
Page Extraction Layer for the shelfscan crawler.
Turns a fetched listing page into candidate ProductRecords:
the embedded state graph first, product-card markup as fallback.
"""
from typing import List, Optional, Set

from bs4 import BeautifulSoup, Tag

from shelfscan.config import config
from shelfscan.layers.normalizer import FieldNormalizer, absolutize, clean_image_url
from shelfscan.layers.state_graph import extract_candidates, parse_state
from shelfscan.models.product import CandidateKind, CandidateNode, ProductRecord
from shelfscan.utils.logger import LayerLogger

# Product card selectors, tried in order
CARD_SELECTORS = [
    'a[href*="/products/"]',
    'a[href*="/store/items/"]',
    '[data-testid*="product"]',
    '[data-testid*="item-card"]',
    '[class*="ItemCard"]',
]

CARD_NAME_SELECTOR = '[class*="ItemName"], [class*="product-name"], h3, h4, [data-testid*="name"]'
CARD_PRICE_SELECTOR = '[class*="Price"], [data-testid*="price"]'

MIN_NAME_LENGTH = 3
MAX_NAME_LENGTH = 199


class PageExtractor:
    """
    Extracts product records from one page.

    Tier 1: state graph candidates (extraction_method=graph_state)
    Tier 2: HTML product cards (extraction_method=html_fallback),
            used only when tier 1 yields nothing
    """

    def __init__(self, normalizer: FieldNormalizer, script_id: str = config.STATE_SCRIPT_ID):
        self.normalizer = normalizer
        self.script_id = script_id
        self.logger = LayerLogger("page_extraction")

    def extract(self, html: str, page_url: str) -> List[ProductRecord]:
        """
        Extract product records from page HTML.

        Args:
            html: Page HTML
            page_url: URL the page was fetched from

        Returns:
            Normalized records that carry a name or a product id
        """
        records: List[ProductRecord] = []

        graph = parse_state(html, self.script_id)
        if graph is not None:
            candidates = extract_candidates(graph)
            records = self._normalize_all(candidates, page_url, source="graph_state")
            if not records:
                self.logger.log_fallback(
                    from_source="graph_state",
                    to_source="html_fallback",
                    reason="state graph held no product candidates",
                    url=page_url,
                )

        if not records:
            cards = self.extract_html_cards(html, page_url)
            records = self._normalize_all(cards, page_url, source="html_fallback")

        return records

    def extract_html_cards(self, html: str, page_url: str) -> List[CandidateNode]:
        """Collect product cards from markup, deduplicated by URL and then by name."""
        soup = BeautifulSoup(html, "lxml")
        seen_urls: Set[str] = set()
        cards: List[CandidateNode] = []

        for selector in CARD_SELECTORS:
            for element in soup.select(selector):
                href = self._card_href(element)
                full_url = absolutize(href, page_url)
                if full_url:
                    if full_url in seen_urls:
                        continue
                    seen_urls.add(full_url)

                name = self._card_name(element)
                if not name or not (MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH):
                    continue

                price_node = element.select_one(CARD_PRICE_SELECTOR)
                cards.append(CandidateNode(
                    CandidateKind.HTML_CARD,
                    {
                        "name": name,
                        "price_text": price_node.get_text(strip=True) if price_node else None,
                        "image": self._card_image(element),
                        "href": full_url,
                    },
                    source_key=selector,
                ))

        unique: List[CandidateNode] = []
        seen_names: Set[str] = set()
        for card in cards:
            key = card.payload["name"].lower()
            if key not in seen_names:
                seen_names.add(key)
                unique.append(card)

        self.logger.log_action(
            "html_card_extraction",
            "completed",
            url=page_url,
            cards=len(unique),
        )
        return unique

    def _normalize_all(self, candidates: List[CandidateNode], page_url: str, source: str) -> List[ProductRecord]:
        records = []
        for candidate in candidates:
            record = self.normalizer.normalize(candidate, page_url)
            if record.name or record.product_id:
                records.append(record)

        present: Set[str] = set()
        for record in records:
            present.update(record.get_present_fields())
        missing = sorted({f for r in records for f in r.get_missing_fields()} - present)

        self.logger.log_extraction(
            source=source,
            records=len(records),
            fields_present=sorted(present),
            fields_missing=missing,
            url=page_url,
            candidates=len(candidates),
        )
        return records

    def _card_href(self, element: Tag) -> Optional[str]:
        href = element.get("href")
        if not href:
            anchor = element.find("a", href=True)
            href = anchor.get("href") if anchor else None
        return href

    def _card_name(self, element: Tag) -> Optional[str]:
        name_node = element.select_one(CARD_NAME_SELECTOR)
        if name_node:
            name = name_node.get_text(strip=True)
            if name:
                return name
        aria = element.get("aria-label")
        if aria and aria.strip():
            return aria.strip()
        text = element.get_text("\n", strip=True)
        return text.split("\n")[0].strip() if text else None

    def _card_image(self, element: Tag) -> Optional[str]:
        img = element.find("img")
        if img is None:
            return None
        src = img.get("src")
        if not src:
            srcset = img.get("srcset")
            if srcset:
                src = srcset.split(",")[0].strip().split(" ")[0]
        return clean_image_url(src)
