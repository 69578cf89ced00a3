# Test configuration and fixtures
import json
from typing import Any, Dict, List, Optional

import pytest


STORE_URL = "https://www.instacart.com/store/safeway/categories/316-food/317-fresh-produce"
GENERIC_URL = "https://www.instacart.com/categories/316-food/317-fresh-produce"


def state_html(graph: Dict[str, Any], script_id: str = "node-apollo-state", body: str = "") -> str:
    """Page HTML carrying a serialized state graph."""
    payload = json.dumps(graph)
    return (
        "<html><head><title>Produce</title></head><body>"
        f'<script id="{script_id}" type="application/json">{payload}</script>'
        f"{body}</body></html>"
    )


class FakeFetcher:
    """Stands in for FetchStrategyLayer: serves canned HTML by URL."""

    def __init__(self, pages: Optional[Dict[str, str]] = None, fail_on: Optional[List[str]] = None):
        self.pages = pages or {}
        self.fail_on = fail_on or []
        self.calls: List[str] = []

    async def fetch(self, url: str) -> Optional[str]:
        self.calls.append(url)
        if url in self.fail_on:
            raise RuntimeError(f"boom: {url}")
        return self.pages.get(url)


class FakeRenderer:
    """Stands in for BrowserRenderer."""

    def __init__(self, html: Optional[str] = None):
        self.html = html
        self.calls: List[str] = []
        self.closed = False

    async def render_page(self, url: str) -> Optional[str]:
        self.calls.append(url)
        return self.html

    async def close(self):
        self.closed = True


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def padded_graph():
    """Minimal two-item graph, long enough to pass the payload length floor."""
    return {
        "ROOT_QUERY": {"__typename": "Query", "session": "padding-" + "x" * 80},
        "Item:1": {"__typename": "Item", "name": "Organic Bananas", "price": "$3.49"},
        "Item:2": {"__typename": "Item", "name": "Hass Avocado"},
    }


@pytest.fixture
def listing_graph():
    """Store-scoped listing graph in the Items:* shape with nested price sections."""
    return {
        "Items:{\"ids\":[\"items_1\",\"items_2\"]}": {
            "{\"zone\":\"94105\"}": {
                "items": [
                    {
                        "id": "items_1-101",
                        "legacyId": "101",
                        "name": "Strawberries 1 lb",
                        "brandName": "Driscoll's",
                        "size": "1 lb",
                        "price": {
                            "viewSection": {
                                "itemCard": {
                                    "priceString": "$4.99",
                                    "plainFullPriceString": "$5.99",
                                },
                                "itemDetails": {"pricePerUnitString": "$4.99/lb"},
                            }
                        },
                        "image": {"viewSection": {"productImage": {
                            "templateUrl": "https://img.example.com/{width=}x{height=}/berries.jpg"
                        }}},
                    },
                    {
                        "id": "items_1-102",
                        "name": "Blueberries",
                        "landingParam": "102-blueberries",
                        "availability": {"status": "out_of_stock"},
                    },
                ]
            }
        }
    }
