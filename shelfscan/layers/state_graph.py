"""
State Graph Parser for the shelfscan crawler.
Locates the embedded normalized-cache blob in a page, decodes it and
resolves reference markers into materialized product nodes.
"""
import html as html_entities
import json
import re
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple
from urllib.parse import unquote

from bs4 import BeautifulSoup

from shelfscan.config import config
from shelfscan.models.product import CandidateKind, CandidateNode
from shelfscan.utils.logger import LayerLogger

logger = LayerLogger("state_graph")

MIN_PAYLOAD_LENGTH = 100
DEFAULT_MAX_DEPTH = 5
PRODUCT_TYPENAMES = {"Product", "Item"}
PERCENT_MARKERS = ("%7B", "%22")


class StateGraph:
    """
    Read-only arena of graph nodes keyed by opaque string ids.

    Values may be reference markers: {"__ref": "<key>"}, or a
    single-key {"ref": "<key>"} object.
    """

    def __init__(self, nodes: Dict[str, Any]):
        self._nodes = nodes

    def __contains__(self, key: str) -> bool:
        return key in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, key: str, default: Any = None) -> Any:
        return self._nodes.get(key, default)

    def keys(self) -> List[str]:
        return list(self._nodes.keys())

    def items(self) -> Iterator[Tuple[str, Any]]:
        return iter(self._nodes.items())

    @staticmethod
    def reference_key(value: Any) -> Optional[str]:
        """Return the target key when value is a reference marker."""
        if not isinstance(value, dict):
            return None
        ref = value.get("__ref")
        if isinstance(ref, str):
            return ref
        if len(value) == 1 and isinstance(value.get("ref"), str):
            return value["ref"]
        return None

    def follow(self, value: Any) -> Any:
        """Follow one reference hop, returning value unchanged if it is not a resolvable marker."""
        ref = self.reference_key(value)
        if ref is not None and ref in self._nodes:
            return self._nodes[ref]
        return value


# =========================================================================
# Locating and decoding
# =========================================================================

def decode_payload(raw: str) -> str:
    """
    Decode a raw state payload into a JSON string.

    Order matters: percent-decoding, then HTML entities, then trimming
    to the outermost {...}.
    """
    text = raw
    if any(marker in text for marker in PERCENT_MARKERS):
        text = unquote(text)

    text = html_entities.unescape(text).strip()

    if not text.startswith("{") or not text.endswith("}"):
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            text = text[start:end + 1]

    return text


def parse_state(html: str, script_id: str = config.STATE_SCRIPT_ID) -> Optional[StateGraph]:
    """
    Extract the state graph from a page.

    Args:
        html: Page HTML
        script_id: id attribute of the script node carrying the blob

    Returns:
        StateGraph, or None when the page has no usable graph
    """
    soup = BeautifulSoup(html, "lxml")
    script = soup.find("script", id=script_id)
    if script is None:
        logger.log_fallback(
            from_source="graph_state",
            to_source="html_fallback",
            reason=f"script#{script_id} not found",
        )
        return None

    raw = script.string or script.get_text() or ""
    logger.log_action("locate_state_script", "completed", raw_length=len(raw))

    if len(raw) < MIN_PAYLOAD_LENGTH:
        logger.log_fallback(
            from_source="graph_state",
            to_source="html_fallback",
            reason="state payload empty or too short",
            raw_length=len(raw),
        )
        return None

    payload = decode_payload(raw)
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.log_error(
            f"State payload is not valid JSON: {str(e)}",
            error_type="state_parse_error",
            sample=payload[:200],
        )
        return None

    if not isinstance(data, dict):
        logger.log_error(
            "State payload is not a JSON object",
            error_type="state_parse_error",
            payload_type=type(data).__name__,
        )
        return None

    logger.log_action(
        "parse_state",
        "completed",
        top_level_keys=len(data),
        sample_keys=list(data.keys())[:5],
    )
    return StateGraph(data)


# =========================================================================
# Reference resolution
# =========================================================================

def resolve_refs(graph: StateGraph, node: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> Any:
    """
    Materialize reference markers inside node.

    Walks dicts and lists with an explicit stack. A marker is replaced by
    its target unless the target is already on the current path (cycle)
    or the depth cap is reached; such markers are left in place. Returns
    new containers and never mutates the graph.
    """
    root: List[Any] = [None]
    # (value, parent container, slot in parent, depth, keys on path)
    stack: List[Tuple[Any, Any, Any, int, frozenset]] = [(node, root, 0, 0, frozenset())]

    while stack:
        value, parent, slot, depth, path = stack.pop()

        ref = graph.reference_key(value)
        if ref is not None:
            if ref in path or ref not in graph or depth >= max_depth:
                parent[slot] = value
                continue
            path = path | {ref}
            value = graph.get(ref)

        if depth >= max_depth:
            parent[slot] = value
            continue

        if isinstance(value, dict):
            resolved = dict.fromkeys(value)
            parent[slot] = resolved
            for key, child in value.items():
                stack.append((child, resolved, key, depth + 1, path))
        elif isinstance(value, list):
            resolved_list: List[Any] = [None] * len(value)
            parent[slot] = resolved_list
            for index, child in enumerate(value):
                stack.append((child, resolved_list, index, depth + 1, path))
        else:
            parent[slot] = value

    return root[0]


def is_product_shaped(value: Any) -> bool:
    """A node looks like a product if it carries a product typename or name/id fields."""
    if not isinstance(value, dict):
        return False
    if value.get("__typename") in PRODUCT_TYPENAMES:
        return True
    return bool(value.get("name") or value.get("productId") or value.get("id"))


def find_product_arrays(value: Any, graph: StateGraph, max_depth: int = DEFAULT_MAX_DEPTH) -> List[List[Any]]:
    """
    Find arrays holding product-shaped elements anywhere under value.

    Qualifying arrays are returned with their elements resolved.
    """
    return [[item for _, item in array] for array in _keyed_product_arrays(value, graph, max_depth)]


def _keyed_product_arrays(value: Any, graph: StateGraph, max_depth: int) -> List[List[Tuple[Optional[str], Any]]]:
    """Like find_product_arrays, pairing each resolved element with the graph key it referenced."""
    results: List[List[Tuple[Optional[str], Any]]] = []
    stack: List[Tuple[Any, int, frozenset]] = [(value, 0, frozenset())]

    while stack:
        current, depth, path = stack.pop()
        if depth > max_depth or current is None:
            continue

        ref = graph.reference_key(current)
        if ref is not None:
            if ref in path or ref not in graph:
                continue
            stack.append((graph.get(ref), depth + 1, path | {ref}))
            continue

        if isinstance(current, list):
            if any(is_product_shaped(graph.follow(item)) for item in current):
                results.append([
                    (graph.reference_key(item), resolve_refs(graph, item, max_depth))
                    for item in current
                ])
            else:
                for item in reversed(current):
                    stack.append((item, depth + 1, path))
        elif isinstance(current, dict):
            for child in reversed(list(current.values())):
                stack.append((child, depth + 1, path))

    return results


# =========================================================================
# Candidate discovery
# =========================================================================

def _query_values(node: Any) -> Iterator[Dict[str, Any]]:
    """Listing keys hold one entry per cached query variant."""
    if not isinstance(node, dict):
        return
    for query_data in node.values():
        if isinstance(query_data, dict):
            yield query_data


def _listing_entries(key: str, value: Dict[str, Any]) -> Iterator[Any]:
    """Raw entries of a LandingTaxonomyProducts:* or Items:* node."""
    for query_data in _query_values(value):
        if key.startswith("Items:"):
            entries = query_data.get("items")
        else:
            landing = query_data.get("landingTaxonomyProducts")
            entries = (landing.get("products") if isinstance(landing, dict) else None) or query_data.get("products")
        if isinstance(entries, list):
            yield from entries


def _is_listing_key(key: str) -> bool:
    return key.startswith(("LandingTaxonomyProducts:", "Items:")) or "TaxonomyProducts" in key


def extract_candidates(graph: StateGraph) -> List[CandidateNode]:
    """
    Collect product candidates from the key families the storefront uses.

    - LandingTaxonomyProducts:* -> landingTaxonomyProducts.products / products
    - Items:* -> items (store-scoped pages, carry prices)
    - ROOT_QUERY -> any product-shaped array
    - Product:* / Item:* or product typenames -> single entity nodes

    A node reached through a reference is emitted once, tagged with its
    own graph key, and is not emitted again as a standalone entity.
    """
    candidates: List[CandidateNode] = []
    referenced: Set[str] = set()

    def add(kind: CandidateKind, ref: Optional[str], payload: Any, fallback_key: str):
        if not isinstance(payload, dict):
            return
        if ref is not None:
            if ref in referenced:
                return
            referenced.add(ref)
        candidates.append(CandidateNode(kind, payload, source_key=ref or fallback_key))

    for key, value in graph.items():
        if isinstance(value, dict) and _is_listing_key(key):
            for entry in _listing_entries(key, value):
                add(CandidateKind.LISTING_ITEM, graph.reference_key(entry), resolve_refs(graph, entry), key)

    root_query = graph.get("ROOT_QUERY") or graph.get("root_query") or {}
    if isinstance(root_query, dict):
        for query_key, query_value in root_query.items():
            for array in _keyed_product_arrays(query_value, graph, DEFAULT_MAX_DEPTH):
                for ref, item in array:
                    add(CandidateKind.ENTITY, ref, item, f"ROOT_QUERY.{query_key}")

    for key, value in graph.items():
        if not isinstance(value, dict) or _is_listing_key(key) or key in referenced:
            continue
        if key.startswith(("Product:", "Item:")) or value.get("__typename") in PRODUCT_TYPENAMES:
            candidates.append(CandidateNode(CandidateKind.ENTITY, resolve_refs(graph, value), source_key=key))

    logger.log_action(
        "extract_candidates",
        "completed",
        candidates=len(candidates),
        referenced=len(referenced),
        kinds=sorted({c.kind.value for c in candidates}),
    )
    return candidates


def retailer_names(graph: StateGraph) -> List[str]:
    """Names of retailer nodes (present on product detail pages)."""
    names = []
    for key, value in graph.items():
        if key.startswith("RetailersRetailer:") and isinstance(value, dict):
            name = value.get("name")
            if isinstance(name, str) and name.strip():
                names.append(name.strip())
    return names


def entity_id_from_key(source_key: Optional[str]) -> Optional[str]:
    """'Item:123' -> '123'."""
    if not source_key:
        return None
    match = re.match(r"^(?:Product|Item):(.+)$", source_key)
    return match.group(1) if match else None
