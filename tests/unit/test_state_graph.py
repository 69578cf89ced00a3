"""
Unit tests for the state graph parser
"""
import json
from urllib.parse import quote

from conftest import state_html
from shelfscan.layers.state_graph import (
    StateGraph,
    decode_payload,
    entity_id_from_key,
    extract_candidates,
    find_product_arrays,
    parse_state,
    resolve_refs,
    retailer_names,
)
from shelfscan.models.product import CandidateKind


class TestDecodePayload:
    """Test suite for raw payload decoding"""

    def test_percent_encoded(self):
        raw = quote(json.dumps({"a": 1}))
        assert json.loads(decode_payload(raw)) == {"a": 1}

    def test_html_entities(self):
        raw = "{&quot;name&quot;:&quot;Ben &amp; Jerry&#39;s&quot;,&quot;path&quot;:&quot;a&#x2F;b&quot;}"
        assert json.loads(decode_payload(raw)) == {"name": "Ben & Jerry's", "path": "a/b"}

    def test_trims_to_outer_braces(self):
        raw = 'window.__STATE__ = {"a": {"b": 2}};'
        assert json.loads(decode_payload(raw)) == {"a": {"b": 2}}


class TestParseState:
    """Test suite for locating and parsing the state blob"""

    def test_parses_graph(self, padded_graph):
        graph = parse_state(state_html(padded_graph))
        assert graph is not None
        assert "Item:1" in graph
        assert len(graph) == 3

    def test_missing_script_is_none(self):
        assert parse_state("<html><body><p>No state here</p></body></html>") is None

    def test_short_payload_is_none(self):
        assert parse_state(state_html({"a": 1})) is None

    def test_invalid_json_is_none(self):
        html = '<html><body><script id="node-apollo-state">{' + "x" * 150 + "}</script></body></html>"
        assert parse_state(html) is None

    def test_non_object_top_level_is_none(self):
        html = '<html><body><script id="node-apollo-state">["' + "v" * 150 + '"]</script></body></html>'
        assert parse_state(html) is None

    def test_custom_script_id(self, padded_graph):
        html = state_html(padded_graph, script_id="__STATE__")
        assert parse_state(html) is None
        assert parse_state(html, script_id="__STATE__") is not None


class TestResolveRefs:
    """Test suite for reference resolution"""

    def test_resolves_nested_refs(self):
        graph = StateGraph({
            "Item:1": {"name": "Milk", "brand": {"__ref": "Brand:9"}},
            "Brand:9": {"name": "Clover"},
        })
        resolved = resolve_refs(graph, {"__ref": "Item:1"})
        assert resolved == {"name": "Milk", "brand": {"name": "Clover"}}

    def test_accepts_plain_ref_marker(self):
        graph = StateGraph({"Item:1": {"name": "Milk"}})
        assert resolve_refs(graph, [{"ref": "Item:1"}]) == [{"name": "Milk"}]

    def test_self_reference_terminates(self):
        graph = StateGraph({"Item:1": {"name": "Loop", "self": {"__ref": "Item:1"}}})
        resolved = resolve_refs(graph, {"__ref": "Item:1"})
        assert resolved["name"] == "Loop"
        assert resolved["self"] == {"__ref": "Item:1"}

    def test_mutual_cycle_terminates(self):
        graph = StateGraph({
            "A:1": {"next": {"__ref": "B:1"}},
            "B:1": {"next": {"__ref": "A:1"}},
        })
        resolved = resolve_refs(graph, {"__ref": "A:1"})
        assert resolved["next"]["next"] == {"__ref": "A:1"}

    def test_unknown_ref_left_as_marker(self):
        graph = StateGraph({})
        assert resolve_refs(graph, {"__ref": "Missing:1"}) == {"__ref": "Missing:1"}

    def test_depth_cap(self):
        graph = StateGraph({})
        deep = {"a": {"b": {"c": {"d": {"e": {"f": {"g": 1}}}}}}}
        resolved = resolve_refs(graph, deep, max_depth=2)
        assert resolved["a"]["b"] == {"c": {"d": {"e": {"f": {"g": 1}}}}}

    def test_graph_not_mutated(self):
        nodes = {"Item:1": {"brand": {"__ref": "Brand:1"}}, "Brand:1": {"name": "X"}}
        graph = StateGraph(nodes)
        resolve_refs(graph, {"__ref": "Item:1"})
        assert nodes["Item:1"]["brand"] == {"__ref": "Brand:1"}


class TestFindProductArrays:
    """Test suite for product array discovery"""

    def test_finds_nested_array_with_refs(self):
        graph = StateGraph({
            "Item:1": {"__typename": "Item", "name": "Eggs"},
            "Item:2": {"__typename": "Item", "name": "Butter"},
        })
        value = {"collection": {"items": [{"__ref": "Item:1"}, {"__ref": "Item:2"}]}}
        arrays = find_product_arrays(value, graph)
        assert arrays == [[{"__typename": "Item", "name": "Eggs"}, {"__typename": "Item", "name": "Butter"}]]

    def test_ignores_non_product_arrays(self):
        graph = StateGraph({})
        assert find_product_arrays({"tags": ["a", "b"], "counts": [1, 2]}, graph) == []

    def test_cyclic_refs_terminate(self):
        graph = StateGraph({"A:1": {"next": {"__ref": "A:1"}}})
        assert find_product_arrays({"__ref": "A:1"}, graph) == []


class TestExtractCandidates:
    """Test suite for candidate discovery"""

    def test_entity_nodes(self, padded_graph):
        candidates = extract_candidates(StateGraph(padded_graph))
        assert [c.source_key for c in candidates] == ["Item:1", "Item:2"]
        assert all(c.kind == CandidateKind.ENTITY for c in candidates)

    def test_listing_items(self, listing_graph):
        candidates = extract_candidates(StateGraph(listing_graph))
        assert len(candidates) == 2
        assert candidates[0].kind == CandidateKind.LISTING_ITEM
        assert candidates[0].payload["name"] == "Strawberries 1 lb"

    def test_landing_taxonomy_products(self):
        graph = StateGraph({
            "Product:7": {"name": "Kale"},
            "LandingTaxonomyProducts:{}": {
                "{\"slug\":\"produce\"}": {
                    "landingTaxonomyProducts": {"products": [{"__ref": "Product:7"}]}
                }
            },
        })
        candidates = extract_candidates(graph)
        assert len(candidates) == 1
        assert candidates[0].kind == CandidateKind.LISTING_ITEM
        assert candidates[0].source_key == "Product:7"
        assert candidates[0].payload["name"] == "Kale"

    def test_root_query_arrays(self):
        graph = StateGraph({
            "ROOT_QUERY": {"search": {"results": [{"name": "Oat Milk", "productId": "55"}]}},
        })
        candidates = extract_candidates(graph)
        assert len(candidates) == 1
        assert candidates[0].source_key == "ROOT_QUERY.search"

    def test_root_query_ref_keeps_entity_key(self):
        graph = StateGraph({
            "ROOT_QUERY": {"items": [{"__ref": "Item:1"}], "session": "x" * 80},
            "Item:1": {"__typename": "Item", "name": "Organic Bananas", "price": "$3.49"},
        })
        candidates = extract_candidates(graph)
        assert len(candidates) == 1
        assert candidates[0].source_key == "Item:1"
        assert candidates[0].payload["name"] == "Organic Bananas"

    def test_node_referenced_twice_emitted_once(self):
        graph = StateGraph({
            "ROOT_QUERY": {
                "featured": [{"__ref": "Item:1"}],
                "search": {"results": [{"__ref": "Item:1"}, {"__ref": "Item:2"}]},
            },
            "Item:1": {"__typename": "Item", "name": "Organic Bananas"},
            "Item:2": {"__typename": "Item", "name": "Hass Avocado"},
            "Item:3": {"__typename": "Item", "name": "Red Onion"},
        })
        keys = [c.source_key for c in extract_candidates(graph)]
        assert sorted(keys) == ["Item:1", "Item:2", "Item:3"]


def test_retailer_names():
    graph = StateGraph({"RetailersRetailer:12": {"name": "Safeway"}, "Other:1": {"name": "x"}})
    assert retailer_names(graph) == ["Safeway"]


def test_entity_id_from_key():
    assert entity_id_from_key("Item:1") == "1"
    assert entity_id_from_key("Product:abc") == "abc"
    assert entity_id_from_key("ROOT_QUERY.search") is None
    assert entity_id_from_key(None) is None
