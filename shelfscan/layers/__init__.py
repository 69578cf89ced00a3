"""Layers package initialization."""
from shelfscan.layers.state_graph import StateGraph, parse_state, resolve_refs, find_product_arrays, extract_candidates
from shelfscan.layers.normalizer import FieldNormalizer, parse_price
from shelfscan.layers.merge import MergeEngine, ResultSet, dedup_key
from shelfscan.layers.fetch_strategy import FetchStrategyLayer
from shelfscan.layers.extraction import PageExtractor
from shelfscan.layers.enrichment import DetailExtractor, EnrichmentLayer
from shelfscan.layers.pipeline import CrawlPipeline

__all__ = [
    "StateGraph",
    "parse_state",
    "resolve_refs",
    "find_product_arrays",
    "extract_candidates",
    "FieldNormalizer",
    "parse_price",
    "MergeEngine",
    "ResultSet",
    "dedup_key",
    "FetchStrategyLayer",
    "PageExtractor",
    "DetailExtractor",
    "EnrichmentLayer",
    "CrawlPipeline",
]
