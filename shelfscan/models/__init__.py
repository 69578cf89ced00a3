"""Models package initialization."""
from shelfscan.models.product import (
    CandidateKind,
    CandidateNode,
    ExtractionMethod,
    ProductRecord,
)
from shelfscan.models.run import CrawlSettings, RunSummary

__all__ = [
    "CandidateKind",
    "CandidateNode",
    "ExtractionMethod",
    "ProductRecord",
    "CrawlSettings",
    "RunSummary",
]
