"""
Run-level models: crawl input settings and the persisted run summary.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from shelfscan.config import config


def _coerce_positive(value: Any, default: int) -> int:
    """Non-numeric counts fall back to the default, numeric ones are floored at 1."""
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return default
    return max(1, number)


class CrawlSettings(BaseModel):
    """Input configuration for a single crawl run."""
    start_url: Optional[str] = None
    start_urls: List[str] = Field(default_factory=list)
    results_wanted: int = 100
    max_pages: int = 10
    zipcode: str = config.DEFAULT_ZIPCODE
    extract_details: bool = False
    concurrency: Optional[int] = None
    proxy_urls: List[str] = Field(default_factory=list)

    @field_validator("start_urls", mode="before")
    @classmethod
    def _flatten_start_urls(cls, value: Any) -> List[str]:
        # Accept plain strings or {"url": ...} request objects
        if not value:
            return []
        urls = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("url")
            if isinstance(item, str) and item.strip():
                urls.append(item.strip())
        return urls

    @field_validator("results_wanted", mode="before")
    @classmethod
    def _coerce_results_wanted(cls, value: Any) -> int:
        return _coerce_positive(value, 100)

    @field_validator("max_pages", mode="before")
    @classmethod
    def _coerce_max_pages(cls, value: Any) -> int:
        return _coerce_positive(value, 10)

    def resolved_start_urls(self) -> List[str]:
        """start_urls first, then start_url if not already listed, else the default."""
        urls = list(dict.fromkeys(self.start_urls))
        if self.start_url and self.start_url not in urls:
            urls.append(self.start_url)
        if not urls:
            urls.append(config.DEFAULT_START_URL)
        return urls

    def enrich_concurrency(self) -> int:
        """Detail-pass worker count, clamped to a small pool."""
        hint = self.concurrency or config.ENRICH_CONCURRENCY
        return max(2, min(6, hint))


class RunSummary(BaseModel):
    """Diagnostic summary persisted at the end of a run."""
    total_products_saved: int = 0
    target_results: int = 0
    pages_processed: int = 0
    zipcode: Optional[str] = None
    used_render_fallback: bool = False
    extraction_methods: List[str] = Field(default_factory=list)
    missing_methods: List[str] = Field(default_factory=list)
    enriched_count: int = 0
    unfetchable_urls: List[str] = Field(default_factory=list)
