"""
Configuration management for the shelfscan product crawler.
Handles environment variables and crawler settings.
"""
import os
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # Server settings
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")  # json or console

    # Target site
    SITE_BASE_URL: str = os.getenv("SITE_BASE_URL", "https://www.instacart.com")
    DEFAULT_START_URL: str = os.getenv(
        "DEFAULT_START_URL",
        "https://www.instacart.com/store/safeway/categories/316-food/317-fresh-produce",
    )
    DEFAULT_ZIPCODE: str = os.getenv("DEFAULT_ZIPCODE", "94105")
    STATE_SCRIPT_ID: str = os.getenv("STATE_SCRIPT_ID", "node-apollo-state")
    GENERIC_STORE_NAME: str = os.getenv("GENERIC_STORE_NAME", "Instacart")
    IMAGE_DIMENSION: int = int(os.getenv("IMAGE_DIMENSION", "400"))

    # Transport (direct HTTP)
    REQUEST_TIMEOUT: int = int(os.getenv("REQUEST_TIMEOUT", "30"))
    TRANSPORT_MAX_RETRIES: int = int(os.getenv("TRANSPORT_MAX_RETRIES", "3"))
    BACKOFF_BASE_SECONDS: float = float(os.getenv("BACKOFF_BASE_SECONDS", "1.0"))

    # Render fallback (browser)
    HEADLESS: bool = os.getenv("HEADLESS", "true").lower() == "true"
    RENDER_NAV_TIMEOUT: int = int(os.getenv("RENDER_NAV_TIMEOUT", "20"))
    RENDER_SETTLE_MS: int = int(os.getenv("RENDER_SETTLE_MS", "2000"))
    RENDER_CONCURRENCY: int = int(os.getenv("RENDER_CONCURRENCY", "2"))
    RENDER_RECYCLE_AFTER: int = int(os.getenv("RENDER_RECYCLE_AFTER", "20"))

    # Pacing
    PAGE_DELAY_SECONDS: float = float(os.getenv("PAGE_DELAY_SECONDS", "2.0"))
    PAGE_DELAY_JITTER: float = float(os.getenv("PAGE_DELAY_JITTER", "0.5"))
    ENRICH_CONCURRENCY: int = int(os.getenv("ENRICH_CONCURRENCY", "4"))
    ENRICH_CHUNK_PAUSE: float = float(os.getenv("ENRICH_CHUNK_PAUSE", "1.0"))

    # Proxies (comma separated, optional)
    PROXY_URLS: Optional[str] = os.getenv("PROXY_URLS")

    @classmethod
    def get_proxy_urls(cls) -> List[str]:
        """Return configured proxy endpoints, empty when direct connections are used."""
        if not cls.PROXY_URLS:
            return []
        return [u.strip() for u in cls.PROXY_URLS.split(",") if u.strip()]

    @classmethod
    def render_concurrency_for(cls, enrich_concurrency: int) -> int:
        """
        Render concurrency for a run.

        Browser contexts are expensive, so the render cap always stays
        below the enrichment worker count.
        """
        return max(1, min(cls.RENDER_CONCURRENCY, enrich_concurrency - 1))


config = Config()
