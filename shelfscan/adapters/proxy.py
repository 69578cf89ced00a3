"""
Proxy provider adapter.
Hands out a fresh proxy endpoint per outbound request; no provider
means direct connections.
"""
import itertools
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from shelfscan.utils.logger import LayerLogger


class ProxyProvider:
    """Contract for proxy endpoint sources."""

    def new_url(self) -> Optional[str]:
        """Return a proxy URL for the next request, or None for a direct connection."""
        return None


class RotatingProxyProvider(ProxyProvider):
    """Round-robin over a fixed list of proxy URLs."""

    def __init__(self, urls: List[str]):
        self.urls = [u for u in urls if u]
        self._cycle = itertools.cycle(self.urls) if self.urls else None
        self.logger = LayerLogger("proxy_provider")
        self.logger.log_decision(
            decision="proxy_rotation" if self.urls else "direct_connection",
            reason=f"{len(self.urls)} proxy endpoints configured",
        )

    def new_url(self) -> Optional[str]:
        if self._cycle is None:
            return None
        return next(self._cycle)


def build_playwright_proxy(proxy_url: Optional[str]) -> Optional[Dict[str, Any]]:
    """Translate a proxy URL into Playwright's proxy settings dict."""
    if not proxy_url:
        return None
    parsed = urlparse(proxy_url)
    if not parsed.scheme or not parsed.hostname or not parsed.port:
        return None
    proxy: Dict[str, Any] = {
        "server": f"{parsed.scheme}://{parsed.hostname}:{parsed.port}",
    }
    if parsed.username:
        proxy["username"] = parsed.username
    if parsed.password:
        proxy["password"] = parsed.password
    return proxy
