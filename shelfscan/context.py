"""
Run-scoped context shared by every layer of a crawl.

Holds the only state that is shared mutably across concurrent work:
the cookie jar (entries only added or overwritten by key) and the
render escalation flag (only ever flips from False to True).
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Set

import httpx


@dataclass
class RunContext:
    """State for one crawl run. Passed explicitly, never global."""
    cookies: httpx.Cookies = field(default_factory=httpx.Cookies)
    render_escalated: bool = False
    pages_processed: int = 0
    extraction_methods: Set[str] = field(default_factory=set)
    unfetchable_urls: List[str] = field(default_factory=list)

    def escalate(self) -> bool:
        """Switch the run to browser rendering. Returns True on the first flip."""
        if self.render_escalated:
            return False
        self.render_escalated = True
        return True

    def store_response_cookies(self, response: httpx.Response) -> None:
        """Persist Set-Cookie headers from a direct HTTP response."""
        self.cookies.extract_cookies(response)

    def browser_cookies(self, default_domain: str) -> List[Dict[str, Any]]:
        """Export the jar in the shape Playwright's add_cookies() expects."""
        exported = []
        for cookie in self.cookies.jar:
            exported.append({
                "name": cookie.name,
                "value": cookie.value or "",
                "domain": cookie.domain or default_domain,
                "path": cookie.path or "/",
            })
        return exported

    def absorb_browser_cookies(self, cookies: Iterable[Dict[str, Any]]) -> None:
        """Write cookies observed in a browser context back into the jar."""
        for cookie in cookies:
            name = cookie.get("name")
            if not name:
                continue
            self.cookies.set(
                name,
                cookie.get("value", ""),
                domain=cookie.get("domain", ""),
                path=cookie.get("path", "/"),
            )

    def mark_unfetchable(self, url: str) -> None:
        if url not in self.unfetchable_urls:
            self.unfetchable_urls.append(url)
