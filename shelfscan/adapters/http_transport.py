"""
Direct HTTP transport for the shelfscan crawler.
First fetch tier: plain HTTP with browser-like headers, bounded
exponential backoff and a run-scoped cookie jar.
"""
import asyncio
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from shelfscan.adapters.proxy import ProxyProvider
from shelfscan.config import config
from shelfscan.context import RunContext
from shelfscan.utils.logger import LayerLogger


class FetchOutcome(str, Enum):
    """Classified result of a fetch."""
    SUCCESS = "success"
    BEST_EFFORT = "best_effort"  # retries exhausted, body returned anyway
    FAILURE = "failure"


# Statuses retried with backoff before settling for best effort
TRANSIENT_STATUSES = {429, 403, 503}
ACCEPTED_STATUS = 202

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
]


@dataclass
class FetchResult:
    """Result of fetching one URL."""
    url: str
    outcome: FetchOutcome
    status_code: Optional[int] = None
    body: Optional[str] = None
    attempts: int = 1
    message: str = ""

    def has_marker(self, marker: str) -> bool:
        return bool(self.body) and marker in self.body


@dataclass
class HeaderProfile:
    """Header material a navigation request is assembled from."""
    user_agents: List[str] = field(default_factory=lambda: list(DEFAULT_USER_AGENTS))
    accept_languages: List[str] = field(default_factory=lambda: ["en-US,en;q=0.9", "en-US,en;q=0.8"])
    referer: Optional[str] = None
    origin: Optional[str] = None


def _platform_for(user_agent: str) -> str:
    if "Windows" in user_agent:
        return '"Windows"'
    if "Macintosh" in user_agent:
        return '"macOS"'
    return '"Linux"'


def build_headers(profile: HeaderProfile, rng: Optional[random.Random] = None) -> Dict[str, str]:
    """
    Build a randomized but self-consistent navigation header set.

    Chromium user agents get matching client hints; Firefox does not
    send them.
    """
    rng = rng or random
    user_agent = rng.choice(profile.user_agents)
    referer = profile.referer or f"{config.SITE_BASE_URL}/"
    origin = profile.origin or config.SITE_BASE_URL

    headers = {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
        "Accept-Language": rng.choice(profile.accept_languages),
        "Accept-Encoding": "gzip, deflate, br",
        "Cache-Control": "no-cache",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "Upgrade-Insecure-Requests": "1",
        "Referer": referer,
        "Origin": origin,
    }

    if "Chrome/" in user_agent:
        version = user_agent.split("Chrome/")[1].split(".")[0]
        headers["sec-ch-ua"] = f'"Not_A Brand";v="8", "Chromium";v="{version}", "Google Chrome";v="{version}"'
        headers["sec-ch-ua-mobile"] = "?0"
        headers["sec-ch-ua-platform"] = _platform_for(user_agent)

    return headers


def backoff_delays(retries: int, base: float) -> List[float]:
    """Backoff schedule in seconds: base, 2*base, 4*base, ... (one entry per retry)."""
    return [base * (2 ** attempt) for attempt in range(max(0, retries))]


class HttpTransport:
    """
    Direct HTTP fetcher.

    Classifies response codes:
    - 200 is success
    - 202 is success only when the state blob is already present,
      otherwise retried, then returned as best effort
    - 429/403/503 are retried, then returned as best effort
    - anything else, or a network error, is a failure
    """

    def __init__(
        self,
        context: RunContext,
        proxy_provider: Optional[ProxyProvider] = None,
        timeout: float = config.REQUEST_TIMEOUT,
        max_retries: int = config.TRANSPORT_MAX_RETRIES,
        backoff_base: float = config.BACKOFF_BASE_SECONDS,
        state_marker: str = config.STATE_SCRIPT_ID,
        header_profile: Optional[HeaderProfile] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.context = context
        self.proxy_provider = proxy_provider
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.state_marker = state_marker
        self.header_profile = header_profile or HeaderProfile()
        self._transport = transport
        self._sleep = sleep
        self.logger = LayerLogger("http_transport")

    async def fetch_page(self, url: str, header_profile: Optional[HeaderProfile] = None) -> FetchResult:
        """
        Fetch a page over plain HTTP.

        Args:
            url: The page URL to fetch
            header_profile: Override for the transport's default header profile

        Returns:
            FetchResult with the classified outcome and body
        """
        profile = header_profile or self.header_profile
        delays = backoff_delays(self.max_retries, self.backoff_base)
        attempt = 0

        while True:
            try:
                response = await self._request(url, build_headers(profile))
            except httpx.TimeoutException as e:
                self.logger.log_error(
                    f"Timeout fetching URL: {str(e)}",
                    error_type="timeout",
                    url=url,
                    attempt=attempt + 1,
                )
                return FetchResult(url=url, outcome=FetchOutcome.FAILURE, attempts=attempt + 1, message="timeout")
            except httpx.HTTPError as e:
                self.logger.log_error(
                    f"Failed to fetch URL: {str(e)}",
                    error_type="http_error",
                    url=url,
                    attempt=attempt + 1,
                )
                return FetchResult(url=url, outcome=FetchOutcome.FAILURE, attempts=attempt + 1, message=str(e))

            status_code = response.status_code
            body = response.text
            self._persist_cookies(response)

            self.logger.log_fetch(
                url=url,
                method="http",
                status_code=status_code,
                result=self._status_to_result(status_code),
                attempt=attempt + 1,
                content_length=len(body),
            )

            if status_code == 200:
                return FetchResult(url, FetchOutcome.SUCCESS, status_code, body, attempt + 1)

            if status_code == ACCEPTED_STATUS and self.state_marker in body:
                self.logger.log_decision(
                    decision="accept_202",
                    reason="202 response already carries the state blob",
                    url=url,
                )
                return FetchResult(url, FetchOutcome.SUCCESS, status_code, body, attempt + 1)

            if status_code == ACCEPTED_STATUS or status_code in TRANSIENT_STATUSES:
                if attempt < len(delays):
                    delay = delays[attempt]
                    self.logger.log_decision(
                        decision="retry",
                        reason=f"transient status {status_code}",
                        url=url,
                        delay_seconds=delay,
                        attempt=attempt + 1,
                        max_retries=self.max_retries,
                    )
                    await self._sleep(delay)
                    attempt += 1
                    continue

                self.logger.log_decision(
                    decision="best_effort",
                    reason=f"status {status_code} after {self.max_retries} retries, returning body anyway",
                    url=url,
                )
                return FetchResult(
                    url, FetchOutcome.BEST_EFFORT, status_code, body, attempt + 1,
                    message="retries_exhausted",
                )

            self.logger.log_error(
                f"HTTP request returned status {status_code}",
                error_type="http_status",
                url=url,
            )
            return FetchResult(url, FetchOutcome.FAILURE, status_code, body, attempt + 1, message=f"http_{status_code}")

    async def _request(self, url: str, headers: Dict[str, str]) -> httpx.Response:
        proxy = self.proxy_provider.new_url() if self.proxy_provider else None
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            cookies=self.context.cookies,
            proxy=proxy,
            transport=self._transport,
        ) as client:
            return await client.get(url, headers=headers)

    def _persist_cookies(self, response: httpx.Response):
        """Keep Set-Cookie values from redirects and the final response."""
        for hop in response.history:
            self.context.store_response_cookies(hop)
        self.context.store_response_cookies(response)

    def _status_to_result(self, status_code: int) -> str:
        """Convert HTTP status to result string for logging."""
        if status_code == 200:
            return "success"
        elif status_code == ACCEPTED_STATUS:
            return "accepted"
        elif status_code in TRANSIENT_STATUSES:
            return "blocked"
        elif status_code == 404:
            return "not_found"
        else:
            return f"http_{status_code}"
