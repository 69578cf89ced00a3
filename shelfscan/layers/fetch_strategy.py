"""
Fetch Strategy Layer for the shelfscan crawler.
Chooses between direct HTTP and browser rendering for every URL.
"""
from typing import Optional

from shelfscan.adapters.browser_renderer import BrowserRenderer
from shelfscan.adapters.http_transport import FetchOutcome, HttpTransport
from shelfscan.config import config
from shelfscan.context import RunContext
from shelfscan.utils.logger import LayerLogger


class FetchStrategyLayer:
    """
    Fetch Strategy Layer - transport first, rendering on escalation.

    This layer:
    - Tries direct HTTP while the run has not escalated
    - Escalates to rendering when HTTP fails or returns no usable payload
    - Keeps rendering for the rest of the run once escalated (sticky)

    Callers only see HTML or None; how the page was fetched is invisible.
    """

    def __init__(
        self,
        context: RunContext,
        transport: HttpTransport,
        renderer: Optional[BrowserRenderer] = None,
        state_marker: str = config.STATE_SCRIPT_ID,
    ):
        self.context = context
        self.transport = transport
        self.renderer = renderer
        self.state_marker = state_marker
        self.logger = LayerLogger("fetch_strategy")

    async def fetch(self, url: str) -> Optional[str]:
        """
        Fetch a page with the current strategy.

        Args:
            url: The page URL to fetch

        Returns:
            Page HTML, or None when the page could not be fetched
        """
        if self.context.render_escalated:
            self.logger.log_decision(
                decision="use_render",
                reason="run already escalated to rendering",
                url=url,
            )
            html = await self._render(url)
            if html is None:
                self.context.mark_unfetchable(url)
            return html

        result = await self.transport.fetch_page(url)

        if result.outcome == FetchOutcome.SUCCESS and result.body:
            return result.body

        if result.outcome == FetchOutcome.BEST_EFFORT and result.has_marker(self.state_marker):
            self.logger.log_decision(
                decision="use_best_effort_body",
                reason="best-effort body still carries the state blob",
                url=url,
                status_code=result.status_code,
            )
            return result.body

        reason = (
            f"no usable payload after retries (status {result.status_code})"
            if result.outcome == FetchOutcome.BEST_EFFORT
            else f"http failure: {result.message or result.status_code}"
        )
        if self.context.escalate():
            self.logger.log_fallback(
                from_source="http",
                to_source="render",
                reason=reason,
                url=url,
                sticky=True,
            )

        html = await self._render(url)
        if html is not None:
            return html

        if result.outcome == FetchOutcome.BEST_EFFORT and result.body:
            self.logger.log_decision(
                decision="use_best_effort_body",
                reason="render failed, falling back to last HTTP body",
                url=url,
            )
            return result.body

        self.context.mark_unfetchable(url)
        self.logger.log_error(
            "Page could not be fetched by any strategy",
            error_type="unfetchable",
            url=url,
        )
        return None

    async def _render(self, url: str) -> Optional[str]:
        if self.renderer is None:
            self.logger.log_error(
                "Render fallback requested but no renderer is configured",
                error_type="render_unavailable",
                url=url,
            )
            return None
        return await self.renderer.render_page(url)
