"""
Crawl Pipeline for the shelfscan crawler.
Drives listing pagination, the optional enrichment pass and the
run summary for one crawl.
"""
import asyncio
import random
from typing import Any, Awaitable, Callable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from shelfscan.adapters.browser_renderer import BrowserRenderer
from shelfscan.adapters.http_transport import HttpTransport
from shelfscan.adapters.proxy import ProxyProvider, RotatingProxyProvider
from shelfscan.adapters.sink import RecordSink
from shelfscan.config import config
from shelfscan.context import RunContext
from shelfscan.layers.enrichment import DetailExtractor, EnrichmentLayer
from shelfscan.layers.extraction import PageExtractor
from shelfscan.layers.fetch_strategy import FetchStrategyLayer
from shelfscan.layers.merge import MergeEngine, ResultSet
from shelfscan.layers.normalizer import FieldNormalizer, retailer_slug_from_url
from shelfscan.models.product import ExtractionMethod, ProductRecord
from shelfscan.models.run import CrawlSettings, RunSummary
from shelfscan.utils.logger import LayerLogger, set_trace_id


def page_url_for(start_url: str, page: int) -> str:
    """URL of listing page `page`: the start URL with page=N merged into its query."""
    if page <= 1:
        return start_url
    parsed = urlparse(start_url)
    params = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != "page"]
    params.append(("page", str(page)))
    return urlunparse(parsed._replace(query=urlencode(params)))


def is_generic_category_url(url: str) -> bool:
    """Category pages outside a store context carry no prices."""
    return "/categories/" in urlparse(url).path and retailer_slug_from_url(url) is None


class CrawlPipeline:
    """
    Orchestrates a complete crawl run.

    Flow:
    1. For each start URL, fetch listing pages sequentially (page N+1 waits for page N)
    2. Extract, normalize and fold records into the run's ResultSet
    3. Stop on an empty page, at max_pages, or once results_wanted is reached
    4. Optionally enrich records missing price or brand from detail pages
    5. Emit records to the sink and persist the run summary

    Without enrichment each page's new records are emitted as soon as the
    page is done. A duplicate seen on a later page is merged into the
    in-memory record only; the already-emitted snapshot is not re-sent.
    With enrichment, emission is deferred to a single batch after the
    detail pass. The target count is checked between pages and between
    enrichment chunks.

    Per-page and per-product failures are logged and never abort the run;
    only sink failures propagate.
    """

    def __init__(
        self,
        settings: CrawlSettings,
        sink: RecordSink,
        context: Optional[RunContext] = None,
        fetcher: Optional[FetchStrategyLayer] = None,
        renderer: Optional[BrowserRenderer] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.sink = sink
        self.context = context or RunContext()
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.logger = LayerLogger("crawl_pipeline")

        self.engine = MergeEngine()
        self.normalizer = FieldNormalizer(zipcode=settings.zipcode)
        self.extractor = PageExtractor(self.normalizer)

        self._owns_renderer = False
        if fetcher is None:
            proxy_provider = self._build_proxy_provider()
            if renderer is None:
                renderer = BrowserRenderer(
                    self.context,
                    proxy_provider=proxy_provider,
                    max_concurrency=config.render_concurrency_for(settings.enrich_concurrency()),
                )
                self._owns_renderer = True
            transport = HttpTransport(self.context, proxy_provider=proxy_provider)
            fetcher = FetchStrategyLayer(self.context, transport, renderer)
        self.fetcher = fetcher
        self.renderer = renderer

    def _build_proxy_provider(self) -> ProxyProvider:
        urls = self.settings.proxy_urls or config.get_proxy_urls()
        return RotatingProxyProvider(urls) if urls else ProxyProvider()

    async def run(self, trace_id: Optional[str] = None) -> RunSummary:
        """
        Execute the crawl.

        Args:
            trace_id: Trace ID to log under (a new one is generated if omitted)

        Returns:
            RunSummary, also persisted through the sink
        """
        trace_id = set_trace_id(trace_id)
        settings = self.settings
        start_urls = settings.resolved_start_urls()
        results = ResultSet(self.engine)
        enriched = 0

        self.logger.log_action(
            "crawl",
            "started",
            trace_id=trace_id,
            start_urls=start_urls,
            results_wanted=settings.results_wanted,
            max_pages=settings.max_pages,
            extract_details=settings.extract_details,
        )

        for url in start_urls:
            if is_generic_category_url(url):
                self.logger.log_warning(
                    "Generic category URL without a store context; prices will be unavailable",
                    url=url,
                )

        try:
            for start_url in start_urls:
                if len(results) >= settings.results_wanted:
                    break
                await self._crawl_listing(start_url, results)

            if settings.extract_details:
                enrichment = EnrichmentLayer(
                    self.fetcher,
                    DetailExtractor(self.normalizer),
                    self.engine,
                    concurrency=settings.enrich_concurrency(),
                    sleep=self.sleep,
                )
                enriched = await enrichment.enrich(results.records(), limit=settings.results_wanted)
                # Deferred emission: one snapshot per logical product
                await self.sink.emit(results.records())
        finally:
            if self._owns_renderer and self.renderer is not None:
                await self.renderer.close()

        summary = self._build_summary(results, enriched)
        await self.sink.save_summary(summary)

        self.logger.log_action("crawl", "completed", **summary.model_dump())
        return summary

    async def _crawl_listing(self, start_url: str, results: ResultSet):
        """Paginate one start URL until empty page, max_pages or target."""
        settings = self.settings

        for page in range(1, settings.max_pages + 1):
            if len(results) >= settings.results_wanted:
                self.logger.log_decision(
                    decision="stop_pagination",
                    reason="target result count reached",
                    url=start_url,
                    saved=len(results),
                )
                return

            if page > 1:
                delay = config.PAGE_DELAY_SECONDS + self.rng.uniform(0, config.PAGE_DELAY_JITTER)
                await self.sleep(delay)

            page_url = page_url_for(start_url, page)
            records = await self._process_page(page_url, page)
            if not records:
                self.logger.log_decision(
                    decision="stop_pagination",
                    reason="page yielded no products",
                    url=page_url,
                    page=page,
                )
                return

            added = self._add_records(records, results)

            self.logger.log_action(
                "page",
                "completed",
                url=page_url,
                page=page,
                found=len(records),
                added=len(added),
                total=len(results),
            )

            if not settings.extract_details:
                await self.sink.emit(added)

    async def _process_page(self, page_url: str, page: int) -> List[ProductRecord]:
        """Fetch and extract one listing page; failures yield an empty list."""
        try:
            html = await self.fetcher.fetch(page_url)
            if html is None:
                return []
            self.context.pages_processed += 1
            records = self.extractor.extract(html, page_url)
        except Exception as e:
            self.logger.log_error(
                f"Page processing failed: {str(e)}",
                error_type="page_error",
                url=page_url,
                page=page,
            )
            return []

        for record in records:
            self.context.extraction_methods.add(record.extraction_method.value)
        return records

    def _add_records(self, records: List[ProductRecord], results: ResultSet) -> List[ProductRecord]:
        added = []
        for record in records:
            if len(results) >= self.settings.results_wanted:
                break
            if results.add(record):
                added.append(record)
        return added

    def _build_summary(self, results: ResultSet, enriched: int) -> RunSummary:
        methods = set(self.context.extraction_methods)
        methods.update(results.extraction_methods())
        return RunSummary(
            total_products_saved=len(results),
            target_results=self.settings.results_wanted,
            pages_processed=self.context.pages_processed,
            zipcode=self.settings.zipcode,
            used_render_fallback=self.context.render_escalated,
            extraction_methods=sorted(methods),
            missing_methods=[m.value for m in ExtractionMethod if m.value not in methods],
            enriched_count=enriched,
            unfetchable_urls=list(self.context.unfetchable_urls),
        )
