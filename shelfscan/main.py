"""
shelfscan - FastAPI Application
Main entry point with REST API endpoints.
"""
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from shelfscan import __version__
from shelfscan.adapters.sink import MemorySink
from shelfscan.config import config
from shelfscan.layers.pipeline import CrawlPipeline
from shelfscan.models.product import ProductRecord
from shelfscan.models.run import CrawlSettings, RunSummary
from shelfscan.utils.logger import get_logger, set_trace_id


# Initialize FastAPI app
app = FastAPI(
    title="shelfscan",
    description="Product listing crawler for script-rendered grocery storefronts",
    version=__version__,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = get_logger("main")


class CrawlResponse(BaseModel):
    """Response model for a crawl run."""
    summary: RunSummary
    records: List[ProductRecord]
    trace_id: str


# API Routes
@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


@app.post("/api/crawl", response_model=CrawlResponse)
async def crawl(request: CrawlSettings):
    """
    Run a crawl and return the emitted records with the run summary.

    Flow:
    1. Paginate the start URLs (direct HTTP, browser render on escalation)
    2. Extract and merge records
    3. Optionally enrich from detail pages
    """
    trace_id = set_trace_id()

    logger.info(
        "crawl_request",
        start_urls=request.resolved_start_urls(),
        results_wanted=request.results_wanted,
        trace_id=trace_id,
    )

    sink = MemorySink()
    try:
        summary = await CrawlPipeline(request, sink).run(trace_id=trace_id)
    except Exception as e:
        logger.error("crawl_error", error=str(e), trace_id=trace_id)
        raise HTTPException(status_code=500, detail=str(e))

    return CrawlResponse(summary=summary, records=sink.records, trace_id=trace_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
