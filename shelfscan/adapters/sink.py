"""
Record sink adapter.
The crawler only appends to a sink; it never reads records back.
"""
from typing import List, Optional

from shelfscan.models.product import ProductRecord
from shelfscan.models.run import RunSummary
from shelfscan.utils.logger import LayerLogger


class RecordSink:
    """Append-only destination for product records and the run summary."""

    async def emit(self, records: List[ProductRecord]) -> None:
        raise NotImplementedError

    async def save_summary(self, summary: RunSummary) -> None:
        raise NotImplementedError


class MemorySink(RecordSink):
    """
    In-memory sink used by the HTTP API and tests.

    Stores deep copies so that emitted records cannot change after
    they were written.
    """

    def __init__(self):
        self.records: List[ProductRecord] = []
        self.batches: int = 0
        self.summary: Optional[RunSummary] = None
        self.logger = LayerLogger("memory_sink")

    async def emit(self, records: List[ProductRecord]) -> None:
        if not records:
            return
        self.records.extend(r.model_copy(deep=True) for r in records)
        self.batches += 1
        self.logger.log_action(
            "emit_batch",
            "completed",
            batch_size=len(records),
            total=len(self.records),
        )

    async def save_summary(self, summary: RunSummary) -> None:
        self.summary = summary.model_copy(deep=True)
        self.logger.log_action("save_summary", "completed", **summary.model_dump())
