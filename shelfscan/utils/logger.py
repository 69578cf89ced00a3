"""
Structured logging for the shelfscan crawler.
Every event carries the run's trace ID and the emitting layer.
"""
import uuid
import logging
import structlog
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

from shelfscan.config import config

# One trace ID per crawl run
trace_id_var: ContextVar[str] = ContextVar("trace_id", default="")


def get_trace_id() -> str:
    """Current run's trace ID, generating one outside a run."""
    trace_id = trace_id_var.get()
    if not trace_id:
        trace_id = str(uuid.uuid4())[:8]
        trace_id_var.set(trace_id)
    return trace_id


def set_trace_id(trace_id: Optional[str] = None) -> str:
    """Start a run under trace_id (or a fresh one) and return it."""
    new_trace_id = trace_id or str(uuid.uuid4())[:8]
    trace_id_var.set(new_trace_id)
    return new_trace_id


def add_trace_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.setdefault("trace_id", get_trace_id())
    return event_dict


def configure_logging():
    """JSON lines in production, colored console output for LOG_FORMAT=console."""
    processors = [
        add_trace_id,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if config.LOG_FORMAT == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, config.LOG_LEVEL.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


class LayerLogger:
    """
    Logger bound to one crawler layer (transport, render, parsing,
    normalization, merge, enrichment or pipeline).

    Event names are fixed per method so runs can be filtered by event
    and layer without parsing messages.
    """

    def __init__(self, layer_name: str):
        self.layer_name = layer_name
        self.logger = get_logger(layer_name).bind(layer=layer_name)

    def log_decision(self, decision: str, reason: str, url: Optional[str] = None, **extra):
        """A control-flow choice: stop paginating, skip enrichment, escalate."""
        self.logger.info("decision_made", decision=decision, reason=reason, url=url, **extra)

    def log_action(self, action: str, status: str = "started", **extra):
        self.logger.info(f"action_{status}", action=action, **extra)

    def log_fallback(self, from_source: str, to_source: str, reason: str, **extra):
        """Moving from one fetch path or extraction tier to the next."""
        self.logger.warning(
            "fallback_triggered",
            from_source=from_source,
            to_source=to_source,
            reason=reason,
            **extra
        )

    def log_warning(self, message: str, **extra):
        self.logger.warning("warning_raised", message=message, **extra)

    def log_error(self, error: str, error_type: str = "unknown", **extra):
        self.logger.error("error_occurred", error=error, error_type=error_type, **extra)

    def log_fetch(self, url: str, method: str, status_code: Optional[int], result: str, **extra):
        """One fetch attempt over direct HTTP or the browser."""
        self.logger.info(
            "page_fetch",
            url=url,
            method=method,
            status_code=status_code,
            result=result,
            **extra
        )

    def log_extraction(
        self,
        source: str,
        records: int,
        fields_present: List[str],
        fields_missing: List[str],
        **extra
    ):
        self.logger.info(
            "records_extracted",
            source=source,
            records=records,
            fields_present=fields_present,
            fields_missing=fields_missing,
            **extra
        )


configure_logging()
