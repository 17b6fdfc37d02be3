import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog
from opentelemetry import trace


def add_trace_context(logger, method_name, event_dict):
    """Injects current OTel Trace ID into the log JSON."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


@contextmanager
def task_context(provider: str, task_id: Optional[str] = None) -> Iterator[None]:
    """
    Tags every log line and the active span with the generation task being
    worked on. Vendor trace ids are logged separately as `provider_trace_id`.
    """
    span = trace.get_current_span()
    span.set_attribute("relay.provider", provider)
    fields = {"provider": provider}
    if task_id is not None:
        span.set_attribute("relay.task_id", task_id)
        fields["task_id"] = task_id

    with structlog.contextvars.bound_contextvars(**fields):
        yield


def configure_logging(json_logs: bool = False, log_level: str = "INFO"):
    """Configures Structlog for Production (JSON) or Dev (Pretty)."""

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_trace_context,
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        # Production: Minified JSON
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Route uvicorn through structlog
    logging.getLogger("uvicorn.access").handlers = []
    logging.getLogger("uvicorn.error").handlers = []
