"""
Structured logging configuration.

Log lines are emitted through structlog to stderr, as JSON for services or
colored console output for the CLI. Request and run identifiers bound with
``analysis_context`` are merged into every line emitted inside the block, and
provider credentials are masked before rendering.
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

REDACTED = "[REDACTED]"

# Substrings of event keys whose values must never reach a log sink
SECRET_KEY_MARKERS = ("api_key", "apikey", "secret", "token", "authorization")


def redact_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask values logged under credential-like keys."""
    for key in event_dict:
        if any(marker in key.lower() for marker in SECRET_KEY_MARKERS):
            event_dict[key] = REDACTED
    return event_dict


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure application-wide structured logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: JSON lines when True, colored console output otherwise.
        log_file: Optional file that also receives stdlib log records.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        # module-level loggers must follow later reconfiguration
        cache_logger_on_first_use=False,
    )

    # httpx logs through the standard library
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper()),
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(getattr(logging, level.upper()))
        logging.getLogger().addHandler(file_handler)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger for the given module name."""
    return structlog.get_logger(name)


class LogContext:
    """Context manager for adding temporary log context, e.g. a request id."""

    def __init__(self, **kwargs: Any):
        self.context = kwargs
        self._token = None

    def __enter__(self):
        self._token = structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token:
            structlog.contextvars.reset_contextvars(**self._token)


def analysis_context(
    request_id: Optional[str] = None,
    run_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> LogContext:
    """
    Bind the identifiers of one analysis request for the duration of a block.

    Unset identifiers are left out, so an inner run context keeps the
    request id bound by the HTTP boundary.

    Example:
        >>> with analysis_context(request_id="req-1", user_id="u1"):
        ...     logger.info("Analysis stored")  # carries request_id and user_id
    """
    bound = {"request_id": request_id, "run_id": run_id, "user_id": user_id}
    return LogContext(**{key: value for key, value in bound.items() if value is not None})
