"""structlog setup shared by the API process and the ingestion CLI.

Events go to stderr so the CLI can print its run summary on stdout. Set
``LOG_FORMAT=json`` when the output is shipped to a log collector; the
default console renderer is meant for terminals.
"""

import sys

import structlog

_configured = False


def configure_logging(debug: bool = False, log_format: str = "console") -> None:
    """Install the structlog processor chain (first call wins).

    Args:
        debug: Emit debug events such as per-page fetches and state
            transitions; otherwise the minimum level is INFO.
        log_format: ``"json"`` for one JSON object per line, anything else
            for the coloured console renderer.
    """
    global _configured
    if _configured:
        return

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if log_format.lower() == "json":
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        processors += [structlog.processors.format_exc_info, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(10 if debug else 20),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    _configured = True
