"""
structlog setup shared by the web app, the CLI and the Lighthouse worker.
"""

import logging
import sys

import structlog


def configure_logging(level: str = "INFO", json_logs: bool = False, stream=None):
    """
    Configure structlog and the standard library root logger.

    Args:
        level: Log level name
        json_logs: Render events as JSON lines instead of console output
        stream: Output stream (defaults to stderr)
    """
    stream = stream or sys.stderr
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=stream, level=log_level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )
