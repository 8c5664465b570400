"""Structured logging configuration for forge-cli.

Uses structlog for structured, context-rich logging that supports
both human-readable console output and machine-readable JSON format.
"""

import logging
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from forge_cli.config import ForgeSettings


def configure_logging(settings: "ForgeSettings | None" = None, level: str | None = None) -> None:
    """Configure structured logging based on settings.

    Args:
        settings: Application settings. If None, uses defaults.
        level: Explicit level name that overrides ``settings.log_level``.
    """
    log_level = logging.WARNING
    log_format = "console"

    if settings is not None:
        log_level = getattr(logging, settings.log_level.upper(), logging.WARNING)
        log_format = settings.log_format
    if level is not None:
        log_level = getattr(logging, level.upper(), log_level)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    # Also configure standard library logging for third-party libs
    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )

    # Reduce noise from third-party libraries
    for noisy in ("httpx", "httpcore", "google", "google_genai"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def log_context(**kwargs: object) -> Iterator[None]:
    """Bind ``kwargs`` to every log call made inside the block.

    Example:
        with log_context(plan_id=plan.id):
            logger.info("executing_step")  # includes plan_id
    """
    structlog.contextvars.bind_contextvars(**kwargs)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars(*kwargs)


class Loggers:
    """Pre-configured logger instances for forge-cli components."""

    @staticmethod
    def cli() -> structlog.stdlib.BoundLogger:
        """Logger for CLI commands."""
        return get_logger("forge_cli.cli")

    @staticmethod
    def planning() -> structlog.stdlib.BoundLogger:
        """Logger for plan creation and persistence."""
        return get_logger("forge_cli.planning")

    @staticmethod
    def safety() -> structlog.stdlib.BoundLogger:
        """Logger for denylist loading and validation."""
        return get_logger("forge_cli.safety")

    @staticmethod
    def sandbox() -> structlog.stdlib.BoundLogger:
        """Logger for sandboxed execution."""
        return get_logger("forge_cli.sandbox")

    @staticmethod
    def llm() -> structlog.stdlib.BoundLogger:
        """Logger for the generative backend, retries and key rotation."""
        return get_logger("forge_cli.llm")

    @staticmethod
    def config() -> structlog.stdlib.BoundLogger:
        """Logger for configuration."""
        return get_logger("forge_cli.config")

    @staticmethod
    def pipeline() -> structlog.stdlib.BoundLogger:
        """Logger for the plan/validate/execute pipeline."""
        return get_logger("forge_cli.pipeline")
