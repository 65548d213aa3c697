"""
Structured logging for the clawcore runtime.

Configures structlog once at startup and hands out named loggers. Events are
snake_case names with key-value fields (``provider_failed``, ``tool_executed``,
``summary_created``).
"""

import logging
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console

from ..models.enums import LogLevel

if TYPE_CHECKING:
    from ..core.config import ClawConfig


def setup_file_logging(
    log_file: Path, max_bytes: int = 10 * 1024 * 1024, backup_count: int = 5  # 10MB
) -> RotatingFileHandler:
    """
    Configure rotating file handler for logs.

    Args:
        log_file: Path to the log file
        max_bytes: Maximum log file size before rotation (default: 10MB)
        backup_count: Number of backup files to keep (default: 5)

    Returns:
        Configured RotatingFileHandler instance
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )


def setup_logging(config: "ClawConfig") -> None:
    """
    Configure structured logging with appropriate processors.

    Console output uses the dev renderer unless ``json_logs`` is set. When a
    log file is configured, records are also written there as JSON lines.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    level = getattr(logging, config.log_level.value, logging.INFO)
    console_renderer = (
        structlog.processors.JSONRenderer() if config.json_logs else structlog.dev.ConsoleRenderer()
    )

    if config.log_file is not None:
        file_handler = setup_file_logging(
            log_file=config.log_file,
            max_bytes=config.log_max_bytes,
            backup_count=config.log_backup_count,
        )
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.JSONRenderer(),
                ],
            )
        )

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    console_renderer,
                ],
            )
        )

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)
        root_logger.setLevel(level)

        logger_factory = structlog.stdlib.LoggerFactory()
        processors = shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]
    else:
        logger_factory = structlog.PrintLoggerFactory()  # type: ignore[assignment]
        processors = shared_processors + [console_renderer]

    structlog.configure(
        processors=processors,  # type: ignore[arg-type]
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class ComponentLogger:
    """Operation start/complete/error logging for a long-running component"""

    def __init__(self, component_name: str, console: Console | None = None, rich_output: bool = False):
        self.logger = structlog.get_logger(component_name)
        self.component = component_name
        self.rich_output = rich_output
        self.console = console or Console(stderr=True)

    def log_operation_start(self, operation: str, details: dict | None = None) -> float:
        """Log operation start. Returns a start mark for log_operation_complete."""
        if self.rich_output:
            self.console.print(f"[cyan]▶[/cyan] [{self.component}] Starting: {operation}")
        self.logger.info(f"{operation}_started", component=self.component, **(details or {}))
        return time.perf_counter()

    def log_operation_complete(
        self, operation: str, started: float | None = None, details: dict | None = None
    ) -> None:
        """Log operation completion"""
        duration_ms = (time.perf_counter() - started) * 1000 if started is not None else None

        if self.rich_output:
            msg = f"[green]✅[/green] [{self.component}] Completed: {operation}"
            if duration_ms is not None:
                msg += f" ({duration_ms:.0f}ms)"
            self.console.print(msg)

        log_data = details.copy() if details else {}
        log_data["component"] = self.component
        if duration_ms is not None:
            log_data["duration_ms"] = round(duration_ms, 1)

        self.logger.info(f"{operation}_completed", **log_data)

    def log_operation_error(self, operation: str, error: Exception, details: dict | None = None) -> None:
        """Log operation error"""
        if self.rich_output:
            from rich.traceback import Traceback

            self.console.print(f"[red]❌[/red] [{self.component}] Failed: {operation}")
            self.console.print(Traceback.from_exception(type(error), error, error.__traceback__))

        log_data = details.copy() if details else {}
        log_data.update(
            {
                "component": self.component,
                "error_type": type(error).__name__,
                "error_message": str(error),
            }
        )
        self.logger.error(f"{operation}_failed", **log_data)

    def log_metric(self, metric_name: str, value: Any, unit: str = "") -> None:
        """Log a metric"""
        self.logger.info(
            "metric", component=self.component, metric=metric_name, value=value, unit=unit
        )


__all__ = ["setup_logging", "setup_file_logging", "get_logger", "ComponentLogger", "LogLevel"]
