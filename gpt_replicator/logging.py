from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "GPT_REPLICATOR_LOG_DIR",
        Path.home() / ".local" / "state" / "gpt-replicator" / "logs",
    )
)


CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[source]: <10}</cyan> | {message}"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[source]: <10} | {extra[job_id]: <20} | {message}"
)
DEBUG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[source]: <10} | {extra[job_id]: <20} | {extra[tags]} | {message}"
)


def _should_log_command_output(record) -> bool:
    """Keep raw tool stdout/stderr dumps out of the console unless tracing."""
    if "command-output" not in record["extra"].get("tags", []):
        return True
    level_no = record["level"].no
    return level_no <= logger.level("TRACE").no or level_no >= logger.level("WARNING").no


def _add_file_sink(path: Path, level: str, rotation: str, retention: str, **options) -> None:
    options.setdefault("format", FILE_FORMAT)
    options.setdefault("backtrace", False)
    options.setdefault("diagnose", False)
    logger.add(
        path,
        level=level,
        rotation=rotation,
        retention=retention,
        compression="zip",
        **options,
    )


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Configure console and file sinks for a replication run.

    The console shows INFO and above by default, DEBUG with ``debug`` and
    TRACE with ``trace``. Raw command output only reaches the console at
    TRACE (or when it is logged as a warning).

    Files written under ``log_dir``:
    - operations.log: phase progress and per-partition outcomes (INFO+)
    - structured.jsonl: the same records serialized as JSON
    - debug.log: command lines and their output, only with debug or trace
    - trace.log: every parsed table row, only with trace

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to ~/.local/state/gpt-replicator/logs)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    console_level = "TRACE" if trace else "DEBUG" if debug else "INFO"
    logger.add(
        sys.stderr,
        level=console_level,
        format=CONSOLE_FORMAT,
        filter=_should_log_command_output,
        colorize=True,
        backtrace=False,
        diagnose=False,
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    _add_file_sink(log_dir / "operations.log", "INFO", "5 MB", "7 days")
    _add_file_sink(
        log_dir / "structured.jsonl", "INFO", "10 MB", "7 days", serialize=True, format="{message}"
    )
    if debug or trace:
        _add_file_sink(
            log_dir / "debug.log", "DEBUG", "10 MB", "3 days",
            format=DEBUG_FORMAT, backtrace=True, diagnose=True,
        )
    if trace:
        _add_file_sink(log_dir / "trace.log", "TRACE", "50 MB", "1 day")

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking a replication run
        tags: Tags for filtering (e.g., ["table", "gpt"])
        source: Source component (e.g., "planner", "table")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Log the start, completion or failure of a long-running operation.

    Every record emitted inside the block carries the generated job_id and
    the keyword details. Failures are logged with their type and re-raised.

    Example:
        with operation_context("replicate", source="/dev/mmcblk0", destination="/dev/nvme0n1") as log:
            log.debug("Zapping destination")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"
    title = operation.capitalize()

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])
        started = time.monotonic()
        log.info(f"{title} started", **details)
        try:
            yield log
        except Exception as error:
            log.error(
                f"{title} failed",
                error=str(error),
                error_type=type(error).__name__,
                duration_seconds=round(time.monotonic() - started, 2),
            )
            raise
        log.success(f"{title} completed", duration_seconds=round(time.monotonic() - started, 2))


class LoggerFactory:
    """
    Factory for creating component-specific loggers with automatic context.

    Each factory method returns a logger pre-configured with the source and
    tags of one replication component.
    """

    @staticmethod
    def for_inspector() -> Logger:
        """Logger for reading device sizes and partition tables."""
        return logger.bind(source="inspector", tags=["inspector", "gpt"])

    @staticmethod
    def for_planner() -> Logger:
        """Logger for layout planning."""
        return logger.bind(source="planner", tags=["planner", "gpt"])

    @staticmethod
    def for_table() -> Logger:
        """Logger for partition table mutation."""
        return logger.bind(source="table", tags=["table", "gpt", "storage"])

    @staticmethod
    def for_filesystem() -> Logger:
        """Logger for filesystem detection and creation."""
        return logger.bind(source="filesystem", tags=["filesystem", "storage"])

    @staticmethod
    def for_identity() -> Logger:
        """Logger for UUID and label rewriting."""
        return logger.bind(source="identity", tags=["identity", "storage"])

    @staticmethod
    def for_rescan() -> Logger:
        """Logger for kernel partition rescans and udev settling."""
        return logger.bind(source="rescan", tags=["rescan", "hardware"])

    @staticmethod
    def for_command() -> Logger:
        """Logger for external command execution."""
        return logger.bind(source="command", tags=["command"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, config)."""
        return logger.bind(source="system", tags=["system"])
