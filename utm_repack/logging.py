from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Mapping

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

LOG_DIR_ENV = "UTM_REPACK_LOG_DIR"

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[source]: <10}</cyan> | "
    "<blue>{extra[job_id]: <16}</blue> | "
    "{message}"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
    "{level: <8} | "
    "{extra[source]: <10} | "
    "{extra[job_id]: <16} | "
    "{message}"
)


def default_log_dir(environ: Mapping[str, str] | None = None) -> Path | None:
    """Return the log directory configured through the environment, if any."""
    environ = os.environ if environ is None else environ
    value = environ.get(LOG_DIR_ENV)
    if not value:
        return None
    return Path(value)


def _should_log_progress(record) -> bool:
    """Keep per-line tool progress (unxz/xz -v) out of the console below DEBUG."""
    tags = record["extra"].get("tags", [])
    if "progress" in tags:
        return record["level"].no >= logger.level("DEBUG").no
    return True


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Logger:
    """
    Setup console logging and, when a log directory is given, file sinks.

    Log Files (only with log_dir):
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when debug or trace is enabled (3 day retention)
    - structured.jsonl: Structured JSON logs for CI artifact upload

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Directory for file sinks (defaults to $UTM_REPACK_LOG_DIR)
        environ: Environment used for that default (defaults to os.environ)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        filter=_should_log_progress,
        colorize=None,
        format=CONSOLE_FORMAT,
    )

    log_dir = log_dir or default_log_dir(environ)
    if log_dir is None:
        return logger
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        backtrace=False,
        diagnose=False,
        format=FILE_FORMAT,
    )

    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            backtrace=True,
            diagnose=True,
            format=FILE_FORMAT + " | {extra[tags]}",
        )

    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        serialize=True,
        format="{message}",
    )

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
        job_id: Job identifier for tracking a packaging run
        tags: Tags for filtering (e.g., ["loop", "storage"])
        source: Source component (e.g., "boot", "rootfs", "package")
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
    Context manager for tracking a pipeline step with automatic timing.

    Logs start, completion and failure (with duration) of the step.

    Example:
        with operation_context("decompress", source="image.img.xz") as log:
            log.debug("Streaming into source.img")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed",
                duration_seconds=round(duration, 2),
            )
        except BaseException as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """Factory for component loggers with preset source and tags."""

    @staticmethod
    def for_pipeline(step: str) -> Logger:
        """Logger for a packaging pipeline step."""
        return get_logger(source=step, tags=["pipeline", step])

    @staticmethod
    def for_storage() -> Logger:
        """Logger for loop devices, mounts and external commands."""
        return get_logger(source="storage", tags=["storage"])

    @staticmethod
    def for_progress(tool: str) -> Logger:
        """Logger for progress output of long running tools."""
        return get_logger(source=tool, tags=["progress", tool])

    @staticmethod
    def for_system() -> Logger:
        """Logger for startup, shutdown and configuration."""
        return get_logger(source="system", tags=["system"])


class ThrottledLogger:
    """
    Logger wrapper that throttles high-frequency log events.

    Used for the progress lines that unxz and xz print with -v.
    """

    def __init__(self, log: Logger, interval_seconds: float = 5.0):
        self.log = log
        self.interval = interval_seconds
        self.last_log_time: dict[str, float] = {}

    def debug(self, key: str, message: str, **kwargs) -> None:
        self._throttled_log("DEBUG", key, message, **kwargs)

    def _throttled_log(self, level: str, key: str, message: str, **kwargs) -> None:
        now = time.time()
        last_time = self.last_log_time.get(key, 0)

        if now - last_time >= self.interval:
            log_method = getattr(self.log, level.lower())
            log_method(message, **kwargs)
            self.last_log_time[key] = now
