"""Opt-in loguru output for cartkit.

Records from the `cartkit` namespace are dropped until `enable_logging()` adds
a stderr sink. Training entry points (`make_tree`, `cross_validate`,
`train_forest`) log their start at the TRAINING level, which sits between INFO
and WARNING; growth, pruning, and fold details are logged at DEBUG.

Note:
    loguru's default sink (id 0) is removed on import, otherwise every enabled
    record would be printed twice. Nothing happens if the host application
    removed it first.
"""

from __future__ import annotations

import contextlib
import sys
import threading
import warnings
from typing import TYPE_CHECKING, ClassVar, Final, Literal

from loguru import logger

if TYPE_CHECKING:
    from types import TracebackType

    from loguru import Record

PACKAGE_NAME: Final[str] = __name__.split(".")[0]

with contextlib.suppress(ValueError):
    logger.remove(0)

TRAINING_LEVEL: Final[str] = "TRAINING"
TRAINING_LEVEL_NUMBER: Final[int] = 25


def _register_training_level() -> None:
    """Add the TRAINING level to loguru, or warn if another number already owns the name."""
    try:
        registered = logger.level(TRAINING_LEVEL)
    except ValueError:
        logger.level(TRAINING_LEVEL, no=TRAINING_LEVEL_NUMBER, icon="🌳")
        return
    if registered.no != TRAINING_LEVEL_NUMBER:
        warnings.warn(
            f"TRAINING level already registered with numeric value {registered.no},"
            f" cartkit uses {TRAINING_LEVEL_NUMBER}",
            stacklevel=2,
        )


_register_training_level()

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "TRAINING", "WARNING", "ERROR", "CRITICAL"]

type LogFormat = Literal["short", "full"]

_LOCATION: Final[dict[str, str]] = {
    "short": "<cyan>{function}</cyan>",
    "full": "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan>",
}


class LoggingHandle:
    """A stderr sink added by `enable_logging()`.

    Handles are counted across threads; when the last one is disabled the
    `cartkit` namespace is switched off again.

    Examples:
        >>> with enable_logging(level="DEBUG"):  # doctest: +SKIP
        ...     tree = make_tree(table)
    """

    _active_ids: ClassVar[set[int]] = set()
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, handler_id: int) -> None:
        self.handler_id: int | None = handler_id
        with LoggingHandle._lock:
            LoggingHandle._active_ids.add(handler_id)

    def disable(self) -> None:
        """Drop the sink; idempotent.

        Once no handle is left the namespace is disabled, which also mutes
        sinks an application attached to `cartkit` by itself.
        """
        with LoggingHandle._lock:
            if self.handler_id is None:
                return
            LoggingHandle._active_ids.discard(self.handler_id)
            with contextlib.suppress(ValueError):
                logger.remove(self.handler_id)
            self.handler_id = None
            if not LoggingHandle._active_ids:
                logger.disable(PACKAGE_NAME)

    def __enter__(self) -> LoggingHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.disable()

    @classmethod
    def get_active_handle_count(cls) -> int:
        """Number of handles whose sink is still attached."""
        with cls._lock:
            return len(cls._active_ids)


def enable_logging(
    *,
    level: LogLevel = TRAINING_LEVEL,
    log_format: LogFormat = "short",
) -> LoggingHandle:
    """Print cartkit records to stderr.

    Args:
        level (LogLevel): Lowest level shown. At "TRAINING" each training call
            prints one line, plus the pruning cutoff it picked; "DEBUG" also
            shows tree sizes, weakest-link sequences, and fold progress.
        log_format (LogFormat): "short" prefixes each line with the calling
            function; "full" with module, function, and line number.

    Returns:
        LoggingHandle: Removes this sink when disabled or used as a context manager.

    Examples:
        >>> handle = enable_logging(level="DEBUG")  # doctest: +SKIP
        >>> handle.disable()  # doctest: +SKIP
    """
    logger.enable(PACKAGE_NAME)
    format_str = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "  # noqa: RUF027 - loguru format string
        f"{_LOCATION[log_format]} - "
        "<level>{message}</level> {extra}"
    )
    handler_id = logger.add(sys.stderr, level=level, filter=_is_cartkit_record, format=format_str)
    return LoggingHandle(handler_id)


def _is_cartkit_record(record: Record) -> bool:
    name = record["name"]
    return name is not None and name.startswith(PACKAGE_NAME)
