"""Logging helpers for cartree.

The package logs through loguru and is silent by default
(``logger.disable("cartree")`` in ``cartree/__init__.py``).
:func:`enable_logging` switches it on and returns a handle that removes the
handler again, either explicitly or as a context manager.
"""
from __future__ import annotations

import contextlib
import sys
import threading
from typing import TYPE_CHECKING, ClassVar, Literal

from loguru import logger

if TYPE_CHECKING:
    from types import TracebackType

    from loguru import Record

PACKAGE_NAME = __name__.split(".")[0]

LogLevel = Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
    "<level>{message}</level>"
)


class LoggingHandle:
    """Owns one loguru handler added by :func:`enable_logging`.

    Examples
    --------
    >>> with enable_logging(level="DEBUG"):  # doctest: +SKIP
    ...     reg.fit(X, y)
    """

    _active_ids: ClassVar[set] = set()
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, handler_id: int) -> None:
        self.handler_id: int | None = handler_id
        with LoggingHandle._lock:
            LoggingHandle._active_ids.add(handler_id)

    def disable(self) -> None:
        """Remove the handler; the last handle out disables the package logger."""
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


def enable_logging(*, level: LogLevel = "INFO", sink=None) -> LoggingHandle:
    """Enable cartree log output.

    Parameters
    ----------
    level : str, default="INFO"
        Minimum level.  ``"DEBUG"`` shows one line per grown node and per
        pruning step.
    sink : file-like or callable, optional
        Where to write; defaults to ``sys.stderr``.

    Returns
    -------
    LoggingHandle
        Call ``disable()`` on it (or use it in a ``with`` block) to stop.
    """
    logger.enable(PACKAGE_NAME)
    handler_id = logger.add(
        sink if sink is not None else sys.stderr,
        level=level,
        filter=_is_cartree_record,
        format=_FORMAT,
    )
    return LoggingHandle(handler_id)


def _is_cartree_record(record: Record) -> bool:
    name = record["name"]
    return name is not None and name.startswith(PACKAGE_NAME)
