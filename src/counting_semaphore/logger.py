"""Injectable logger capability used by the semaphores.

Every semaphore accepts a ``logger`` that exposes ``debug``, ``info``,
``warn``, ``error`` and ``fatal``. Each takes an optional ``message`` and an
optional ``lazy`` callable that builds the message only when it will be
emitted, so hot paths do not pay for string formatting:

    >>> logger.debug(lazy=lambda: f"Acquired {permits} permits")

Two implementations are provided. ``NullLogger`` drops everything and
``StdlibLogger`` forwards to a :class:`logging.Logger`.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Final, Optional, Protocol

RUN_ALL_LOGGER_BLOCKS: Final[str] = "RUN_ALL_LOGGER_BLOCKS"

LazyMessage = Callable[[], object]


class SemaphoreLogger(Protocol):
    def debug(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None: ...

    def info(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None: ...

    def warn(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None: ...

    def error(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None: ...

    def fatal(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None: ...


class NullLogger:
    """A logger that discards all messages.

    Lazy message builders are not called, unless the ``RUN_ALL_LOGGER_BLOCKS``
    environment variable is set to ``"yes"``. The test suite sets it so that
    bugs hiding inside rarely-evaluated log messages still surface.
    """

    def _discard(self, lazy: Optional[LazyMessage]) -> None:
        if lazy is not None and os.environ.get(RUN_ALL_LOGGER_BLOCKS) == "yes":
            lazy()

    def debug(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None:
        self._discard(lazy)

    def info(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None:
        self._discard(lazy)

    def warn(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None:
        self._discard(lazy)

    def error(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None:
        self._discard(lazy)

    def fatal(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None:
        self._discard(lazy)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class StdlibLogger:
    """Adapts a :class:`logging.Logger` to the semaphore logger capability.

    ``warn`` maps to ``WARNING`` and ``fatal`` to ``CRITICAL``. A lazy
    message is only built when the wrapped logger is enabled for the level.
    When both ``message`` and ``lazy`` are given they are joined with a space.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @classmethod
    def named(cls, name: str) -> StdlibLogger:
        return cls(logging.getLogger(name))

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _log(self, level: int, message: Optional[str], lazy: Optional[LazyMessage]) -> None:
        if not self._logger.isEnabledFor(level):
            return
        parts = []
        if message is not None:
            parts.append(message)
        if lazy is not None:
            parts.append(str(lazy()))
        if parts:
            self._logger.log(level, " ".join(parts))

    def debug(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None:
        self._log(logging.DEBUG, message, lazy)

    def info(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None:
        self._log(logging.INFO, message, lazy)

    def warn(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None:
        self._log(logging.WARNING, message, lazy)

    def error(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None:
        self._log(logging.ERROR, message, lazy)

    def fatal(self, message: Optional[str] = None, lazy: Optional[LazyMessage] = None) -> None:
        self._log(logging.CRITICAL, message, lazy)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self._logger.name!r}>"
