"""
Pause flag and fail-closed operation wrapper shared by the engines.

An operation decorated with `operation` refuses to run while the engine is
paused, and a `FatalError` escaping it trips the pause before propagating.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar

from ..core.errors import FatalError, Paused

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class PauseSwitch:
    """Circuit breaker state owned by one engine."""

    def __init__(self, name: str, paused: bool = False) -> None:
        self.name = name
        self.paused = paused
        self.reason: str | None = None

    def trip(self, reason: str) -> None:
        self.paused = True
        self.reason = reason

    def reset(self) -> None:
        self.paused = False
        self.reason = None

    def require_running(self, op: str) -> None:
        if self.paused:
            raise Paused(f"{self.name} is paused; {op} rejected", op=op, reason=self.reason)


def operation(fn: F) -> F:
    """Wrap an engine method: reject while paused, trip the pause on fatal errors.

    The engine must expose a ``switch`` attribute holding a `PauseSwitch`.
    """

    @functools.wraps(fn)
    def wrapper(self, *args: Any, **kwargs: Any) -> Any:
        switch: PauseSwitch = self.switch
        switch.require_running(fn.__name__)
        try:
            return fn(self, *args, **kwargs)
        except FatalError as exc:
            switch.trip(f"{fn.__name__}: {exc}")
            logger.error("%s tripped pause during %s: %s", switch.name, fn.__name__, exc)
            raise

    return wrapper  # type: ignore[return-value]
