from __future__ import annotations
import asyncio
from typing import Any, Callable, Dict, Optional, Tuple


class Throttled:
    """
    Trailing-edge throttle around a plain callable.

    The first call opens a window of ``interval_ms``; every call inside the
    window replaces the stored arguments, and when the window closes the
    wrapped function runs once with the latest ones. With ``interval_ms <= 0``
    calls pass straight through.

    Must be called from code running on an asyncio event loop.
    """

    def __init__(self, func: Callable[..., Any], interval_ms: float) -> None:
        self._func = func
        self.interval_ms = interval_ms
        self._handle: Optional[asyncio.TimerHandle] = None
        self._args: Tuple[Any, ...] = ()
        self._kwargs: Dict[str, Any] = {}

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        if self.interval_ms <= 0:
            self._func(*args, **kwargs)
            return
        self._args, self._kwargs = args, kwargs
        if self._handle is None:
            loop = asyncio.get_running_loop()
            self._handle = loop.call_later(self.interval_ms / 1000.0, self._fire)

    @property
    def pending(self) -> bool:
        """True while a call is waiting for its window to close"""
        return self._handle is not None

    def cancel(self) -> None:
        """Drop the waiting call, if any"""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._args, self._kwargs = (), {}

    def _fire(self) -> None:
        self._handle = None
        args, kwargs = self._args, self._kwargs
        self._args, self._kwargs = (), {}
        self._func(*args, **kwargs)


def throttle(func: Callable[..., Any], interval_ms: float) -> Throttled:
    return Throttled(func, interval_ms)
