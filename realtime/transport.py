from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set, Tuple, Union

import websockets
from websockets.exceptions import ConnectionClosed

from shared.config import WS_ABNORMAL_CLOSURE, WS_INTERNAL_ERROR, WS_NORMAL_CLOSURE
from shared.log import get_logger

logger = get_logger(__name__)

Connector = Callable[..., Awaitable[Any]]
UrlResolver = Callable[[], Awaitable[str]]


class SocketState(Enum):
    AUTHORIZING = "authorizing"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class SocketListener:
    """Lifecycle callbacks a session binds to a socket handle. Defaults do nothing."""

    def on_open(self) -> None:
        pass

    def on_close(self, code: int, reason: str) -> None:
        pass

    def on_error(self, error: BaseException) -> None:
        pass

    def on_message(self, raw: Union[str, bytes]) -> None:
        pass

    def on_detach(self) -> None:
        pass


class SocketHandle:
    """
    One physical websocket connection with event-style lifecycle callbacks.

    The handle exists before its URL is known: ``resolve_url`` runs inside the
    handle's own task (it may have to fetch a token), then the opening
    handshake follows. A handle can therefore be registered and shared from
    the moment it is created.

    At most one listener is bound at a time; binding a new one detaches the
    previous one. Outbound frames go through a queue drained by a single
    writer task, so frames are written in the order ``send`` was called.
    """

    def __init__(self, resolve_url: UrlResolver, connector: Connector = websockets.connect,
                 *, key: Optional[str] = None, **connect_kwargs: Any) -> None:
        self.key = key
        self.state = SocketState.AUTHORIZING
        self.close_code: Optional[int] = None
        self.close_reason: str = ""
        self._resolve_url = resolve_url
        self._connector = connector
        self._connect_kwargs = connect_kwargs
        self._websocket: Any = None
        self._listener: Optional[SocketListener] = None
        self._outbox: "asyncio.Queue[str]" = asyncio.Queue()
        self._close_requested: Optional[Tuple[int, str]] = None
        self._task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_open(self) -> bool:
        return self.state is SocketState.OPEN

    @property
    def is_closed(self) -> bool:
        return self.state is SocketState.CLOSED

    @property
    def is_live(self) -> bool:
        """Open, or on its way to open"""
        return self.state in (SocketState.AUTHORIZING, SocketState.CONNECTING, SocketState.OPEN)

    def start(self) -> "SocketHandle":
        """Resolve the URL and open the socket in the background"""
        if self._task is None:
            # RuntimeError outside a running loop
            asyncio.get_running_loop()
            self._task = self._spawn(self._run())
        return self

    def bind(self, listener: SocketListener) -> None:
        """
        Make ``listener`` the receiver of lifecycle events.

        The previously bound listener gets ``on_detach``. A listener bound to
        a handle that is already open gets ``on_open`` immediately.
        """
        previous, self._listener = self._listener, listener
        if previous is not None and previous is not listener:
            try:
                previous.on_detach()
            except Exception:
                logger.exception("Listener on_detach failed", extra={"connection_key": self.key})
        if self.state is SocketState.OPEN:
            self._emit("on_open")

    def send(self, frame: str) -> None:
        if self.state is not SocketState.OPEN:
            raise RuntimeError(f"Cannot send on a socket in state {self.state.value}")
        self._outbox.put_nowait(frame)

    def close(self, code: int = WS_NORMAL_CLOSURE, reason: str = "") -> None:
        """Start a closing handshake. No-op when already closing or closed."""
        if self.state in (SocketState.CLOSING, SocketState.CLOSED):
            return
        if self.state in (SocketState.AUTHORIZING, SocketState.CONNECTING):
            # finish the handshake first, then close
            self._close_requested = (code, reason)
            self.state = SocketState.CLOSING
            return
        self.state = SocketState.CLOSING
        self._spawn(self._close_websocket(code, reason))

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.shield(self._task)

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self) -> None:
        try:
            url = await self._resolve_url()
            if self._close_requested is not None:
                # closed while authorizing: never dial
                self._finish(*self._close_requested)
                return
            self.state = SocketState.CONNECTING
            self._websocket = await self._connector(url, **self._connect_kwargs)
        except asyncio.CancelledError:
            self.state = SocketState.CLOSED
            raise
        except Exception as e:
            self.state = SocketState.CLOSED
            logger.warning("Failed to open socket: %s", e, extra={"connection_key": self.key})
            self._emit("on_error", e)
            return

        writer = self._spawn(self._write_loop())
        if self._close_requested is not None:
            await self._close_websocket(*self._close_requested)
        else:
            self.state = SocketState.OPEN
            logger.debug("Socket open", extra={"connection_key": self.key})
            self._emit("on_open")

        try:
            async for raw in self._websocket:
                self._emit("on_message", raw)
        except ConnectionClosed as e:
            logger.debug("Socket closed: %s", e, extra={"connection_key": self.key})
        finally:
            writer.cancel()

        code = getattr(self._websocket, "close_code", None)
        reason = getattr(self._websocket, "close_reason", None) or ""
        self._finish(WS_ABNORMAL_CLOSURE if code is None else code, reason)

    def _finish(self, code: int, reason: str) -> None:
        self.state = SocketState.CLOSED
        self.close_code = code
        self.close_reason = reason
        self._emit("on_close", code, reason)

    async def _write_loop(self) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await self._websocket.send(frame)
            except ConnectionClosed:
                logger.warning("Socket closed while sending", extra={"connection_key": self.key})
                return
            except Exception:
                logger.exception("Failed to write frame", extra={"connection_key": self.key})
                self.close(WS_INTERNAL_ERROR, "Internal error while sending")
                return

    async def _close_websocket(self, code: int, reason: str) -> None:
        try:
            await self._websocket.close(code, reason)
        except Exception as e:
            logger.error(f"Error closing connection: {e}")

    def _emit(self, event: str, *args: Any) -> None:
        listener = self._listener
        if listener is None:
            return
        try:
            getattr(listener, event)(*args)
        except Exception:
            logger.exception("Listener %s failed", event, extra={"connection_key": self.key})

    def __repr__(self) -> str:
        return f"SocketHandle(key={self.key!r}, state={self.state.value})"
