from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Union

from realtime.throttle import throttle
from realtime.transport import SocketHandle, SocketListener, SocketState
from shared.config import WS_CLIENT_CLOSE_REASON, WS_EXPECTED_CLOSE_CODES, WS_GOING_AWAY
from shared.envelope import frame_outbound, is_result_message, parse_inbound
from shared.errors import ApiError, AuthError, ConnectionFailedError, ProtocolError
from shared.log import get_logger, log_session_event

if TYPE_CHECKING:
    from realtime.client import RealtimeClient

logger = get_logger(__name__)

ResultCallback = Callable[[Dict[str, Any]], None]
ErrorCallback = Callable[[ApiError], None]


def _noop(*args: Any, **kwargs: Any) -> None:
    pass


class SessionState(Enum):
    IDLE = "idle"
    AUTH_PENDING = "auth_pending"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass
class RealtimeConnectionHandler:
    """
    Options for connecting to a realtime application.

    connection_key: reuse one socket across ``connect`` calls with the same
        key (e.g. a UI component that reconnects on every render). A fresh
        key is generated when omitted.
    client_only: only connect where there is a client context. Defaults to
        true during server-side rendering without a client context.
    throttle_interval: milliseconds between outbound frames; <= 0 disables
        throttling. Defaults to the configured interval (64 ms).
    on_result: called with every result frame.
    on_error: called with every ApiError; errors are dropped when omitted.
    """
    on_result: ResultCallback
    on_error: Optional[ErrorCallback] = None
    connection_key: Optional[str] = None
    client_only: Optional[bool] = None
    throttle_interval: Optional[int] = None

    def __post_init__(self) -> None:
        if not callable(self.on_result):
            raise TypeError("on_result must be callable")
        if self.on_error is not None and not callable(self.on_error):
            raise TypeError("on_error must be callable")


class InertSession:
    """Session returned where no client context exists. Sends and closes do nothing."""

    is_inert = True
    state = SessionState.IDLE

    def __init__(self, application: str) -> None:
        self.application = application
        self.connection_key: Optional[str] = None

    def send(self, input: Dict[str, Any]) -> None:
        pass

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"InertSession(application={self.application!r})"


class RealtimeSession(SocketListener):
    """
    One ``connect`` call: a throttled send path in front of a shared socket.

    Sockets are acquired lazily by the first send and again by the first send
    after a socket is lost. While no socket is open, the most recent payload is
    kept in ``pending_message`` (older ones are discarded) and written once the
    socket opens. ``reconnecting`` guards against a second acquisition while
    one is underway.

    ``send`` and ``close`` never raise; every failure goes to ``on_error``.
    """

    is_inert = False

    def __init__(
        self,
        client: RealtimeClient,
        application: str,
        connection_key: str,
        *,
        on_result: ResultCallback,
        on_error: Optional[ErrorCallback] = None,
        throttle_interval: int = 64,
    ) -> None:
        self.application = application
        self.connection_key = connection_key
        self.pending_message: Optional[Dict[str, Any]] = None
        self.reconnecting = False
        self._client = client
        self._on_result = on_result
        self._on_error = on_error or _noop
        self._socket: Optional[SocketHandle] = None
        self._has_opened = False
        self._closed = False
        self._send = throttle(self._send_now, throttle_interval)

    @property
    def state(self) -> SessionState:
        if self._closed:
            return SessionState.CLOSED
        socket = self._socket
        if socket is None:
            return SessionState.RECONNECTING if self._has_opened else SessionState.IDLE
        if socket.state is SocketState.AUTHORIZING:
            return SessionState.AUTH_PENDING
        if socket.state is SocketState.CONNECTING:
            return SessionState.CONNECTING
        if socket.state is SocketState.OPEN:
            return SessionState.OPEN
        return SessionState.RECONNECTING

    @property
    def socket(self) -> Optional[SocketHandle]:
        return self._socket

    # ========================================
    #           CALLER API
    # ========================================

    def send(self, input: Dict[str, Any]) -> None:
        if self._closed:
            log_session_event(logger, "debug", "Dropping send on closed session", session=self)
            return
        if not isinstance(input, dict):
            self._report(ProtocolError(f"Payload must be a JSON object, got {type(input).__name__}", 400))
            return
        self._send(input)

    def close(self) -> None:
        """
        Close the session's socket with 'going away' and stop sending.

        Safe to call any number of times.
        """
        if self._closed:
            return
        self._closed = True
        self._send.cancel()
        self.pending_message = None
        socket = self._socket
        if socket is not None and not socket.is_closed:
            socket.close(WS_GOING_AWAY, WS_CLIENT_CLOSE_REASON)
        log_session_event(logger, "debug", "Session closed by client", session=self)

    # ========================================
    #           SEND PATH
    # ========================================

    def _send_now(self, input: Dict[str, Any]) -> None:
        if self._closed:
            return
        socket = self._socket
        if socket is not None and socket.is_open:
            self._write(socket, input)
            return
        # latest-wins: an earlier undelivered payload is discarded
        self.pending_message = input
        if not self.reconnecting:
            self.reconnecting = True
            self._reconnect()

    def _write(self, socket: SocketHandle, input: Dict[str, Any]) -> None:
        frame = frame_outbound(input)
        try:
            data = frame.to_json()
        except (TypeError, ValueError) as e:
            self._report(ProtocolError(f"Payload is not JSON serializable: {e}", 400))
            return
        socket.send(data)
        log_session_event(logger, "debug", "Frame written", session=self, request_id=frame.request_id)

    def _reconnect(self) -> None:
        try:
            socket = self._client.get_connection(self.application, self.connection_key)
        except Exception as e:
            self.reconnecting = False
            log_session_event(logger, "warning", f"Error opening connection: {e}", session=self)
            self._report(ConnectionFailedError("Error opening connection", 500, body=str(e)))
            return
        if socket is None:
            # another connection is minting a token for this app; the next send retries
            self.reconnecting = False
            log_session_event(logger, "debug", "Authentication in progress, deferring connect", session=self)
            return
        self._socket = socket
        socket.bind(self)

    # ========================================
    #           SOCKET LISTENER
    # ========================================

    def on_open(self) -> None:
        self.reconnecting = False
        self._has_opened = True
        log_session_event(logger, "info", "Connection open", session=self)
        if self.pending_message is not None:
            pending, self.pending_message = self.pending_message, None
            self._send(pending)

    def on_close(self, code: int, reason: str) -> None:
        self._release_socket()
        if code not in WS_EXPECTED_CLOSE_CODES:
            log_session_event(logger, "warning", f"Connection closed abnormally: {reason}", session=self, close_code=code)
            self._report(ConnectionFailedError(f"Error closing the connection: {reason}", code))
        else:
            log_session_event(logger, "debug", "Connection closed", session=self, close_code=code)

    def on_error(self, error: BaseException) -> None:
        # treat transport errors as credential problems: next acquisition mints a new token
        self._client.tokens.expire_token(self.application)
        self._release_socket()
        if isinstance(error, AuthError):
            self._report(error)
        else:
            self._report(ConnectionFailedError("Unknown error", 500, body=str(error)))

    def on_message(self, raw: Union[str, bytes]) -> None:
        try:
            data = parse_inbound(raw)
        except ProtocolError as e:
            log_session_event(logger, "warning", f"Rejected inbound frame: {e.message}", session=self)
            self._report(e)
            return
        if not is_result_message(data):
            log_session_event(logger, "debug", "Dropped non-result frame", session=self,
                              request_id=data.get("request_id"))
            return
        if self._closed:
            return
        try:
            self._on_result(data)
        except Exception:
            logger.exception("on_result callback failed")

    def on_detach(self) -> None:
        """Another session bound the shared socket; this one stops listening to it."""
        self._socket = None
        self.reconnecting = False

    def _release_socket(self) -> None:
        socket = self._socket
        if socket is not None and self._client.registry.get(self.connection_key) is socket:
            self._client.registry.remove(self.connection_key)
        self._socket = None
        self.reconnecting = False

    def _report(self, error: ApiError) -> None:
        if self._closed:
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("on_error callback failed")

    def __repr__(self) -> str:
        return (f"RealtimeSession(application={self.application!r}, "
                f"connection_key={self.connection_key!r}, state={self.state.value})")
