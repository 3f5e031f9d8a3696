"""
Realtime client: the entry point for opening sessions.

Usage:
    from realtime.client import RealtimeClient
    from realtime.session import RealtimeConnectionHandler

    client = RealtimeClient()
    session = client.connect("1234-my-app", RealtimeConnectionHandler(
        on_result=lambda result: print(result["request_id"], result),
        on_error=lambda error: print("error", error.status, error.message),
    ))
    session.send({"prompt": "a cat"})
    ...
    session.close()

A client owns one token store and one connection registry. Construct one per
process (``get_default_client``) or one per test.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Union

import websockets

from realtime.auth import TokenIssuer
from realtime.registry import ConnectionRegistry
from realtime.session import InertSession, RealtimeConnectionHandler, RealtimeSession
from realtime.token_store import TokenFetcher, TokenStore
from realtime.transport import Connector, SocketHandle
from shared.config import WS_CLIENT_CLOSE_REASON, WS_GOING_AWAY, RealtimeConfig, load_config
from shared.errors import AuthError
from shared.log import get_logger
from shared.runtime import Runtime, detect_runtime
from shared.utils import generate_connection_key

logger = get_logger(__name__)

Session = Union[RealtimeSession, InertSession]


def build_realtime_url(app: str, host: str, token: str) -> str:
    return f"wss://{app}.{host}/ws?fal_jwt_token={token}"


class RealtimeClient:

    def __init__(
        self,
        config: Optional[RealtimeConfig] = None,
        *,
        runtime: Optional[Runtime] = None,
        tokens: Optional[TokenStore] = None,
        registry: Optional[ConnectionRegistry] = None,
        token_fetcher: Optional[TokenFetcher] = None,
        connector: Connector = websockets.connect,
    ) -> None:
        self.config = config or load_config()
        self.runtime = runtime or detect_runtime()
        if tokens is None:
            tokens = TokenStore(
                token_fetcher or TokenIssuer(self.config),
                expiration_seconds=self.config.token_expiration_seconds,
            )
        self.tokens = tokens
        self.registry = registry or ConnectionRegistry()
        self._connector = connector

    def connect(self, application: str, handler: RealtimeConnectionHandler) -> Session:
        """
        Create a session for ``application``.

        No network activity happens here; the socket is opened by the first
        ``send``. Returns an ``InertSession`` when the handler asks for
        client-only behaviour and there is no client context.
        """
        if not application:
            raise ValueError("application must not be empty")
        client_only = handler.client_only
        if client_only is None:
            client_only = self.runtime.default_client_only()
        if client_only and not self.runtime.has_client_context:
            logger.debug("No client context, returning inert session", extra={"app": application})
            return InertSession(application)

        throttle_interval = handler.throttle_interval
        if throttle_interval is None:
            throttle_interval = self.config.throttle_interval_ms
        return RealtimeSession(
            self,
            application,
            handler.connection_key or generate_connection_key(),
            on_result=handler.on_result,
            on_error=handler.on_error,
            throttle_interval=throttle_interval,
        )

    def get_connection(self, app: str, key: str) -> Optional[SocketHandle]:
        """
        Find or create the socket for ``key``.

        Returns the registered handle when one is live, None when another
        connection is already refreshing the token for ``app``, or a new
        handle (registered and started) otherwise.
        """
        handle = self.registry.get(key)
        if handle is not None:
            if handle.is_live:
                return handle
            self.registry.remove(key)

        if self.tokens.is_refresh_in_progress(app):
            return None

        owns_refresh = self.tokens.get_token(app) is None
        if owns_refresh:
            # claimed synchronously so no other acquisition can start a refresh
            self.tokens.set_refresh_in_progress(app, True)

        async def resolve_url() -> str:
            return await self._authorized_url(app, owns_refresh)

        handle = SocketHandle(
            resolve_url,
            self._connector,
            key=key,
            ping_interval=self.config.ping_interval,
            ping_timeout=self.config.ping_timeout,
        )
        self.registry.set(key, handle)
        try:
            handle.start()
        except Exception:
            self.registry.remove(key)
            if owns_refresh:
                self.tokens.set_refresh_in_progress(app, False)
            raise
        logger.debug("Opening new socket", extra={"app": app, "connection_key": key})
        return handle

    async def _authorized_url(self, app: str, owns_refresh: bool) -> str:
        """
        Resolve the socket URL for ``app``, minting a token when needed.

        Only the acquisition holding the refresh flag fetches a token. A
        handle that found a cached token at creation but sees it dropped by
        the time it runs claims the flag itself, or gives up when another
        refresh is already underway.

        Raises:
            AuthError: the token call failed, or another refresh is in flight
        """
        if not owns_refresh:
            token = self.tokens.get_token(app)
            if token is not None:
                return build_realtime_url(app, self.config.host, token.value)
            if self.tokens.is_refresh_in_progress(app):
                raise AuthError("Token refresh already in progress", 409)
            self.tokens.set_refresh_in_progress(app, True)
        try:
            token = await self.tokens.refresh_token(app)
        finally:
            self.tokens.set_refresh_in_progress(app, False)
        return build_realtime_url(app, self.config.host, token.value)

    async def aclose(self) -> None:
        """Close every registered socket and forget all tokens."""
        handles = [h for h in (self.registry.get(k) for k in self.registry.keys()) if h is not None]
        for handle in handles:
            handle.close(WS_GOING_AWAY, WS_CLIENT_CLOSE_REASON)
        for handle in handles:
            try:
                await asyncio.wait_for(handle.wait_closed(), timeout=self.config.request_timeout)
            except asyncio.TimeoutError:
                logger.warning("Timed out waiting for socket to close", extra={"connection_key": handle.key})
        self.registry.clear()
        self.tokens.clear()


_default_client: Optional[RealtimeClient] = None


def get_default_client() -> RealtimeClient:
    global _default_client
    if _default_client is None:
        _default_client = RealtimeClient()
    return _default_client


def set_default_client(client: Optional[RealtimeClient]) -> None:
    global _default_client
    _default_client = client


def connect(application: str, handler: RealtimeConnectionHandler) -> Session:
    """Connect through the process-wide default client."""
    return get_default_client().connect(application, handler)


def connect_with(application: str, **options: Any) -> Session:
    """Shorthand: ``connect_with("1234-my-app", on_result=print, throttle_interval=0)``"""
    return connect(application, RealtimeConnectionHandler(**options))
