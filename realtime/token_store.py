from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set

from shared.config import TOKEN_EXPIRATION_SECONDS, TOKEN_EXPIRY_MARGIN
from shared.errors import ApiError, AuthError
from shared.log import get_logger

logger = get_logger(__name__)

TokenFetcher = Callable[[str], Awaitable[str]]


@dataclass(frozen=True)
class Token:
    value: str
    application: str
    issued_at: float
    expires_at: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (time.time() if now is None else now) >= self.expires_at

    def __repr__(self) -> str:
        # never print the credential itself
        return f"Token(application={self.application!r}, expires_at={self.expires_at:.0f})"


class TokenStore:
    """
    Cache of one authentication token per application.

    A cached token is dropped at ``TOKEN_EXPIRY_MARGIN`` (90%) of its nominal
    lifetime so it is never presented right at the edge of server-side expiry.

    The refresh-in-progress flag is cooperative: callers check
    ``is_refresh_in_progress`` and set the flag around ``refresh_token``.
    The store itself takes no lock.
    """

    def __init__(
        self,
        fetcher: TokenFetcher,
        expiration_seconds: int = TOKEN_EXPIRATION_SECONDS,
        margin: float = TOKEN_EXPIRY_MARGIN,
    ) -> None:
        self._fetcher = fetcher
        self.expiration_seconds = expiration_seconds
        self.margin = margin
        self._tokens: Dict[str, Token] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._refreshing: Set[str] = set()

    @property
    def ttl(self) -> float:
        return self.expiration_seconds * self.margin

    def get_token(self, app: str) -> Optional[Token]:
        token = self._tokens.get(app)
        if token is not None and token.is_expired():
            # expiry timer never ran, e.g. the loop was suspended
            self.expire_token(app)
            return None
        return token

    async def refresh_token(self, app: str) -> Token:
        """
        Fetch a new token for ``app``, cache it and schedule its removal.

        Raises:
            AuthError: the token-issuing call failed
        """
        try:
            value = await self._fetcher(app)
        except AuthError:
            raise
        except ApiError as e:
            raise AuthError(e.message, e.status, body=e.body)

        now = time.time()
        token = Token(
            value=value,
            application=app,
            issued_at=now,
            expires_at=now + self.expiration_seconds,
        )
        self._cancel_timer(app)
        self._tokens[app] = token
        loop = asyncio.get_running_loop()
        self._timers[app] = loop.call_later(self.ttl, self._expire_if_current, token)
        logger.debug("Cached token, dropping in %.0fs", self.ttl, extra={"app": app})
        return token

    def expire_token(self, app: str) -> None:
        self._cancel_timer(app)
        if self._tokens.pop(app, None) is not None:
            logger.debug("Expired token", extra={"app": app})

    def is_refresh_in_progress(self, app: str) -> bool:
        return app in self._refreshing

    def set_refresh_in_progress(self, app: str, in_progress: bool) -> None:
        if in_progress:
            self._refreshing.add(app)
        else:
            self._refreshing.discard(app)

    def clear(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._tokens.clear()
        self._refreshing.clear()

    def _expire_if_current(self, token: Token) -> None:
        self._timers.pop(token.application, None)
        if self._tokens.get(token.application) is token:
            del self._tokens[token.application]
            logger.debug("Token lifetime margin reached", extra={"app": token.application})

    def _cancel_timer(self, app: str) -> None:
        handle = self._timers.pop(app, None)
        if handle is not None:
            handle.cancel()

    def __len__(self) -> int:
        return len(self._tokens)
