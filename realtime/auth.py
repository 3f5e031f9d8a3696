from __future__ import annotations
from typing import Any, Awaitable, Callable, Dict, Optional

from shared.config import RealtimeConfig
from shared.dispatch import dispatch_request
from shared.errors import ApiError, AuthError
from shared.log import get_logger

logger = get_logger(__name__)

Dispatch = Callable[[str, str, Optional[Dict[str, Any]], RealtimeConfig], Awaitable[Any]]


def app_alias(app: str) -> str:
    """
    Strip the owner segment from an application id.

    "1234-my-app" -> "my-app". Ids without an owner segment are returned as-is.
    """
    owner, sep, alias = app.partition("-")
    return alias if sep and alias else app


def extract_token(body: Any) -> str:
    """
    Accept both response shapes of the token endpoint: a bare string, or an
    object carrying the token under the legacy 'detail' field.
    """
    if isinstance(body, str) and body:
        return body
    if isinstance(body, dict) and isinstance(body.get("detail"), str) and body["detail"]:
        return body["detail"]
    raise AuthError("Unexpected token response", 401, body=body)


class TokenIssuer:
    """
    Token-issuing call: POST https://{rest_api_url}/tokens/

    Calling the issuer returns the raw token string for an application or
    raises AuthError.
    """

    def __init__(self, config: RealtimeConfig, dispatch: Dispatch = dispatch_request) -> None:
        self.config = config
        self._dispatch = dispatch

    @property
    def url(self) -> str:
        return f"https://{self.config.rest_api_url}/tokens/"

    def request_body(self, app: str) -> Dict[str, Any]:
        return {
            "allowed_apps": [app_alias(app)],
            "token_expiration": self.config.token_expiration_seconds,
        }

    async def __call__(self, app: str) -> str:
        try:
            body = await self._dispatch("POST", self.url, self.request_body(app), self.config)
        except AuthError:
            raise
        except ApiError as e:
            logger.warning("Token request for %s failed with status %s", app, e.status, extra={"app": app})
            raise AuthError(f"Could not obtain token: {e.message}", e.status, body=e.body)
        token = extract_token(body)
        logger.debug("Obtained token for %s", app, extra={"app": app})
        return token
