from __future__ import annotations
from typing import Any, Dict, Optional

import httpx

from shared.config import RealtimeConfig
from shared.errors import ApiError
from shared.log import get_logger

logger = get_logger(__name__)

USER_AGENT = "realtime-sessions/0.1.0"


def _headers(config: RealtimeConfig) -> Dict[str, str]:
    headers = {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
    }
    if config.credentials:
        headers["Authorization"] = f"Key {config.credentials}"
    return headers


def _error_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


async def dispatch_request(
    method: str,
    url: str,
    payload: Optional[Dict[str, Any]],
    config: RealtimeConfig,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> Any:
    """
    Send a JSON request and return the decoded JSON response body.

    Raises:
        ApiError: non-2xx response (status = HTTP status) or transport failure (status 500)
    """
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=config.request_timeout) as owned:
                resp = await owned.request(method, url, json=payload, headers=_headers(config))
        else:
            resp = await client.request(method, url, json=payload, headers=_headers(config))
    except httpx.HTTPError as e:
        logger.warning("%s %s failed: %s", method, url, e)
        raise ApiError(f"Request failed: {e}", 500)

    if not resp.is_success:
        body = _error_body(resp)
        logger.warning("%s %s returned %d", method, url, resp.status_code)
        message = body.get("detail") if isinstance(body, dict) and isinstance(body.get("detail"), str) else resp.reason_phrase
        raise ApiError(message or "Request failed", resp.status_code, body=body)

    try:
        return resp.json()
    except ValueError:
        # plain-text token responses
        return resp.text
