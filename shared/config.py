"""
Realtime client configuration.

Values come from three layers, later layers winning:

    1. dataclass defaults
    2. an optional YAML file (flat mapping, or nested under a ``realtime:`` key)
    3. environment variables

Environment Variables:
    FAL_KEY                     credentials as "key_id:key_secret"
    FAL_KEY_ID, FAL_KEY_SECRET  credentials split in two (used when FAL_KEY is unset)
    REALTIME_HOST               host that serves realtime sockets
    REALTIME_REST_API_URL       host that serves the token endpoint
    REALTIME_TOKEN_EXPIRATION   token lifetime requested from the server, in seconds
    REALTIME_THROTTLE_INTERVAL  default send throttle, in milliseconds
"""

from __future__ import annotations
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from shared.log import get_logger

logger = get_logger(__name__)

DEFAULT_HOST = "gateway.alpha.fal.ai"
DEFAULT_REST_API_URL = "rest.alpha.fal.ai"
TOKEN_EXPIRATION_SECONDS = 120
# fraction of the nominal lifetime after which a cached token is dropped
TOKEN_EXPIRY_MARGIN = 0.9
DEFAULT_THROTTLE_INTERVAL_MS = 64

# RFC 6455 section 7.4.1
WS_NORMAL_CLOSURE = 1000
WS_GOING_AWAY = 1001
WS_ABNORMAL_CLOSURE = 1006
WS_INTERNAL_ERROR = 1011
WS_EXPECTED_CLOSE_CODES = frozenset({WS_NORMAL_CLOSURE, WS_GOING_AWAY})
WS_CLIENT_CLOSE_REASON = "Client manually closed the connection."

_ENV_OVERRIDES = {
    "REALTIME_HOST": "host",
    "REALTIME_REST_API_URL": "rest_api_url",
    "REALTIME_TOKEN_EXPIRATION": "token_expiration_seconds",
    "REALTIME_THROTTLE_INTERVAL": "throttle_interval_ms",
}


@dataclass(frozen=True)
class RealtimeConfig:
    host: str = DEFAULT_HOST
    rest_api_url: str = DEFAULT_REST_API_URL
    credentials: Optional[str] = None
    token_expiration_seconds: int = TOKEN_EXPIRATION_SECONDS
    throttle_interval_ms: int = DEFAULT_THROTTLE_INTERVAL_MS
    ping_interval: float = 15.0
    ping_timeout: float = 45.0
    request_timeout: float = 10.0

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError("host must not be empty")
        if not self.rest_api_url:
            raise ValueError("rest_api_url must not be empty")
        if self.token_expiration_seconds <= 0:
            raise ValueError("token_expiration_seconds must be positive")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")


def _credentials_from_env(env: Mapping[str, str]) -> Optional[str]:
    if env.get("FAL_KEY"):
        return env["FAL_KEY"]
    key_id, key_secret = env.get("FAL_KEY_ID"), env.get("FAL_KEY_SECRET")
    if key_id and key_secret:
        return f"{key_id}:{key_secret}"
    return None


def _coerce(name: str, value: Any) -> Any:
    """Coerce a raw YAML/env value to the type of the named field"""
    target = {f.name: f.type for f in fields(RealtimeConfig)}[name]
    try:
        if target in ("int", int):
            return int(value)
        if target in ("float", float):
            return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for {name}: {value!r}")
    return None if value is None else str(value)


def _load_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    if isinstance(data.get("realtime"), dict):
        data = data["realtime"]
    known = {f.name for f in fields(RealtimeConfig)}
    unknown = set(data) - known
    if unknown:
        logger.warning("Ignoring unknown config keys in %s: %s", path, sorted(unknown))
    return {k: _coerce(k, v) for k, v in data.items() if k in known}


def load_config(path: Optional[Union[str, Path]] = None,
                env: Optional[Mapping[str, str]] = None) -> RealtimeConfig:
    """
    Build the effective configuration.

    Args:
        path: Optional YAML file; a missing file is an error when given explicitly
        env: Environment mapping (defaults to os.environ)

    Returns:
        RealtimeConfig instance
    """
    env = os.environ if env is None else env
    values: Dict[str, Any] = {}

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        values.update(_load_yaml(path))
        logger.debug("Loaded realtime config from %s", path)

    for var, name in _ENV_OVERRIDES.items():
        if env.get(var):
            values[name] = _coerce(name, env[var])

    credentials = _credentials_from_env(env)
    if credentials:
        values["credentials"] = credentials

    return RealtimeConfig(**values)
