from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Mapping, Optional

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _env_flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip().lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    return default


@dataclass(frozen=True)
class Runtime:
    """
    Where the client code is running.

    has_client_context: sockets may be opened from this process
    server_rendering: the code runs as part of a server-side render pass
    """
    has_client_context: bool = True
    server_rendering: bool = False

    def default_client_only(self) -> bool:
        return self.server_rendering and not self.has_client_context


def detect_runtime(env: Optional[Mapping[str, str]] = None) -> Runtime:
    env = os.environ if env is None else env
    server_rendering = _env_flag(env, "REALTIME_SERVER_RENDERING", False)
    return Runtime(
        has_client_context=_env_flag(env, "REALTIME_CLIENT_CONTEXT", not server_rendering),
        server_rendering=server_rendering,
    )
