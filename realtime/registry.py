from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional

from shared.log import get_logger

if TYPE_CHECKING:
    from realtime.transport import SocketHandle

logger = get_logger(__name__)


class ConnectionRegistry:
    """
    Lookup table from connection key to socket handle.

    One handle per key. The registry never opens or closes sockets; sessions
    register a handle when they create it and remove it when it closes.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, SocketHandle] = {}

    def has(self, key: str) -> bool:
        return key in self._connections

    def get(self, key: str) -> Optional[SocketHandle]:
        return self._connections.get(key)

    def set(self, key: str, handle: SocketHandle) -> None:
        previous = self._connections.get(key)
        if previous is not None and previous is not handle:
            logger.warning("Replacing registered socket", extra={"connection_key": key})
        self._connections[key] = handle

    def remove(self, key: str) -> None:
        self._connections.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._connections.keys())

    def clear(self) -> None:
        self._connections.clear()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, key: object) -> bool:
        return key in self._connections
