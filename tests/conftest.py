import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Callable, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from realtime.client import RealtimeClient
from shared.config import RealtimeConfig
from shared.runtime import Runtime

_CLOSED = object()


class FakeWebSocket:
    """Stands in for a websockets client connection."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.sent: List[str] = []
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self.closed_by_client: Optional[tuple] = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.close_code is None:
            self.close_code, self.close_reason = code, reason
            self.closed_by_client = (code, reason)
        self._inbox.put_nowait(_CLOSED)

    def push(self, message: Any) -> None:
        """Deliver an inbound frame; dicts are JSON-encoded."""
        self._inbox.put_nowait(json.dumps(message) if isinstance(message, dict) else message)

    def drop(self, code: Optional[int], reason: str = "") -> None:
        """Simulate the server closing the connection."""
        self.close_code, self.close_reason = code, reason
        self._inbox.put_nowait(_CLOSED)

    def frames(self) -> List[dict]:
        return [json.loads(s) for s in self.sent]

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        while True:
            item = await self._inbox.get()
            if item is _CLOSED:
                return
            yield item


class FakeConnector:
    """Replaces websockets.connect; records every dial."""

    def __init__(self) -> None:
        self.sockets: List[FakeWebSocket] = []
        self.urls: List[str] = []
        self.kwargs: List[dict] = []
        self.fail_with: Optional[BaseException] = None
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.urls.append(url)
        self.kwargs.append(kwargs)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        ws = FakeWebSocket(url)
        self.sockets.append(ws)
        return ws


class FakeTokenFetcher:
    """Replaces the token-issuing call; tracks concurrency."""

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.gate: Optional[asyncio.Event] = None
        self.fail_with: Optional[BaseException] = None
        self._issued = 0

    async def __call__(self, app: str) -> str:
        self.calls.append(app)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if self.fail_with is not None:
                raise self.fail_with
            self._issued += 1
            return f"token-{self._issued}"
        finally:
            self.in_flight -= 1


class Recorder:
    """Collects on_result / on_error callbacks."""

    def __init__(self) -> None:
        self.results: List[dict] = []
        self.errors: List[Any] = []

    def on_result(self, result: dict) -> None:
        self.results.append(result)

    def on_error(self, error: Any) -> None:
        self.errors.append(error)


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while loop.time() < end:
        if predicate():
            return True
        await asyncio.sleep(0.005)
    return predicate()


@pytest.fixture
def wait_for():
    return _wait_for


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def fetcher():
    return FakeTokenFetcher()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def config():
    return RealtimeConfig(host="example.test", rest_api_url="rest.example.test")


@pytest.fixture
def client(config, connector, fetcher):
    rt = RealtimeClient(config, runtime=Runtime(), token_fetcher=fetcher, connector=connector)
    yield rt
    rt.tokens.clear()
    rt.registry.clear()
