import asyncio
import json
from urllib.parse import urlsplit

import pytest
import websockets

from realtime.client import RealtimeClient
from realtime.session import RealtimeConnectionHandler, SessionState
from shared.config import RealtimeConfig
from shared.errors import ConnectionFailedError
from shared.runtime import Runtime


async def _echo_app(websocket):
    """Tiny realtime app: one control frame, then echo every request."""
    paths.append(websocket.request.path)
    await websocket.send(json.dumps({"type": "x-fal-message", "message": "ready"}))
    async for raw in websocket:
        request = json.loads(raw)
        if request.get("prompt") == "crash":
            await websocket.close(1011, "internal error")
            return
        await websocket.send(json.dumps({
            "request_id": request["request_id"],
            "echo": request.get("prompt"),
        }))


paths = []


@pytest.mark.asyncio
async def test_round_trip_against_local_server(fetcher, recorder, wait_for):
    paths.clear()
    async with websockets.serve(_echo_app, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        dialed = []

        def local_connector(url, **kwargs):
            # route the public wss URL to the local server, keeping path and query
            dialed.append(url)
            parts = urlsplit(url)
            return websockets.connect(f"ws://127.0.0.1:{port}{parts.path}?{parts.query}", **kwargs)

        client = RealtimeClient(
            RealtimeConfig(host="example.test"),
            runtime=Runtime(),
            token_fetcher=fetcher,
            connector=local_connector,
        )
        session = client.connect("1234-echo", RealtimeConnectionHandler(
            on_result=recorder.on_result,
            on_error=recorder.on_error,
            throttle_interval=10,
        ))

        session.send({"prompt": "hello"})
        assert await wait_for(lambda: recorder.results)

        result = recorder.results[0]
        assert result["echo"] == "hello"
        assert dialed == ["wss://1234-echo.example.test/ws?fal_jwt_token=token-1"]
        assert paths == ["/ws?fal_jwt_token=token-1"]

        session.send({"prompt": "crash"})
        assert await wait_for(lambda: recorder.errors)
        error = recorder.errors[0]
        assert isinstance(error, ConnectionFailedError)
        assert error.status == 1011
        assert error.message == "Error closing the connection: internal error"
        assert session.state is SessionState.RECONNECTING

        # next send reconnects transparently with the cached token
        session.send({"prompt": "again"})
        assert await wait_for(lambda: len(recorder.results) == 2)
        assert recorder.results[1]["echo"] == "again"
        assert len(dialed) == 2
        assert fetcher.calls == ["1234-echo"]

        session.close()
        assert await wait_for(lambda: len(client.registry) == 0)
        assert len(recorder.errors) == 1
        await client.aclose()
