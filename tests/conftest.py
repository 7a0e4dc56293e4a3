"""Pytest configuration and shared fixtures."""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import pytest
from websockets.exceptions import ConnectionClosedError

from plutochat.api.models import Message, Session, format_timestamp
from plutochat.channel.stomp import Frame

ENV_KEYS = (
    "PLUTO_API_URL", "PLUTO_TIMEOUT", "PLUTO_VERIFY_SSL", "PLUTO_WS_URL",
    "RECONNECT_DELAY", "RECONNECT_BACKOFF", "RECONNECT_MAX_DELAY",
    "HEARTBEAT_MS", "CONNECT_TIMEOUT", "DEDUP_STRATEGY", "DEDUP_WINDOW_MS",
    "MAX_UPLOAD_SIZE_MB", "UPLOAD_TIMEOUT", "LOG_LEVEL", "LOG_FILE",
    "LOG_CONSOLE", "PLUTO_USERNAME", "PLUTO_TOKEN",
)

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_message(sender: str = "alice", content: str = "hi", offset_ms: int = 0,
                 **extra) -> Message:
    """Build a message authored ``offset_ms`` after T0."""
    return Message(
        sender=sender,
        content=content,
        timestamp=format_timestamp(T0 + timedelta(milliseconds=offset_ms)),
        **extra
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until ``predicate`` holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not reached in time")
        await asyncio.sleep(0.005)


class FakeWebSocket:
    """Scripted socket standing in for a STOMP broker connection."""

    def __init__(self, broker: "FakeBroker", url: str, headers):
        self.broker = broker
        self.url = url
        self.headers = headers
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: List[Frame] = []
        self.subscription: Optional[str] = None
        self.closed = False

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionClosedError(None, None)
        frame = Frame.decode(data)
        if frame is None:
            return
        self.sent.append(frame)

        if frame.command == "CONNECT":
            if self.broker.refuse:
                self.inbox.put_nowait(Frame("ERROR", {"message": "refused"}).encode())
            else:
                self.inbox.put_nowait(Frame("CONNECTED", {"version": "1.2", "heart-beat": "0,0"}).encode())
        elif frame.command == "SUBSCRIBE":
            self.subscription = frame.headers["id"]
        elif frame.command == "SEND" and self.broker.echo:
            for _ in range(self.broker.echo):
                self.deliver(frame.body)

    async def recv(self) -> str:
        item = await self.inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def deliver(self, body: str, subscription: Optional[str] = None) -> None:
        headers = {
            "destination": "/topic/room/test",
            "subscription": subscription or self.subscription or "",
            "message-id": str(len(self.sent)),
        }
        self.inbox.put_nowait(Frame("MESSAGE", headers, body).encode())

    def drop(self) -> None:
        self.inbox.put_nowait(ConnectionClosedError(None, None))

    def commands(self) -> List[str]:
        return [frame.command for frame in self.sent]


class FakeBroker:
    """Connector that hands out FakeWebSockets, optionally failing first."""

    def __init__(self, echo: int = 0):
        self.sockets: List[FakeWebSocket] = []
        self.failures: List[Exception] = []
        self.refuse = False
        self.echo = echo
        self.attempts = 0

    async def connect(self, url: str, headers) -> FakeWebSocket:
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        ws = FakeWebSocket(self, url, headers)
        self.sockets.append(ws)
        return ws

    @property
    def current(self) -> FakeWebSocket:
        return self.sockets[-1]


@pytest.fixture
def broker():
    """Return a fake broker usable as a channel connector."""
    return FakeBroker()


@pytest.fixture
def session():
    """Return an authenticated session."""
    return Session(username="alice", token="tok-123")


@pytest.fixture
def clean_env(monkeypatch):
    """Unset every variable the config reads, restoring them afterwards."""
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    return monkeypatch


@pytest.fixture
def image_file(tmp_path):
    """Create a small PNG-named file."""
    path = tmp_path / "photo.png"
    path.write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 64)
    return path
