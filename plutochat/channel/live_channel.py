"""Live message channel: STOMP over WebSocket, one room topic per channel."""
import asyncio
import itertools
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from plutochat.api.exceptions import AuthenticationError, NetworkError, NotConnectedError, ParseError
from plutochat.api.models import Session
from plutochat.channel import stomp
from plutochat.channel.stomp import Frame

logger = logging.getLogger(__name__)

STOMP_SUBPROTOCOLS = ["v12.stomp", "v11.stomp", "v10.stomp"]

Connector = Callable[[str, Dict[str, str]], Awaitable[Any]]
MessageHandler = Callable[[str], None]
StateListener = Callable[["ChannelState"], None]

_subscription_ids = itertools.count(1)


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ReconnectPolicy:
    """Delay before reconnect attempt ``attempt`` (1-based). Never gives up."""

    def delay(self, attempt: int) -> float:
        raise NotImplementedError


class FixedDelay(ReconnectPolicy):
    """Same delay for every attempt"""

    def __init__(self, seconds: float = 5.0):
        self.seconds = seconds

    def delay(self, attempt: int) -> float:
        return self.seconds


class ExponentialBackoff(ReconnectPolicy):
    """initial * factor^(attempt-1), capped at max_delay"""

    def __init__(self, initial: float = 1.0, factor: float = 2.0, max_delay: float = 60.0):
        self.initial = initial
        self.factor = factor
        self.max_delay = max_delay

    def delay(self, attempt: int) -> float:
        return min(self.max_delay, self.initial * (self.factor ** max(attempt - 1, 0)))


async def websocket_connector(url: str, headers: Dict[str, str]) -> Any:
    """Open a WebSocket speaking one of the STOMP subprotocols"""
    try:
        return await connect(
            url,
            additional_headers=headers or None,
            subprotocols=STOMP_SUBPROTOCOLS,
            open_timeout=10,
            ping_interval=None,
        )
    except InvalidStatus as e:
        status = e.response.status_code
        if status in (401, 403):
            raise AuthenticationError(f"WebSocket handshake rejected: HTTP {status}", status_code=status) from e
        raise NetworkError(f"WebSocket handshake rejected: HTTP {status}", status_code=status) from e


class LiveChannel:
    """Auto-reconnecting subscription to ``/topic/room/{roomId}``.

    Owned by exactly one room view. Inbound MESSAGE bodies are handed to
    ``on_message`` from the channel's own task; ``deactivate()`` cancels that
    task, so nothing is delivered after teardown.
    """

    def __init__(self, room_id: str, ws_url: str, on_message: MessageHandler,
                 session: Optional[Session] = None,
                 reconnect: Optional[ReconnectPolicy] = None,
                 heartbeat_ms: int = 10000,
                 connect_timeout: float = 10.0,
                 connector: Optional[Connector] = None):
        self.room_id = room_id
        self.ws_url = ws_url
        self.on_message = on_message
        self.session = session
        self.reconnect = reconnect or FixedDelay()
        self.heartbeat_ms = heartbeat_ms
        self.connect_timeout = connect_timeout
        self.connector = connector or websocket_connector

        self.topic = f"/topic/room/{room_id}"
        self.destination = f"/app/chat/{room_id}"

        self._state = ChannelState.DISCONNECTED
        self._listeners: List[StateListener] = []
        self._task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._ws: Any = None
        self._incoming_heartbeat = 0
        self._subscription_id = f"sub-{next(_subscription_ids)}"
        self.last_error: Optional[Exception] = None
        self.connect_count = 0

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ChannelState.CONNECTED

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: ChannelState) -> None:
        if state == self._state:
            return
        logger.debug(f"Channel {self.topic}: {self._state.value} -> {state.value}")
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"State listener failed: {e}", exc_info=True)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def activate(self) -> None:
        """Start connecting; returns immediately, the channel runs in its own task"""
        if self.active:
            logger.debug(f"Channel {self.topic} already active")
            return
        self.last_error = None
        self._task = asyncio.create_task(self._run(), name=f"live-channel:{self.room_id}")

    async def deactivate(self) -> None:
        """Tear down: stop delivery, unsubscribe, disconnect. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is None and self._ws is None and self._state == ChannelState.DISCONNECTED:
            logger.debug(f"Channel {self.topic} already torn down")
            return

        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._stop_heartbeat()

        ws = self._ws
        if ws is not None and self._state == ChannelState.CONNECTED:
            try:
                await ws.send(stomp.unsubscribe_frame(self._subscription_id).encode())
                await ws.send(stomp.disconnect_frame().encode())
            except (ConnectionClosed, OSError) as e:
                logger.debug(f"Ignoring error while disconnecting: {e}")

        await self._close_socket()
        self._set_state(ChannelState.DISCONNECTED)
        logger.info(f"✓ Channel {self.topic} deactivated")

    async def _run(self) -> None:
        attempt = 0
        while True:
            self._set_state(ChannelState.CONNECTING)
            try:
                ws = await self.connector(self.ws_url, self._transport_headers())
                self._ws = ws
                await self._handshake(ws)
                attempt = 0
                self.connect_count += 1
                self._set_state(ChannelState.CONNECTED)
                logger.info(f"✓ Connected to {self.topic}")
                await self._listen(ws)
            except AuthenticationError as e:
                self.last_error = e
                logger.error(f"✗ Channel {self.topic} lost authorization: {e}")
                self._stop_heartbeat()
                await self._close_socket()
                self._set_state(ChannelState.DISCONNECTED)
                return
            except (WebSocketException, OSError, NetworkError,
                    ParseError, asyncio.TimeoutError) as e:
                self.last_error = e
                logger.warning(f"✗ Channel {self.topic} disconnected: {e or type(e).__name__}")
            except Exception as e:
                self.last_error = e
                logger.error(f"✗ Channel {self.topic} failed: {e}", exc_info=True)

            self._stop_heartbeat()
            await self._close_socket()
            self._set_state(ChannelState.DISCONNECTED)

            attempt += 1
            delay = self.reconnect.delay(attempt)
            logger.info(f"Reconnecting to {self.topic} in {delay:.1f}s (attempt {attempt})")
            await asyncio.sleep(delay)

    def _transport_headers(self) -> Dict[str, str]:
        return self.session.auth_headers() if self.session else {}

    async def _handshake(self, ws: Any) -> None:
        headers: Dict[str, str] = {}
        if self.session:
            headers["login"] = self.session.username
            headers.update(self.session.auth_headers())

        host = urlparse(self.ws_url).hostname or "localhost"
        await ws.send(stomp.connect_frame(host, self.heartbeat_ms, headers).encode())

        frame = await asyncio.wait_for(self._next_frame(ws), timeout=self.connect_timeout)
        if frame.command == "ERROR":
            raise NetworkError(f"Broker refused connection: {frame.headers.get('message') or frame.body}")
        if frame.command != "CONNECTED":
            raise NetworkError(f"Expected CONNECTED, got {frame.command}")

        outgoing, incoming = stomp.negotiated_heartbeat(self.heartbeat_ms, frame.headers.get("heart-beat"))
        self._incoming_heartbeat = incoming
        if outgoing:
            self._heartbeat_task = asyncio.create_task(self._send_heartbeats(ws, outgoing / 1000))

        await ws.send(stomp.subscribe_frame(self.topic, self._subscription_id).encode())

    async def _next_frame(self, ws: Any) -> Frame:
        while True:
            frame = Frame.decode(await ws.recv())
            if frame is not None:
                return frame

    async def _listen(self, ws: Any) -> None:
        # Allow twice the negotiated interval before declaring the broker dead
        timeout = self._incoming_heartbeat * 2 / 1000 if self._incoming_heartbeat else None
        while True:
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=timeout)
            except asyncio.TimeoutError:
                raise NetworkError("Heart-beat timeout")

            try:
                frame = Frame.decode(raw)
            except ParseError as e:
                logger.warning(f"Discarding malformed frame on {self.topic}: {e}")
                continue
            if frame is None:
                continue

            if frame.command == "MESSAGE":
                subscription = frame.headers.get("subscription")
                if subscription is not None and subscription != self._subscription_id:
                    logger.debug(f"Ignoring frame for foreign subscription {subscription}")
                    continue
                self._deliver(frame.body)
            elif frame.command == "ERROR":
                raise NetworkError(f"Broker error: {frame.headers.get('message') or frame.body}")
            else:
                logger.debug(f"Ignoring {frame.command} frame")

    def _deliver(self, body: str) -> None:
        try:
            self.on_message(body)
        except Exception as e:
            logger.error(f"Message handler failed on {self.topic}: {e}", exc_info=True)

    async def _send_heartbeats(self, ws: Any, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await ws.send(stomp.HEARTBEAT)
            except (ConnectionClosed, OSError):
                return

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        self._incoming_heartbeat = 0

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"Ignoring error while closing socket: {e}")

    # ------------------------------------------------------------------ #
    # Outbound
    # ------------------------------------------------------------------ #

    async def publish(self, body: str, destination: Optional[str] = None) -> None:
        """Send a SEND frame to the room's inbound destination.

        Raises:
            NotConnectedError: Channel is not CONNECTED
            NetworkError: Socket closed while sending
        """
        if self._state != ChannelState.CONNECTED or self._ws is None:
            raise NotConnectedError()
        frame = stomp.send_frame(destination or self.destination, body)
        try:
            await self._ws.send(frame.encode())
        except (ConnectionClosed, OSError) as e:
            raise NetworkError(f"Publish failed: {e}") from e
        logger.debug(f"Published {len(body)} bytes to {destination or self.destination}")
