"""Room view: snapshot, live channel, sending and uploads for one room.

A view owns its reconciler, channel, dispatcher and uploader exclusively.
The channel is opened only after the snapshot has loaded. Every failure is
turned into the ``error`` banner; nothing here raises to the caller.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from plutochat.api.exceptions import (
    NetworkError,
    NotConnectedError,
    ParseError,
    RoomNotFoundError,
    ValidationError,
)
from plutochat.api.models import Message, Room, Session
from plutochat.api.pluto_client import PlutoClient
from plutochat.channel.live_channel import (
    ChannelState,
    Connector,
    ExponentialBackoff,
    FixedDelay,
    LiveChannel,
    ReconnectPolicy,
)
from plutochat.sync.dispatcher import Clock, Composer, MessageDispatcher
from plutochat.sync.reconciler import DedupStrategy, MessageReconciler, build_strategy
from plutochat.sync.uploader import AttachmentUploader

logger = logging.getLogger(__name__)


class ViewStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"


@dataclass
class ViewOptions:
    """Presentation parameters"""
    title: Optional[str] = None
    own_marker: str = "me"
    show_timestamps: bool = True
    show_sender: bool = True


def format_message(message: Message, me: str, options: ViewOptions) -> str:
    """Render one message as a single line"""
    parts = []
    if options.show_timestamps:
        sent_at = message.sent_at
        parts.append(f"[{sent_at.strftime('%H:%M:%S')}]" if sent_at else "[--:--:--]")
    if options.show_sender:
        parts.append(f"{options.own_marker if message.sender == me else message.sender}:")
    if message.is_attachment:
        parts.append(f"{message.content or '📷 Photo'} <{message.media_url}>")
    else:
        parts.append(message.content or "")
    return " ".join(parts)


def build_reconnect_policy(mode: str, delay: float, max_delay: float) -> ReconnectPolicy:
    if mode == "exponential":
        return ExponentialBackoff(initial=delay, max_delay=max_delay)
    return FixedDelay(delay)


class RoomView:
    """One active room"""

    def __init__(self, room_id: str, session: Session, client: PlutoClient, ws_url: str,
                 strategy: Optional[DedupStrategy] = None,
                 reconnect: Optional[ReconnectPolicy] = None,
                 heartbeat_ms: int = 10000,
                 connect_timeout: float = 10.0,
                 connector: Optional[Connector] = None,
                 max_file_size_mb: int = 10,
                 allowed_mimetypes: Optional[List[str]] = None,
                 upload_timeout: Optional[int] = None,
                 clock: Optional[Clock] = None,
                 options: Optional[ViewOptions] = None,
                 on_update: Optional[Callable[["RoomView"], None]] = None):
        self.room_id = room_id
        self.session = session
        self.client = client
        self.options = options or ViewOptions()
        self.on_update = on_update

        self.reconciler = MessageReconciler(strategy)
        self.reconciler.add_listener(lambda _message: self._notify())
        self.composer = Composer()

        self.channel = LiveChannel(
            room_id,
            ws_url,
            on_message=self.reconciler.ingest,
            session=session,
            reconnect=reconnect,
            heartbeat_ms=heartbeat_ms,
            connect_timeout=connect_timeout,
            connector=connector,
        )
        self.channel.add_state_listener(self._on_channel_state)
        self.dispatcher = MessageDispatcher(self.channel, session, clock=clock)
        self.uploader = AttachmentUploader(
            client, room_id, session,
            max_file_size_mb=max_file_size_mb,
            allowed_mimetypes=allowed_mimetypes,
            timeout=upload_timeout,
        )

        self.status = ViewStatus.IDLE
        self.room: Optional[Room] = None
        self.error: Optional[str] = None
        self._fetch_task: Optional[asyncio.Task] = None
        self._upload_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config, room_id: str, session: Session,
                    client: PlutoClient, **kwargs) -> "RoomView":
        """Build a view from a Config instance; kwargs override"""
        settings = dict(
            strategy=build_strategy(config.sync.dedup_strategy, config.sync.dedup_window_ms),
            reconnect=build_reconnect_policy(
                config.channel.reconnect_backoff,
                config.channel.reconnect_delay,
                config.channel.reconnect_max_delay,
            ),
            heartbeat_ms=config.channel.heartbeat_ms,
            connect_timeout=config.channel.connect_timeout,
            max_file_size_mb=config.upload.max_file_size_mb,
            allowed_mimetypes=config.upload.allowed_mimetypes,
            upload_timeout=config.upload.timeout,
        )
        settings.update(kwargs)
        return cls(room_id, session, client, config.channel.ws_url, **settings)

    # ------------------------------------------------------------------ #
    # Read-only state
    # ------------------------------------------------------------------ #

    @property
    def title(self) -> str:
        return self.options.title or (self.room.room_id if self.room else self.room_id)

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self.reconciler.messages

    @property
    def members(self) -> List[str]:
        return list(self.room.members) if self.room else []

    @property
    def connected(self) -> bool:
        return self.channel.connected

    @property
    def closed(self) -> bool:
        return self.status == ViewStatus.CLOSED

    def render(self) -> List[str]:
        return [format_message(m, self.session.username, self.options) for m in self.messages]

    def _notify(self) -> None:
        if self.on_update is None or self.closed:
            return
        try:
            self.on_update(self)
        except Exception as e:
            logger.error(f"View update callback failed: {e}", exc_info=True)

    def _fail(self, message: str) -> None:
        self.error = message
        logger.warning(f"✗ {self.room_id}: {message}")
        self._notify()

    def _on_channel_state(self, state: ChannelState) -> None:
        if self.closed:
            return
        if state == ChannelState.DISCONNECTED and self.status == ViewStatus.READY:
            self.error = "Disconnected"
        elif state == ChannelState.CONNECTED and self.error == "Disconnected":
            self.error = None
        self._notify()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def activate(self) -> bool:
        """Fetch the snapshot, then open the live channel.

        Returns:
            True if the view is live, False on error or teardown
        """
        if self.status != ViewStatus.IDLE:
            logger.debug(f"View {self.room_id} already {self.status.value}")
            return self.status == ViewStatus.READY

        self.status = ViewStatus.LOADING
        self._notify()
        self._fetch_task = asyncio.create_task(asyncio.to_thread(self.client.fetch_room, self.room_id))
        try:
            room = await self._fetch_task
        except asyncio.CancelledError:
            if self.closed:
                return False
            raise
        except RoomNotFoundError:
            self.status = ViewStatus.ERROR
            self._fail(f"Room '{self.room_id}' not found")
            return False
        except (NetworkError, ParseError) as e:
            self.status = ViewStatus.ERROR
            self._fail(f"Could not load room: {e}")
            return False
        finally:
            self._fetch_task = None

        if self.closed:
            return False

        self.room = room
        self.reconciler.load_snapshot(room.messages)
        await self.channel.activate()
        self.status = ViewStatus.READY
        logger.info(f"✓ Room view {self.title} active ({len(room.messages)} messages)")
        self._notify()
        return True

    async def deactivate(self) -> None:
        """Cancel pending work and tear the channel down. Idempotent."""
        if self.closed:
            return
        self.status = ViewStatus.CLOSED

        for task in (self._fetch_task, self._upload_task):
            if task is not None and not task.done():
                task.cancel()
        await self.channel.deactivate()
        logger.info(f"Room view {self.room_id} closed")

    # ------------------------------------------------------------------ #
    # Actions
    # ------------------------------------------------------------------ #

    async def send_text(self, text: Optional[str] = None) -> bool:
        """Send the composer's content (or ``text``, placed into the composer first)"""
        if self.closed:
            return False
        if text is not None:
            self.composer.text = text
        try:
            await self.dispatcher.send(self.composer)
        except ValidationError as e:
            self._fail(str(e))
            return False
        except NotConnectedError:
            self._fail("Not connected")
            return False
        except NetworkError as e:
            self._fail(f"Send failed: {e}")
            return False
        self.error = None
        return True

    async def upload(self, path: Path) -> bool:
        """Upload an attachment; the message itself arrives over the channel"""
        if self.closed:
            return False
        self._upload_task = asyncio.create_task(self.uploader.upload(Path(path)))
        try:
            await self._upload_task
        except asyncio.CancelledError:
            if self.closed:
                return False
            raise
        except ValidationError as e:
            self._fail(str(e))
            return False
        except RoomNotFoundError:
            self._fail(f"Upload failed: room '{self.room_id}' not found")
            return False
        except NetworkError as e:
            reason = "file too large" if e.status_code == 413 else str(e)
            self._fail(f"Upload failed: {reason}")
            return False
        finally:
            self._upload_task = None
        self.error = None
        return True


class RoomNavigator:
    """Holds at most one active view; switching fully tears down the old one first"""

    def __init__(self, factory: Callable[[str], RoomView]):
        self.factory = factory
        self.current: Optional[RoomView] = None

    async def open(self, room_id: str) -> RoomView:
        await self.close()
        view = self.factory(room_id)
        self.current = view
        await view.activate()
        return view

    async def close(self) -> None:
        view, self.current = self.current, None
        if view is not None:
            await view.deactivate()
