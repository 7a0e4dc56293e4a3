"""Outbound message dispatcher"""
import json
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from plutochat.api.exceptions import NotConnectedError, ValidationError
from plutochat.api.models import Message, MessageType, Session, format_timestamp
from plutochat.channel.live_channel import LiveChannel

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Composer:
    """Input buffer for the message being typed"""

    def __init__(self, text: str = ""):
        self.text = text

    def clear(self) -> None:
        self.text = ""

    def __bool__(self) -> bool:
        return bool(self.text.strip())


class MessageDispatcher:
    """Publishes user-authored text to the room's inbound destination.

    The message is not inserted locally; it shows up once the broker echoes it
    back on the room topic.
    """

    def __init__(self, channel: LiveChannel, session: Session,
                 clock: Optional[Clock] = None):
        self.channel = channel
        self.session = session
        self.clock = clock or utc_now

    def build(self, content: str) -> Message:
        return Message(
            sender=self.session.username,
            content=content,
            type=MessageType.TEXT,
            timestamp=format_timestamp(self.clock()),
        )

    async def send(self, composer: Composer) -> Message:
        """Publish the composer's trimmed text and clear it.

        Raises:
            ValidationError: Text is empty after trimming
            NotConnectedError: Channel is not connected (composer untouched)
            NetworkError: Socket failed during publish (composer untouched)
        """
        content = composer.text.strip()
        if not content:
            raise ValidationError("Message is empty")
        if not self.channel.connected:
            logger.warning(f"✗ Send rejected, channel {self.channel.topic} not connected")
            raise NotConnectedError()

        message = self.build(content)
        await self.channel.publish(json.dumps(message.to_payload()))
        composer.clear()
        logger.debug(f"Sent {len(content)} chars to {self.channel.destination}")
        return message
