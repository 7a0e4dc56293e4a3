"""Message reconciliation: merge the room snapshot with the live stream.

The visible sequence is append-only in receipt order. It is never re-sorted,
so out-of-order delivery is displayed out of order.
"""
import logging
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from plutochat.api.exceptions import ParseError
from plutochat.api.models import Message

logger = logging.getLogger(__name__)

Listener = Callable[[Message], None]


class DedupStrategy:
    """Decides whether an incoming message is already present"""

    name = "base"

    def is_duplicate(self, incoming: Message, existing: Sequence[Message]) -> bool:
        raise NotImplementedError


class TimestampWindowStrategy(DedupStrategy):
    """Same sender, same content, authored less than ``window_ms`` apart.

    Two legitimate identical messages sent within the window by the same user
    are indistinguishable from a redelivery and collapse into one.
    """

    name = "window"

    def __init__(self, window_ms: int = 1000):
        self.window_ms = window_ms

    def matches(self, a: Message, b: Message) -> bool:
        if a.sender != b.sender or a.content != b.content:
            return False
        ta, tb = a.sent_at, b.sent_at
        if ta is None or tb is None:
            # Unparseable timestamps only match on identical raw text
            return a.timestamp is not None and a.timestamp == b.timestamp
        return abs((ta - tb).total_seconds() * 1000) < self.window_ms

    def is_duplicate(self, incoming: Message, existing: Sequence[Message]) -> bool:
        return any(self.matches(e, incoming) for e in existing)


class MessageIdStrategy(DedupStrategy):
    """Keys on the broker-assigned message id.

    Messages without an id (legacy payloads) fall back to the timestamp
    window heuristic.
    """

    name = "id"

    def __init__(self, fallback: Optional[DedupStrategy] = None):
        self.fallback = fallback or TimestampWindowStrategy()

    def is_duplicate(self, incoming: Message, existing: Sequence[Message]) -> bool:
        if incoming.id is None:
            return self.fallback.is_duplicate(incoming, existing)
        return any(e.id == incoming.id for e in existing)


def build_strategy(name: str, window_ms: int = 1000) -> DedupStrategy:
    """Strategy by config name: ``window`` (default) or ``id``"""
    window = TimestampWindowStrategy(window_ms)
    if name == "window":
        return window
    if name == "id":
        return MessageIdStrategy(fallback=window)
    raise ValueError(f"Unknown dedup strategy: {name}")


class MessageReconciler:
    """Single ordered, duplicate-free message sequence for one room"""

    def __init__(self, strategy: Optional[DedupStrategy] = None):
        self.strategy = strategy or TimestampWindowStrategy()
        self._messages: List[Message] = []
        self._listeners: List[Listener] = []
        self.stats = {'appended': 0, 'duplicates': 0, 'parse_errors': 0}

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def load_snapshot(self, messages: Iterable[Message]) -> None:
        """Replace the sequence with the fetched history (kept as-is, oldest first)"""
        self._messages = list(messages)
        logger.debug(f"Snapshot loaded: {len(self._messages)} messages")

    def ingest(self, payload: Union[str, bytes, dict, Message]) -> Optional[Message]:
        """Incorporate one live message.

        Returns:
            The appended message, or None if it was a duplicate or unparseable
        """
        if isinstance(payload, Message):
            message = payload
        else:
            try:
                message = Message.from_payload(payload)
            except ParseError as e:
                self.stats['parse_errors'] += 1
                logger.warning(f"✗ Discarding unparseable message: {e}")
                return None

        if self.strategy.is_duplicate(message, self._messages):
            self.stats['duplicates'] += 1
            logger.debug(f"Duplicate from {message.sender} at {message.timestamp} discarded")
            return None

        self._messages.append(message)
        self.stats['appended'] += 1
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as e:
                logger.error(f"Message listener failed: {e}", exc_info=True)
        return message
