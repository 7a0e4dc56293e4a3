"""Data models for the Pluto API."""
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from plutochat.api.exceptions import ParseError


class MessageType(str, Enum):
    """Message discriminator"""
    TEXT = "TEXT"
    IMAGE = "IMAGE"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Naive values are taken as UTC. Returns None if the value cannot be parsed.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(moment: datetime) -> str:
    """Serialize a datetime the way outbound messages carry it (UTC, millis, Z)"""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


class Message(BaseModel):
    """Chat message as carried by the REST snapshot and the live channel"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: Optional[str] = None
    sender: str = Field(..., min_length=1)
    content: Optional[str] = None
    media_url: Optional[str] = Field(default=None, alias="mediaUrl")
    type: MessageType = MessageType.TEXT
    timestamp: Optional[str] = None
    file_name: Optional[str] = Field(default=None, alias="fileName")
    file_size: Optional[int] = Field(default=None, alias="fileSize")
    mime_type: Optional[str] = Field(default=None, alias="mimeType")

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return str(v)

    @field_validator("type", mode="before")
    @classmethod
    def default_type(cls, v: Any) -> Any:
        # Older rooms stored messages without a type
        if v is None:
            return MessageType.TEXT
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("timestamp", mode="before")
    @classmethod
    def normalize_timestamp(cls, v: Any) -> Optional[str]:
        """Accept ISO strings, datetimes and the JVM [y, m, d, H, M, S, nanos] array form."""
        if v is None:
            return None
        if isinstance(v, datetime):
            return v.isoformat()
        if isinstance(v, (list, tuple)):
            if len(v) < 3 or not all(isinstance(part, int) for part in v):
                raise ValueError(f"Invalid timestamp array: {v!r}")
            parts = list(v[:6]) + [0] * (6 - min(len(v), 6))
            nanos = v[6] if len(v) > 6 else 0
            return datetime(*parts, nanos // 1000).isoformat()
        if isinstance(v, str):
            return v
        raise ValueError(f"Unsupported timestamp type: {type(v).__name__}")

    @model_validator(mode="after")
    def check_media(self) -> "Message":
        if self.type == MessageType.IMAGE and not self.media_url:
            raise ValueError("IMAGE message without mediaUrl")
        return self

    @property
    def sent_at(self) -> Optional[datetime]:
        """Authored instant, or None if the timestamp is missing or unparseable"""
        return parse_timestamp(self.timestamp)

    @property
    def is_attachment(self) -> bool:
        return self.type == MessageType.IMAGE

    def to_payload(self) -> Dict[str, Any]:
        """Wire representation (camelCase, no empty fields)"""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    @classmethod
    def from_payload(cls, data: Union[str, bytes, Dict[str, Any]]) -> "Message":
        """Parse a broker or REST payload.

        Raises:
            ParseError: If the payload is not valid JSON or not a valid message
        """
        try:
            if isinstance(data, (str, bytes)):
                data = json.loads(data)
            if not isinstance(data, dict):
                raise ParseError(f"Message payload must be an object, got {type(data).__name__}")
            return cls.model_validate(data)
        except json.JSONDecodeError as e:
            raise ParseError(f"Message payload is not JSON: {e}") from e
        except PydanticValidationError as e:
            raise ParseError(f"Invalid message payload: {e.error_count()} error(s): {e}") from e


class Room(BaseModel):
    """Room snapshot: members plus message history, oldest first"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    room_id: str = Field(..., alias="roomId", min_length=1)
    members: List[str] = Field(default_factory=list)
    messages: List[Message] = Field(default_factory=list)

    @field_validator("members", "messages", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    def matches(self, room_id: str) -> bool:
        """Room ids compare case-insensitively"""
        return self.room_id.casefold() == room_id.casefold()

    @classmethod
    def from_payload(cls, data: Any) -> "Room":
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ParseError(f"Invalid room payload: {e}") from e


@dataclass
class Session:
    """Authenticated identity, passed explicitly to components that need it"""
    username: str
    token: Optional[str] = None
    user_id: Optional[str] = None

    def auth_headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}
