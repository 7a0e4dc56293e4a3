"""STOMP 1.2 frame codec for the WebSocket transport.

A frame is ``COMMAND\\n(header:value\\n)*\\n<body>\\0``. A frame consisting
only of EOLs is a heart-beat.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union

from plutochat.api.exceptions import ParseError

logger = logging.getLogger(__name__)

NULL = "\x00"
EOL = "\n"
HEARTBEAT = EOL

CLIENT_COMMANDS = {"CONNECT", "STOMP", "SEND", "SUBSCRIBE", "UNSUBSCRIBE",
                   "ACK", "NACK", "BEGIN", "COMMIT", "ABORT", "DISCONNECT"}
SERVER_COMMANDS = {"CONNECTED", "MESSAGE", "RECEIPT", "ERROR"}

# CONNECT and CONNECTED headers are never escaped
_UNESCAPED_COMMANDS = {"CONNECT", "CONNECTED"}

_ESCAPES = (("\\", "\\\\"), ("\r", "\\r"), ("\n", "\\n"), (":", "\\c"))
_UNESCAPES = {"\\": "\\", "r": "\r", "n": "\n", "c": ":"}
_BLANK_LINE = re.compile(r"\r?\n\r?\n")


def escape_header(value: str) -> str:
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def unescape_header(value: str) -> str:
    if "\\" not in value:
        return value
    out = []
    chars = iter(value)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, None)
        if nxt not in _UNESCAPES:
            raise ParseError(f"Invalid header escape sequence: \\{nxt or ''}")
        out.append(_UNESCAPES[nxt])
    return "".join(out)


@dataclass
class Frame:
    """One STOMP frame"""
    command: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    def encode(self) -> str:
        escape = self.command not in _UNESCAPED_COMMANDS
        lines = [self.command]
        for key, value in self.headers.items():
            key, value = str(key), str(value)
            if escape:
                key, value = escape_header(key), escape_header(value)
            lines.append(f"{key}:{value}")
        return EOL.join(lines) + EOL + EOL + self.body + NULL

    @classmethod
    def decode(cls, raw: Union[str, bytes]) -> Optional["Frame"]:
        """Decode one frame; returns None for a heart-beat.

        Raises:
            ParseError: If the frame is malformed
        """
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ParseError(f"Frame is not UTF-8: {e}") from e

        text = raw.lstrip("\r\n")
        if not text or text == NULL:
            return None

        head, body = _split_head(text)
        head_lines = head.split(EOL)
        command = head_lines[0].rstrip("\r")
        if command not in CLIENT_COMMANDS | SERVER_COMMANDS:
            raise ParseError(f"Unknown STOMP command: {command[:32]!r}")

        escape = command not in _UNESCAPED_COMMANDS
        headers: Dict[str, str] = {}
        for line in head_lines[1:]:
            line = line.rstrip("\r")
            if not line:
                continue
            if ":" not in line:
                raise ParseError(f"Malformed header line: {line[:64]!r}")
            key, value = line.split(":", 1)
            if escape:
                key, value = unescape_header(key), unescape_header(value)
            # Repeated headers: first one wins
            headers.setdefault(key, value)

        body = _cut_body(body, headers.get("content-length"))
        return cls(command=command, headers=headers, body=body)


def _split_head(text: str) -> Tuple[str, str]:
    match = _BLANK_LINE.search(text)
    if not match:
        raise ParseError("Frame has no header terminator")
    return text[:match.start()], text[match.end():]


def _cut_body(body: str, content_length: Optional[str]) -> str:
    if content_length is not None:
        try:
            length = int(content_length)
        except ValueError as e:
            raise ParseError(f"Invalid content-length: {content_length!r}") from e
        encoded = body.encode("utf-8")
        if length < 0 or len(encoded) < length:
            raise ParseError("Body shorter than content-length")
        return encoded[:length].decode("utf-8", errors="replace")

    idx = body.find(NULL)
    if idx == -1:
        raise ParseError("Frame is not NULL-terminated")
    return body[:idx]


# ---------------------------------------------------------------------- #
# Client frame builders
# ---------------------------------------------------------------------- #

def connect_frame(host: str, heartbeat_ms: int = 0,
                  headers: Optional[Dict[str, str]] = None) -> Frame:
    frame_headers = {
        "accept-version": "1.2,1.1,1.0",
        "host": host,
        "heart-beat": f"{heartbeat_ms},{heartbeat_ms}",
    }
    if headers:
        frame_headers.update(headers)
    return Frame("CONNECT", frame_headers)


def subscribe_frame(destination: str, subscription_id: str) -> Frame:
    return Frame("SUBSCRIBE", {"id": subscription_id, "destination": destination, "ack": "auto"})


def unsubscribe_frame(subscription_id: str) -> Frame:
    return Frame("UNSUBSCRIBE", {"id": subscription_id})


def send_frame(destination: str, body: str, content_type: str = "application/json") -> Frame:
    return Frame("SEND", {
        "destination": destination,
        "content-type": content_type,
        "content-length": str(len(body.encode("utf-8"))),
    }, body)


def disconnect_frame(receipt: Optional[str] = None) -> Frame:
    return Frame("DISCONNECT", {"receipt": receipt} if receipt else {})


def negotiated_heartbeat(client_ms: int, server_header: Optional[str]) -> Tuple[int, int]:
    """Return (outgoing_ms, incoming_ms) from our setting and the CONNECTED heart-beat header"""
    if not server_header or client_ms <= 0:
        return 0, 0
    try:
        server_cx, server_cy = (int(part) for part in server_header.split(","))
    except ValueError:
        logger.debug(f"Ignoring malformed heart-beat header: {server_header!r}")
        return 0, 0
    outgoing = max(client_ms, server_cy) if server_cy > 0 else 0
    incoming = max(client_ms, server_cx) if server_cx > 0 else 0
    return outgoing, incoming
