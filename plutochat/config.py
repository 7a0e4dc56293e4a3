"""Configuration management with validation and error handling."""
import os
from pathlib import Path
from typing import List, Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv
import logging

from plutochat.api.models import Session
from plutochat.sync.uploader import DEFAULT_IMAGE_TYPES

logger = logging.getLogger(__name__)

DEDUP_STRATEGIES = ("window", "id")
BACKOFF_MODES = ("fixed", "exponential")


def derive_ws_url(api_url: str) -> str:
    """http://host:8080 -> ws://host:8080/chat"""
    base = api_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return base + "/chat"


@dataclass
class ApiConfig:
    """REST API settings"""
    base_url: str = "http://localhost:8080"
    timeout: int = 30
    verify_ssl: bool = True


@dataclass
class ChannelConfig:
    """Live channel (STOMP over WebSocket)"""
    ws_url: str = "ws://localhost:8080/chat"
    reconnect_delay: float = 5.0
    reconnect_backoff: str = "fixed"
    reconnect_max_delay: float = 60.0
    heartbeat_ms: int = 10000
    connect_timeout: float = 10.0


@dataclass
class SyncConfig:
    """Message reconciliation"""
    dedup_strategy: str = "window"
    dedup_window_ms: int = 1000


@dataclass
class UploadConfig:
    """Attachment upload limits"""
    max_file_size_mb: int = 10
    timeout: int = 120
    allowed_mimetypes: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.allowed_mimetypes:
            self.allowed_mimetypes = list(DEFAULT_IMAGE_TYPES)


@dataclass
class LoggingConfig:
    """Logging settings"""
    level: str = "INFO"
    log_file: Optional[Path] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    console_output: bool = True


class Config:
    """Client configuration loaded from .env and the environment"""

    def __init__(self, env_file: Optional[Path] = None):
        """Load settings; raises ValueError on invalid values"""
        if env_file is None:
            env_file = Path.cwd() / ".env"

        if env_file.exists():
            load_dotenv(env_file)
            logger.info(f"Configuration loaded from: {env_file}")
        else:
            logger.debug(f".env not found at {env_file}, using environment only")

        # REST API
        self.api = ApiConfig(
            base_url=self._get("PLUTO_API_URL", "http://localhost:8080").rstrip("/"),
            timeout=self._get_int("PLUTO_TIMEOUT", 30),
            verify_ssl=self._get_bool("PLUTO_VERIFY_SSL", True)
        )

        # Live channel
        self.channel = ChannelConfig(
            ws_url=self._get("PLUTO_WS_URL") or derive_ws_url(self.api.base_url),
            reconnect_delay=self._get_float("RECONNECT_DELAY", 5.0),
            reconnect_backoff=self._get("RECONNECT_BACKOFF", "fixed").lower(),
            reconnect_max_delay=self._get_float("RECONNECT_MAX_DELAY", 60.0),
            heartbeat_ms=self._get_int("HEARTBEAT_MS", 10000),
            connect_timeout=self._get_float("CONNECT_TIMEOUT", 10.0)
        )

        # Reconciliation
        self.sync = SyncConfig(
            dedup_strategy=self._get("DEDUP_STRATEGY", "window").lower(),
            dedup_window_ms=self._get_int("DEDUP_WINDOW_MS", 1000)
        )

        # Upload
        self.upload = UploadConfig(
            max_file_size_mb=self._get_int("MAX_UPLOAD_SIZE_MB", 10),
            timeout=self._get_int("UPLOAD_TIMEOUT", 120)
        )

        # Logging
        self.logging = LoggingConfig(
            level=self._get("LOG_LEVEL", "INFO").upper(),
            log_file=Path(self._get("LOG_FILE")) if self._get("LOG_FILE") else None,
            console_output=self._get_bool("LOG_CONSOLE", True)
        )

        # Session (optional, login command can provide it instead)
        self.username = self._get("PLUTO_USERNAME")
        self.token = self._get("PLUTO_TOKEN")

        self._validate()

    def _get(self, key: str, default: str = None) -> str:
        """Optional variable"""
        return os.getenv(key, default)

    def _get_required(self, key: str) -> str:
        """Variable that must be set"""
        value = os.getenv(key)
        if not value:
            raise ValueError(f"Required environment variable not set: {key}")
        return value

    def _get_bool(self, key: str, default: bool = False) -> bool:
        """Boolean variable (true/1/yes/on)"""
        value = os.getenv(key, str(default)).lower()
        return value in ("true", "1", "yes", "on")

    def _get_int(self, key: str, default: int = 0) -> int:
        """Integer variable, default on parse failure"""
        try:
            return int(os.getenv(key, default))
        except ValueError:
            logger.warning(f"Invalid integer variable {key}, using default {default}")
            return default

    def _get_float(self, key: str, default: float = 0.0) -> float:
        """Float variable, default on parse failure"""
        try:
            return float(os.getenv(key, default))
        except ValueError:
            logger.warning(f"Invalid float variable {key}, using default {default}")
            return default

    def _validate(self):
        """Reject malformed URLs and unknown modes"""
        if not self.api.base_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid API URL: {self.api.base_url}")

        if not self.channel.ws_url.startswith(("ws://", "wss://")):
            raise ValueError(f"Invalid WebSocket URL: {self.channel.ws_url}")

        if self.channel.reconnect_backoff not in BACKOFF_MODES:
            raise ValueError(f"Invalid RECONNECT_BACKOFF: {self.channel.reconnect_backoff}")

        if self.channel.reconnect_delay <= 0:
            raise ValueError("RECONNECT_DELAY must be positive")

        if self.sync.dedup_strategy not in DEDUP_STRATEGIES:
            raise ValueError(f"Invalid DEDUP_STRATEGY: {self.sync.dedup_strategy}")

        if self.logging.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid LOG_LEVEL: {self.logging.level}")

        logger.debug("✓ Configuration validated")

    def session(self) -> Session:
        """Session from PLUTO_USERNAME / PLUTO_TOKEN"""
        return Session(username=self._get_required("PLUTO_USERNAME"), token=self.token)

    def to_dict(self) -> dict:
        """Loggable summary (no secrets)"""
        return {
            "api_url": self.api.base_url,
            "ws_url": self.channel.ws_url,
            "reconnect_delay": self.channel.reconnect_delay,
            "reconnect_backoff": self.channel.reconnect_backoff,
            "dedup_strategy": self.sync.dedup_strategy,
            "dedup_window_ms": self.sync.dedup_window_ms,
            "username": self.username,
            "log_level": self.logging.level
        }
