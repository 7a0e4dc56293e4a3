"""Pluto REST API Client"""
import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from requests.exceptions import ConnectionError, RequestException, Timeout

from plutochat.api.exceptions import (
    AuthenticationError,
    NetworkError,
    ParseError,
    RoomExistsError,
    RoomNotFoundError,
)
from plutochat.api.models import Room, Session

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class PlutoClient:
    """Pluto chat REST client.

    All calls are single, blocking attempts. Callers running inside an event
    loop dispatch them with ``asyncio.to_thread``.
    """

    def __init__(self, base_url: str, session: Optional[Session] = None,
                 timeout: int = 30, verify_ssl: bool = True):
        """Initialize Pluto client"""
        self.base_url = base_url.rstrip('/')
        self.session = session
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.http = requests.Session()

        self.http.headers.update({
            "Accept": "application/json, text/plain, */*",
            "Cache-Control": "no-cache",
            "User-Agent": "plutochat/1.0",
        })

    def _url(self, path: str) -> str:
        return f"{self.base_url}{API_PREFIX}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Perform one request, translating transport failures into NetworkError"""
        headers = kwargs.pop("headers", {}) or {}
        if self.session:
            headers.update(self.session.auth_headers())

        url = self._url(path)
        logger.debug(f"{method} {url}")
        try:
            return self.http.request(
                method,
                url,
                headers=headers,
                timeout=kwargs.pop("timeout", self.timeout),
                verify=self.verify_ssl,
                **kwargs
            )
        except Timeout as e:
            raise NetworkError(f"Request timed out: {method} {path}") from e
        except ConnectionError as e:
            raise NetworkError(f"Connection failed: {self.base_url}") from e
        except RequestException as e:
            raise NetworkError(f"Request failed: {e}") from e

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        """Extract the server's error text from a failed response"""
        try:
            body = response.json()
        except ValueError:
            return response.text[:200] or response.reason or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            for key in ("error", "message"):
                if body.get(key):
                    return str(body[key])
        return f"HTTP {response.status_code}"

    def _check(self, response: requests.Response) -> None:
        """Raise NetworkError / AuthenticationError for non-2xx responses"""
        if response.ok:
            return
        message = self._error_message(response)
        if response.status_code in (401, 403):
            raise AuthenticationError(message, status_code=response.status_code)
        raise NetworkError(message, status_code=response.status_code)

    @staticmethod
    def _json(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Response is not JSON ({response.status_code})") from e

    # ------------------------------------------------------------------ #
    # Auth
    # ------------------------------------------------------------------ #

    def login(self, username: str, password: str) -> Session:
        """Authenticate and return the session to pass to other components"""
        response = self._request("POST", "auth/login", json={
            "username": username,
            "password": password,
        })
        try:
            self._check(response)
        except NetworkError as e:
            logger.error(f"✗ Login failed for {username}: {e}")
            raise

        data = self._json(response)
        if not isinstance(data, dict) or not data.get("username"):
            raise ParseError("Login response without username")

        self.session = Session(
            username=data["username"],
            token=data.get("token"),
            user_id=str(data["userId"]) if data.get("userId") is not None else None,
        )
        logger.info(f"✓ Authenticated as {self.session.username}")
        return self.session

    def register(self, username: str, email: str, password: str) -> None:
        """Create a new account"""
        response = self._request("POST", "auth/register", json={
            "username": username,
            "email": email,
            "password": password,
        })
        self._check(response)
        logger.info(f"✓ Registered {username}")

    # ------------------------------------------------------------------ #
    # Rooms
    # ------------------------------------------------------------------ #

    def fetch_room(self, room_id: str) -> Room:
        """Fetch a room snapshot (members + messages, oldest first).

        Raises:
            RoomNotFoundError: Room does not exist
            NetworkError: Transport failure or unexpected status
            ParseError: Body is not a valid room
        """
        response = self._request("GET", f"rooms/{room_id}")
        if response.status_code == 404:
            raise RoomNotFoundError(room_id)
        self._check(response)

        room = Room.from_payload(self._json(response))
        logger.info(f"✓ Room {room.room_id}: {len(room.members)} members, {len(room.messages)} messages")
        return room

    def list_user_rooms(self, username: str) -> List[Room]:
        """List rooms the user has joined"""
        response = self._request("GET", f"rooms/user/{username}")
        if response.status_code == 404:
            logger.warning(f"Unknown user {username}")
            return []
        self._check(response)

        data = self._json(response)
        if not isinstance(data, list):
            raise ParseError("Room list response is not a list")
        rooms = [Room.from_payload(item) for item in data]
        logger.info(f"✓ {len(rooms)} rooms for {username}")
        return rooms

    def create_room(self, room_id: str, username: str) -> Room:
        """Create a room; fails if the id is taken"""
        response = self._request("POST", "rooms/create", json={
            "roomId": room_id,
            "username": username,
        })
        if response.status_code == 409:
            raise RoomExistsError(self._error_message(response))
        self._check(response)

        room = Room.from_payload(self._json(response))
        logger.info(f"✓ Created room {room.room_id}")
        return room

    def join_room(self, room_id: str, username: str) -> Room:
        """Join an existing room"""
        response = self._request("POST", "rooms/join", json={
            "roomId": room_id,
            "username": username,
        })
        if response.status_code == 404:
            raise RoomNotFoundError(room_id, self._error_message(response))
        self._check(response)

        room = Room.from_payload(self._json(response))
        logger.info(f"✓ Joined room {room.room_id}")
        return room

    # ------------------------------------------------------------------ #
    # Attachments
    # ------------------------------------------------------------------ #

    def upload_photo(self, room_id: str, sender: str, path: Path,
                     timeout: Optional[int] = None) -> Dict[str, Any]:
        """Upload an image to a room.

        The server broadcasts the resulting IMAGE message on the room topic;
        the response body carries no message.

        Returns:
            The decoded response body (may be empty)
        """
        path = Path(path)
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"

        with open(path, "rb") as fh:
            response = self._request(
                "POST",
                f"rooms/{room_id}/photos",
                files={"file": (path.name, fh, mime_type)},
                data={"sender": sender},
                timeout=timeout or self.timeout,
            )

        if response.status_code == 404:
            raise RoomNotFoundError(room_id)
        self._check(response)

        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("success") is False:
            raise NetworkError(body.get("error") or "Upload failed", status_code=response.status_code)

        logger.info(f"✓ Uploaded {path.name} to room {room_id}")
        return body if isinstance(body, dict) else {}

    def close(self) -> None:
        self.http.close()
