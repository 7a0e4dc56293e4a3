"""Attachment uploader"""
import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional

from plutochat.api.exceptions import ValidationError
from plutochat.api.models import Session
from plutochat.api.pluto_client import PlutoClient

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_TYPES = [
    'image/jpeg', 'image/png', 'image/gif', 'image/webp', 'image/bmp',
]


class AttachmentUploader:
    """Uploads one file at a time to the active room.

    The upload response carries no message; the backend publishes the IMAGE
    message on the room topic and the reconciler picks it up from there.
    ``busy`` and ``selected_file`` are reset whatever the outcome.
    """

    def __init__(self, client: PlutoClient, room_id: str, session: Session,
                 max_file_size_mb: int = 10,
                 allowed_mimetypes: Optional[List[str]] = None,
                 timeout: Optional[int] = None):
        self.client = client
        self.room_id = room_id
        self.session = session
        self.max_file_size_mb = max_file_size_mb
        self.allowed_mimetypes = allowed_mimetypes or list(DEFAULT_IMAGE_TYPES)
        self.timeout = timeout
        self.busy = False
        self.selected_file: Optional[Path] = None

    def validate(self, path: Path) -> str:
        """Check the file before any network call; returns its MIME type"""
        if not path.is_file():
            raise ValidationError(f"File not found: {path}")

        size = path.stat().st_size
        if size == 0:
            raise ValidationError(f"File is empty: {path.name}")
        max_bytes = self.max_file_size_mb * 1024 * 1024
        if size > max_bytes:
            raise ValidationError(
                f"File too large: {size / 1024 / 1024:.2f} MB (max {self.max_file_size_mb} MB)"
            )

        mime_type = mimetypes.guess_type(path.name)[0]
        if mime_type not in self.allowed_mimetypes:
            raise ValidationError(f"Unsupported file type: {mime_type or 'unknown'}")
        return mime_type

    async def upload(self, path: Path) -> Dict[str, Any]:
        """Validate and upload a file.

        Raises:
            ValidationError: Rejected before the request
            RoomNotFoundError / NetworkError: Server or transport failure
        """
        if self.busy:
            raise ValidationError("An upload is already in progress")

        path = Path(path)
        self.selected_file = path
        self.busy = True
        try:
            mime_type = self.validate(path)
            logger.info(f"Uploading {path.name} ({mime_type}) to room {self.room_id}")
            return await asyncio.to_thread(
                self.client.upload_photo, self.room_id, self.session.username, path,
                timeout=self.timeout
            )
        finally:
            self.busy = False
            self.selected_file = None
