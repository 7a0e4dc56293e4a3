"""Custom exceptions for the Pluto client."""
from typing import Optional


class PlutoException(Exception):
    """Base exception for Pluto client errors"""
    pass


class NetworkError(PlutoException):
    """Request, upload or channel connect failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(NetworkError):
    """Credentials rejected or session no longer valid"""
    pass


class RoomNotFoundError(PlutoException):
    """Room does not exist"""

    def __init__(self, room_id: str, message: Optional[str] = None):
        super().__init__(message or f"Room not found: {room_id}")
        self.room_id = room_id


class RoomExistsError(PlutoException):
    """Room id already taken"""
    pass


class ParseError(PlutoException):
    """Malformed payload from REST or broker"""
    pass


class ValidationError(PlutoException):
    """Validation error"""
    pass


class NotConnectedError(PlutoException):
    """Live channel is not connected"""

    def __init__(self, message: str = "not connected"):
        super().__init__(message)
