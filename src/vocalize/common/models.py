"""
Shared data models for the Vocalize client.

Defines result enums, token types, cache envelopes and the pending audio
record used across the API, session and service layers.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class LoginResult(str, Enum):
    """Outcome of a login attempt."""

    SUCCESS = "success"
    UNVERIFIED = "unverified"  # Account exists but the email was never confirmed
    ERROR = "error"


class Destination(Enum):
    """Places the UI layer may be told to navigate to."""

    LOGIN = "login"
    MAIN = "main"
    AWAITING_ACCESS = "awaiting_access"


class RecordingStatus(str, Enum):
    """Lifecycle of a locally queued recording."""

    PENDING = "pending"
    SENT = "sent"


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh bearer tokens as issued by the auth endpoints."""

    access_token: str
    refresh_token: str

    @classmethod
    def from_dict(cls, data: Any) -> "TokenPair | None":
        """Create from an auth response body; None if either token is missing."""
        if not isinstance(data, dict):
            return None
        access = data.get("access_token")
        refresh = data.get("refresh_token")
        if not access or not refresh:
            return None
        return cls(access_token=access, refresh_token=refresh)


@dataclass(frozen=True)
class TokenClaims:
    """The subset of access-token claims the client relies on."""

    sub: str
    role: str
    exp: int
    email: str | None = None


@dataclass(frozen=True)
class RememberedCredentials:
    """Login pair kept only for silent re-authentication."""

    email: str
    password: str


@dataclass
class CacheEntry(Generic[T]):
    """A cached collection and the epoch-millisecond time it was written."""

    data: list[T]
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {"data": self.data, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, raw: Any) -> "CacheEntry[T]":
        """
        Create from a decoded JSON envelope.

        Raises:
            ValueError: if the envelope does not have the expected shape
        """
        if not isinstance(raw, dict):
            raise ValueError("cache envelope is not an object")
        data = raw.get("data")
        timestamp = raw.get("timestamp")
        if not isinstance(data, list):
            raise ValueError("cache envelope has no data list")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError("cache envelope has no numeric timestamp")
        return cls(data=data, timestamp=int(timestamp))


@dataclass
class APIResponse:
    """A fully read HTTP response."""

    status: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass
class PendingRecording:
    """A finalized recording stored locally until it is uploaded."""

    uri: str
    timestamp: int  # epoch ms when the recording was saved
    duration: int  # seconds
    vocalizationId: int
    vocalizationName: str
    participanteId: int
    status: str = RecordingStatus.PENDING.value

    @property
    def is_pending(self) -> bool:
        return self.status == RecordingStatus.PENDING.value

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingRecording":
        """Create from a stored JSON object."""
        return cls(
            uri=data["uri"],
            timestamp=int(data.get("timestamp", 0)),
            duration=int(data.get("duration", 0)),
            vocalizationId=int(data.get("vocalizationId", 0)),
            vocalizationName=data.get("vocalizationName", ""),
            participanteId=int(data.get("participanteId", 0)),
            status=data.get("status", RecordingStatus.PENDING.value),
        )


@dataclass
class UploadReport:
    """Result of pushing the pending queue to the server."""

    sent: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # uri -> error message

    @property
    def all_sent(self) -> bool:
        return not self.failed
