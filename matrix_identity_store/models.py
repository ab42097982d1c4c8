"""Plain data records exchanged with the store.

Records never carry database handles; ``storage.SqlStorage`` maps them to
and from the tables in ``schema``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def to_millis(value: Optional[datetime]) -> Optional[int]:
    """Convert a datetime to epoch milliseconds, naive values being UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_millis(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ThreePid:
    """A third-party identifier such as an email address or phone number."""

    medium: str
    address: str

    def __str__(self) -> str:
        return f"{self.medium}:{self.address}"


@dataclass(frozen=True)
class ThreePidMapping:
    medium: str
    address: str
    mxid: str


@dataclass
class ThreePidInvite:
    id: str
    sender: str
    medium: str
    address: str
    room_id: str
    token: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def threepid(self) -> ThreePid:
        return ThreePid(self.medium, self.address)


@dataclass
class HistoricalThreePidInvite:
    id: str
    sender: str
    medium: str
    address: str
    room_id: str
    resolved_to: str
    resolved_at: datetime
    could_publish: bool
    token: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ThreePidSession:
    id: str
    server: str
    medium: str
    address: str
    secret: str
    attempt: int
    token: str
    creation_time: datetime
    next_link: Optional[str] = None
    validated: bool = False
    validation_time: Optional[datetime] = None
    is_remote: bool = False
    remote_server: Optional[str] = None
    remote_id: Optional[str] = None
    remote_secret: Optional[str] = None
    remote_attempt: int = 0
    is_remote_validated: bool = False

    @property
    def threepid(self) -> ThreePid:
        return ThreePid(self.medium, self.address)


@dataclass
class ASTransaction:
    localpart: str
    transaction_id: str
    completion: datetime
    result: str


@dataclass
class Account:
    token: str
    user_id: str
    created_at: datetime
    token_type: str = "Bearer"
    expires_in: Optional[int] = None  # Seconds, None never expires


@dataclass
class AcceptedPolicy:
    id: int
    user_id: str
    url: str
    accepted_at: datetime


@dataclass
class ChangelogEntry:
    name: str
    created_at: datetime
    comment: str
