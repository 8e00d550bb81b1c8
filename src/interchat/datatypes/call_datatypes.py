"""
Data structures for the userphone (random call) subsystem.

Discord snowflakes are carried as strings everywhere in this module so they
survive JSON round trips through the cache without precision loss.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class CallStatus(Enum):
    """Lifecycle status of a call record."""

    ONGOING = "ONGOING"
    ENDED = "ENDED"

    def __str__(self) -> str:
        return self.value


class CallErrorCode(Enum):
    """Failure codes surfaced to command handlers."""

    CHANNEL_ALREADY_IN_CALL = "CHANNEL_ALREADY_IN_CALL"
    CHANNEL_ALREADY_IN_QUEUE = "CHANNEL_ALREADY_IN_QUEUE"
    WEBHOOK_CREATION_FAILED = "WEBHOOK_CREATION_FAILED"
    CALL_NOT_FOUND = "CALL_NOT_FOUND"
    MATCHING_TIMEOUT = "MATCHING_TIMEOUT"
    DATABASE_ERROR = "DATABASE_ERROR"
    REDIS_ERROR = "REDIS_ERROR"
    INVALID_CHANNEL = "INVALID_CHANNEL"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    def __str__(self) -> str:
        return self.value


class CallError(Exception):
    """Raised inside the userphone services; converted to a CallResult at the CallManager boundary."""

    def __init__(self, message: str, code: CallErrorCode, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.context = context or {}


@dataclass(frozen=True, slots=True)
class CallRequest:
    """A channel waiting in the queue for a partner.

    Attributes:
        timestamp: Enqueue time in unix milliseconds.
        priority: Higher values are served first.
        cluster_id: Shard cluster that created the request, if sharded.
    """
    id: str
    channel_id: str
    guild_id: str
    initiator_id: str
    webhook_url: str
    timestamp: int
    priority: int = 0
    cluster_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "guild_id": self.guild_id,
            "initiator_id": self.initiator_id,
            "webhook_url": self.webhook_url,
            "timestamp": self.timestamp,
            "priority": self.priority,
            "cluster_id": self.cluster_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallRequest":
        cluster_id = data.get("cluster_id")
        return cls(
            id=str(data["id"]),
            channel_id=str(data["channel_id"]),
            guild_id=str(data["guild_id"]),
            initiator_id=str(data["initiator_id"]),
            webhook_url=str(data["webhook_url"]),
            timestamp=int(data["timestamp"]),
            priority=int(data.get("priority", 0)),
            cluster_id=int(cluster_id) if cluster_id is not None else None,
        )


@dataclass(slots=True)
class CallMessage:
    """One relayed message in a call's log."""
    author_id: str
    author_username: str
    content: str
    timestamp: int
    attachment_url: Optional[str] = None


@dataclass(slots=True)
class CallParticipant:
    """One side of a call.

    ``users`` collects every user that has spoken from this channel during
    the call. It only ever grows.
    """
    channel_id: str
    guild_id: str
    webhook_url: str
    users: set[str] = field(default_factory=set)


@dataclass(slots=True)
class ActiveCall:
    """A live (or just ended) pairing of two channels."""
    id: str
    participants: List[CallParticipant]
    created_at: int
    status: CallStatus = CallStatus.ONGOING
    messages: List[CallMessage] = field(default_factory=list)
    ended_at: Optional[int] = None

    def get_participant(self, channel_id: str) -> Optional[CallParticipant]:
        """Return the participant for `channel_id`, or None."""
        for participant in self.participants:
            if participant.channel_id == channel_id:
                return participant
        return None

    def get_other_participant(self, channel_id: str) -> Optional[CallParticipant]:
        """Return the participant on the opposite side of `channel_id`, or None."""
        if self.get_participant(channel_id) is None:
            return None
        for participant in self.participants:
            if participant.channel_id != channel_id:
                return participant
        return None

    @property
    def channel_ids(self) -> List[str]:
        return [p.channel_id for p in self.participants]


@dataclass(frozen=True, slots=True)
class QueueStatus:
    """Position of a channel in the queue (1-based) and the total length."""
    position: int
    queue_length: int


@dataclass(frozen=True, slots=True)
class MatchResult:
    """Outcome of a matching attempt."""
    matched: bool
    call_id: Optional[str] = None
    participants: Optional[List[CallParticipant]] = None
    match_time_ms: Optional[float] = None


@dataclass(frozen=True, slots=True)
class CallResult:
    """Outcome of a call command, safe to show to the invoking user."""
    success: bool
    message: str
    call_id: Optional[str] = None
    code: Optional[CallErrorCode] = None
    queue_status: Optional[QueueStatus] = None

    @classmethod
    def failure(cls, code: CallErrorCode, message: str) -> "CallResult":
        return cls(success=False, message=message, code=code)


@dataclass(frozen=True, slots=True)
class CallReport:
    """A user report against a call. Open reports keep the call out of retention cleanup."""
    id: int
    call_id: str
    reporter_id: str
    reason: str
    status: str
    created_at: int
    resolved_at: Optional[int] = None
