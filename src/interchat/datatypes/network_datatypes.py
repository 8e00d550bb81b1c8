"""
Data structures for hub networks: hubs, connections, relayed messages and
their per-channel copies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional

# emoji -> ordered list of user ids that reacted with it
ReactionMap = Dict[str, List[str]]


class ConnectionMode(IntEnum):
    """How a connection renders relayed messages."""

    COMPACT = 0
    EMBED = 1


@dataclass(slots=True)
class Hub:
    """A named group of channels that mirror each other."""
    id: str
    name: str
    reactions_enabled: bool = True
    log_webhook_url: Optional[str] = None


@dataclass(slots=True)
class Connection:
    """Membership of one channel in one hub.

    ``parent_id`` is set when the channel is a thread; webhook calls then
    target the parent's webhook with ``thread_id=channel_id``.
    """
    id: int
    hub_id: str
    channel_id: str
    guild_id: str
    webhook_url: str
    connected: bool = True
    compact: bool = False
    parent_id: Optional[str] = None
    last_active: int = 0

    @property
    def thread_id(self) -> Optional[str]:
        return self.channel_id if self.parent_id else None

    @property
    def mode(self) -> ConnectionMode:
        return ConnectionMode.COMPACT if self.compact else ConnectionMode.EMBED


@dataclass(slots=True)
class HubMessage:
    """A message posted in a connected channel, ready to be relayed."""
    id: str
    channel_id: str
    guild_id: str
    author_id: str
    author_username: str
    content: str
    created_at: int
    author_avatar_url: Optional[str] = None
    guild_name: Optional[str] = None
    image_url: Optional[str] = None


@dataclass(slots=True)
class OriginalMessage:
    """The stored source of a broadcast, including its reaction map."""
    id: str
    hub_id: str
    channel_id: str
    guild_id: str
    author_id: str
    content: str
    created_at: int
    image_url: Optional[str] = None
    reactions: ReactionMap = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Broadcast:
    """One copy of an original message delivered to one channel."""
    message_id: str
    channel_id: str
    original_id: str
    hub_id: str
    mode: ConnectionMode = ConnectionMode.EMBED


@dataclass(frozen=True, slots=True)
class BroadcastResult:
    """Outcome of a fan-out."""
    delivered: List[Broadcast]
    failed_channel_ids: List[str]
    disconnected_channel_ids: List[str]

    @property
    def total(self) -> int:
        return len(self.delivered) + len(self.failed_channel_ids)


@dataclass(frozen=True, slots=True)
class PropagationResult:
    """How many copies an edit or delete reached."""
    done: int
    total: int


@dataclass(frozen=True, slots=True)
class ModLogEntry:
    """A moderation event on a hub message, kept for hub moderators."""
    hub_id: str
    original_id: str
    action: str
    moderator_id: str
    author_id: str
    channel_id: str
    created_at: int
    details: str = ""
