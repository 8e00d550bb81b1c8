"""
Typed publish/subscribe channel for call lifecycle events.

Each event type has exactly one payload dataclass, and every payload class
names its event type, so ``publish`` cannot pair a payload with the wrong
event. Handlers are async callables; a handler that raises is logged and
the remaining handlers still run.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, ClassVar, Dict, List, Optional, Union

from interchat.datatypes.call_datatypes import ActiveCall, CallMessage, CallRequest, QueueStatus
from interchat.util.logger import get_logger

logger = get_logger("call_events")


class CallEventType(Enum):
    QUEUED = "call:queued"
    MATCHED = "call:matched"
    STARTED = "call:started"
    ENDED = "call:ended"
    PARTICIPANT_JOINED = "call:participant-joined"
    PARTICIPANT_LEFT = "call:participant-left"
    MESSAGE = "call:message"
    QUEUE_TIMEOUT = "call:queue-timeout"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class CallQueuedEvent:
    event_type: ClassVar[CallEventType] = CallEventType.QUEUED
    request: CallRequest
    queue_status: QueueStatus


@dataclass(frozen=True, slots=True)
class CallMatchedEvent:
    event_type: ClassVar[CallEventType] = CallEventType.MATCHED
    call: ActiveCall
    match_time_ms: float


@dataclass(frozen=True, slots=True)
class CallStartedEvent:
    event_type: ClassVar[CallEventType] = CallEventType.STARTED
    call: ActiveCall


@dataclass(frozen=True, slots=True)
class CallEndedEvent:
    """``ended_by`` is the channel that hung up or skipped, if known."""
    event_type: ClassVar[CallEventType] = CallEventType.ENDED
    call: ActiveCall
    duration_ms: int
    ended_by: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ParticipantJoinedEvent:
    event_type: ClassVar[CallEventType] = CallEventType.PARTICIPANT_JOINED
    call_id: str
    channel_id: str
    user_id: str


@dataclass(frozen=True, slots=True)
class ParticipantLeftEvent:
    event_type: ClassVar[CallEventType] = CallEventType.PARTICIPANT_LEFT
    call_id: str
    channel_id: str
    user_id: str


@dataclass(frozen=True, slots=True)
class CallMessageEvent:
    event_type: ClassVar[CallEventType] = CallEventType.MESSAGE
    call_id: str
    channel_id: str
    message: CallMessage


@dataclass(frozen=True, slots=True)
class QueueTimeoutEvent:
    event_type: ClassVar[CallEventType] = CallEventType.QUEUE_TIMEOUT
    request: CallRequest


CallEvent = Union[
    CallQueuedEvent,
    CallMatchedEvent,
    CallStartedEvent,
    CallEndedEvent,
    ParticipantJoinedEvent,
    ParticipantLeftEvent,
    CallMessageEvent,
    QueueTimeoutEvent,
]

EVENT_PAYLOADS: Dict[CallEventType, type] = {
    CallEventType.QUEUED: CallQueuedEvent,
    CallEventType.MATCHED: CallMatchedEvent,
    CallEventType.STARTED: CallStartedEvent,
    CallEventType.ENDED: CallEndedEvent,
    CallEventType.PARTICIPANT_JOINED: ParticipantJoinedEvent,
    CallEventType.PARTICIPANT_LEFT: ParticipantLeftEvent,
    CallEventType.MESSAGE: CallMessageEvent,
    CallEventType.QUEUE_TIMEOUT: QueueTimeoutEvent,
}

EventHandler = Callable[[CallEvent], Awaitable[None]]


class CallEventBus:
    """Per-process event bus; one instance is shared by the userphone services."""

    def __init__(self) -> None:
        self._handlers: Dict[CallEventType, List[EventHandler]] = {event_type: [] for event_type in CallEventType}

    def subscribe(self, event_type: CallEventType, handler: EventHandler) -> None:
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: CallEventType, handler: EventHandler) -> None:
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)

    def handler_count(self, event_type: CallEventType) -> int:
        return len(self._handlers[event_type])

    async def publish(self, event: CallEvent) -> None:
        """
        Deliver `event` to every handler subscribed to its type, in order.

        Raises:
            TypeError: If `event` is not one of the registered payload classes.
        """
        event_type = getattr(type(event), "event_type", None)
        if event_type is None or not isinstance(event, EVENT_PAYLOADS[event_type]):
            raise TypeError(f"Unsupported call event payload: {type(event).__name__}")

        for handler in list(self._handlers[event_type]):
            try:
                await handler(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "[CALL EVENTS] Handler %s failed for %s: %s",
                    getattr(handler, "__qualname__", repr(handler)), event_type, exc,
                    exc_info=True,
                )
