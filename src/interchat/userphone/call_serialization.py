"""
JSON (de)serialisation of :class:`ActiveCall` for the cache layer.

Contract: ``participants[].users`` is written as a sorted JSON array and
read back into a ``set``; every other field maps one to one. Deserialising
a serialised call yields an equal object.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from interchat.datatypes.call_datatypes import ActiveCall, CallMessage, CallParticipant, CallStatus


def participant_to_dict(participant: CallParticipant) -> Dict[str, Any]:
    return {
        "channel_id": participant.channel_id,
        "guild_id": participant.guild_id,
        "webhook_url": participant.webhook_url,
        "users": sorted(participant.users),
    }


def participant_from_dict(data: Dict[str, Any]) -> CallParticipant:
    return CallParticipant(
        channel_id=str(data["channel_id"]),
        guild_id=str(data["guild_id"]),
        webhook_url=str(data["webhook_url"]),
        users={str(u) for u in data.get("users") or ()},
    )


def message_to_dict(message: CallMessage) -> Dict[str, Any]:
    return {
        "author_id": message.author_id,
        "author_username": message.author_username,
        "content": message.content,
        "timestamp": message.timestamp,
        "attachment_url": message.attachment_url,
    }


def message_from_dict(data: Dict[str, Any]) -> CallMessage:
    return CallMessage(
        author_id=str(data["author_id"]),
        author_username=str(data["author_username"]),
        content=str(data.get("content") or ""),
        timestamp=int(data["timestamp"]),
        attachment_url=data.get("attachment_url"),
    )


def call_to_dict(call: ActiveCall) -> Dict[str, Any]:
    return {
        "id": call.id,
        "status": call.status.value,
        "created_at": call.created_at,
        "ended_at": call.ended_at,
        "participants": [participant_to_dict(p) for p in call.participants],
        "messages": [message_to_dict(m) for m in call.messages],
    }


def call_from_dict(data: Dict[str, Any]) -> ActiveCall:
    ended_at = data.get("ended_at")
    return ActiveCall(
        id=str(data["id"]),
        participants=[participant_from_dict(p) for p in data.get("participants") or ()],
        created_at=int(data["created_at"]),
        status=CallStatus(data.get("status", CallStatus.ONGOING.value)),
        messages=[message_from_dict(m) for m in data.get("messages") or ()],
        ended_at=int(ended_at) if ended_at is not None else None,
    )


def serialize_call(call: ActiveCall) -> str:
    return json.dumps(call_to_dict(call), separators=(",", ":"))


def deserialize_call(raw: str) -> ActiveCall:
    """
    Raises:
        ValueError: If `raw` is not a serialised call (includes JSON errors).
    """
    try:
        data = json.loads(raw)
        return call_from_dict(data)
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Malformed call payload: {exc}") from exc
