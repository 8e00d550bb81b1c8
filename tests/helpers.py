"""Builders shared by the userphone and network tests."""

from interchat.datatypes.call_datatypes import ActiveCall, CallParticipant, CallRequest
from interchat.util.format_utils import now_ms


def make_request(channel_id="c1", guild_id="g1", initiator_id="u1", timestamp=None, priority=0, request_id=None):
    return CallRequest(
        id=request_id or f"req_{channel_id}",
        channel_id=channel_id,
        guild_id=guild_id,
        initiator_id=initiator_id,
        webhook_url=f"https://discord.com/api/webhooks/{channel_id}/token",
        timestamp=timestamp if timestamp is not None else now_ms(),
        priority=priority,
    )


def make_call(call_id="call1", a=("c1", "g1", "u1"), b=("c2", "g2", "u2"), created_at=None):
    participants = [
        CallParticipant(channel_id=ch, guild_id=g, webhook_url=f"https://discord.com/api/webhooks/{ch}/token", users={u})
        for ch, g, u in (a, b)
    ]
    return ActiveCall(id=call_id, participants=participants, created_at=created_at if created_at is not None else now_ms())
