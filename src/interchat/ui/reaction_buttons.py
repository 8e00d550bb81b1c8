"""
Reaction buttons shown under relayed hub messages.

The row holds the most used emoji (label = reactor count) and, when more
emoji exist, a ``+N`` button. Rows are produced as raw component dicts
because they are patched into messages fetched over the webhook API.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import discord

from interchat.datatypes.network_datatypes import ReactionMap
from interchat.network.reactions import sort_reactions

REACTION_PREFIX = "reaction_"
VIEW_ALL_SUFFIX = "view_all"
MAX_ACTION_ROWS = 5

_BUTTON_TYPE = discord.ComponentType.button.value
_SECONDARY_STYLE = discord.ButtonStyle.secondary.value


def reaction_custom_id(suffix: str) -> str:
    return f"{REACTION_PREFIX}:{suffix}"


def parse_reaction_custom_id(custom_id: str) -> Optional[str]:
    """Return the emoji (or ``view_all``) encoded in a reaction button id."""
    prefix, sep, suffix = (custom_id or "").partition(":")
    if prefix != REACTION_PREFIX or not sep or not suffix:
        return None
    return suffix


def build_reaction_row(reactions: ReactionMap) -> Optional[Dict[str, Any]]:
    """Action row for `reactions`, or None when nothing has been reacted."""
    ordered = sort_reactions(reactions)
    if not ordered:
        return None

    emoji, users = ordered[0]
    buttons = [
        discord.ui.Button(
            style=discord.ButtonStyle.secondary,
            label=str(len(users)),
            emoji=emoji,
            custom_id=reaction_custom_id(emoji),
        )
    ]
    if len(ordered) > 1:
        buttons.append(
            discord.ui.Button(
                style=discord.ButtonStyle.secondary,
                label=f"+{len(ordered) - 1}",
                custom_id=reaction_custom_id(VIEW_ALL_SUFFIX),
            )
        )
    return {"type": discord.ComponentType.action_row.value, "components": [b.to_component_dict() for b in buttons]}


def is_reaction_button(component: Dict[str, Any]) -> bool:
    if component.get("type") != _BUTTON_TYPE or component.get("style") != _SECONDARY_STYLE:
        return False
    return parse_reaction_custom_id(str(component.get("custom_id") or "")) is not None


def replace_reaction_row(components: List[Dict[str, Any]], reaction_row: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop every reaction button from `components` and append `reaction_row`.

    Rows left empty are removed. Other rows come first and are cut so the
    result never exceeds Discord's five action rows.
    """
    rows: List[Dict[str, Any]] = []
    for row in components or []:
        children = [c for c in row.get("components") or [] if not is_reaction_button(c)]
        if children:
            rows.append({**row, "components": children})

    if reaction_row is None:
        return rows[:MAX_ACTION_ROWS]
    return rows[: MAX_ACTION_ROWS - 1] + [reaction_row]
