"""
Pure helpers for the per-message reaction map.

A reaction map is ``{emoji: [user_id, ...]}``. Reactor lists never contain
the same user twice and empty lists are removed. A message holds at most
``MAX_REACTION_EMOJIS`` distinct emoji: a new emoji past that cap is
rejected, existing emoji still accept new reactors.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from interchat.datatypes.network_datatypes import ReactionMap

MAX_REACTION_EMOJIS = 25


def add_reaction(reactions: ReactionMap, user_id: str, emoji: str, max_emojis: int = MAX_REACTION_EMOJIS) -> bool:
    """Add `user_id` under `emoji`. Returns True if the map changed."""
    reactors = reactions.get(emoji)
    if reactors is None:
        if len(reactions) >= max_emojis:
            return False
        reactors = reactions[emoji] = []
    if user_id in reactors:
        return False
    reactors.append(user_id)
    return True


def remove_reaction(reactions: ReactionMap, user_id: str, emoji: str) -> bool:
    """Remove `user_id` from `emoji`. Returns True if the map changed."""
    reactors = reactions.get(emoji)
    if not reactors or user_id not in reactors:
        return False
    reactors.remove(user_id)
    if not reactors:
        del reactions[emoji]
    return True


def toggle_reaction(reactions: ReactionMap, user_id: str, emoji: str, max_emojis: int = MAX_REACTION_EMOJIS) -> Optional[bool]:
    """
    Flip `user_id`'s `emoji` reaction.

    Returns:
        True if the reaction was added, False if it was removed, None if a
        new emoji was refused because the map is full.
    """
    if user_id in reactions.get(emoji, ()):
        remove_reaction(reactions, user_id, emoji)
        return False
    return True if add_reaction(reactions, user_id, emoji, max_emojis) else None


def sort_reactions(reactions: ReactionMap) -> List[Tuple[str, List[str]]]:
    """Non-empty reactions, most reactors first; ties keep insertion order."""
    return sorted(
        ((emoji, users) for emoji, users in reactions.items() if users),
        key=lambda item: len(item[1]),
        reverse=True,
    )


def normalize(reactions: ReactionMap) -> ReactionMap:
    """Copy of `reactions` with duplicates and empty lists removed."""
    cleaned: ReactionMap = {}
    for emoji, users in reactions.items():
        unique = list(dict.fromkeys(str(u) for u in users))
        if unique:
            cleaned[emoji] = unique
    return cleaned
