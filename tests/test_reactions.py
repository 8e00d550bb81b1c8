"""
Tests for the reaction map helpers.
"""

from interchat.network.reactions import (
    add_reaction,
    normalize,
    remove_reaction,
    sort_reactions,
    toggle_reaction,
)


class TestAddRemove:
    def test_add_new_emoji(self):
        reactions = {}
        assert add_reaction(reactions, "u1", "👍")
        assert reactions == {"👍": ["u1"]}

    def test_add_is_idempotent(self):
        reactions = {"👍": ["u1"]}
        assert not add_reaction(reactions, "u1", "👍")
        assert reactions == {"👍": ["u1"]}

    def test_reactors_keep_order(self):
        reactions = {}
        for user in ("u3", "u1", "u2"):
            add_reaction(reactions, user, "🔥")
        assert reactions["🔥"] == ["u3", "u1", "u2"]

    def test_remove_drops_empty_emoji(self):
        reactions = {"👍": ["u1"], "🔥": ["u1", "u2"]}
        assert remove_reaction(reactions, "u1", "👍")
        assert "👍" not in reactions
        assert remove_reaction(reactions, "u1", "🔥")
        assert reactions == {"🔥": ["u2"]}

    def test_remove_missing_is_noop(self):
        reactions = {"👍": ["u1"]}
        assert not remove_reaction(reactions, "u2", "👍")
        assert not remove_reaction(reactions, "u1", "🔥")
        assert reactions == {"👍": ["u1"]}


class TestEmojiCap:
    def test_new_emoji_refused_when_full(self):
        reactions = {str(i): ["u0"] for i in range(25)}
        assert not add_reaction(reactions, "u1", "new")
        assert "new" not in reactions
        assert len(reactions) == 25

    def test_existing_emoji_still_accepts_reactors(self):
        reactions = {str(i): ["u0"] for i in range(25)}
        assert add_reaction(reactions, "u1", "3")
        assert reactions["3"] == ["u0", "u1"]

    def test_custom_cap(self):
        reactions = {"a": ["u"]}
        assert not add_reaction(reactions, "u", "b", max_emojis=1)


class TestToggle:
    def test_toggle_adds_then_removes(self):
        reactions = {}
        assert toggle_reaction(reactions, "u1", "👍") is True
        assert toggle_reaction(reactions, "u1", "👍") is False
        assert reactions == {}

    def test_toggle_refused_returns_none(self):
        reactions = {"a": ["u"]}
        assert toggle_reaction(reactions, "u2", "b", max_emojis=1) is None
        assert reactions == {"a": ["u"]}


class TestSortAndNormalize:
    def test_sort_by_count_descending_stable(self):
        reactions = {"a": ["u1"], "b": ["u1", "u2"], "c": ["u3"], "d": []}
        ordered = sort_reactions(reactions)
        assert [emoji for emoji, _ in ordered] == ["b", "a", "c"]

    def test_normalize_removes_duplicates_and_empty(self):
        assert normalize({"a": ["1", "1", "2"], "b": []}) == {"a": ["1", "2"]}

    def test_normalize_stringifies_ids(self):
        assert normalize({"a": [1, "1", 2]}) == {"a": ["1", "2"]}

    def test_normalize_returns_copy(self):
        source = {"a": ["1"]}
        cleaned = normalize(source)
        cleaned["a"].append("2")
        assert source == {"a": ["1"]}
