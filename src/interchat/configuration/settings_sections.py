"""Typed accessors for the sections of ``app_config.yml``.

Each helper wraps the raw mapping of one YAML section and exposes the fields
the runtime reads as properties with defaults, so a missing or partial
section never breaks startup.
"""

from pathlib import Path
from typing import Any, Dict


class _Section:
    """Base wrapper around one configuration mapping."""

    def __init__(self, data: Dict[str, Any] | None = None) -> None:
        self.data: Dict[str, Any] = data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for `key` or `default` if missing."""
        return self.data.get(key, default)

    def as_dict(self) -> Dict[str, Any]:
        """Return the underlying mapping."""
        return self.data


class CallingSettings(_Section):
    """Userphone tuning: cache lifetimes, matching cadence and queue limits."""

    @property
    def webhook_ttl_secs(self) -> int:
        return int(self.data.get("webhook_ttl_secs", 24 * 60 * 60))

    @property
    def call_ttl_secs(self) -> int:
        return int(self.data.get("call_ttl_secs", 60 * 60))

    @property
    def recent_match_ttl_secs(self) -> int:
        return int(self.data.get("recent_match_ttl_secs", 24 * 60 * 60))

    @property
    def queue_timeout_secs(self) -> float:
        return float(self.data.get("queue_timeout_secs", 30 * 60))

    @property
    def background_interval_secs(self) -> float:
        return float(self.data.get("background_interval_secs", 1.0))

    @property
    def max_queue_size(self) -> int:
        return int(self.data.get("max_queue_size", 1000))

    @property
    def max_cached_messages(self) -> int:
        return int(self.data.get("max_cached_messages", 100))

    @property
    def notification_rate_limit(self) -> int:
        return int(self.data.get("notification_rate_limit", 5))

    @property
    def notification_window_secs(self) -> int:
        return int(self.data.get("notification_window_secs", 60))

    @property
    def webhook_name(self) -> str:
        return str(self.data.get("webhook_name") or "InterChat Calls")

    @property
    def cluster_id(self) -> int | None:
        value = self.data.get("cluster_id")
        return int(value) if value is not None else None


class NetworkSettings(_Section):
    """Hub broadcast and reaction settings."""

    @property
    def reaction_cooldown_secs(self) -> int:
        return int(self.data.get("reaction_cooldown_secs", 3))

    @property
    def max_reaction_emojis(self) -> int:
        return int(self.data.get("max_reaction_emojis", 25))

    @property
    def edit_lock_ttl_secs(self) -> int:
        return int(self.data.get("edit_lock_ttl_secs", 300))

    @property
    def delete_audit_window_secs(self) -> float:
        return float(self.data.get("delete_audit_window_secs", 5.0))


class StorageSettings(_Section):
    """Where durable and cached state lives."""

    @property
    def database_path(self) -> Path:
        return Path(str(self.data.get("database_path") or "./data/interchat.db")).resolve()

    @property
    def cache_backend(self) -> str:
        return str(self.data.get("cache_backend") or "memory").lower()

    @property
    def redis_url(self) -> str:
        return str(self.data.get("redis_url") or "redis://localhost:6379/0")

    @property
    def call_retention_minutes(self) -> int:
        return int(self.data.get("call_retention_minutes", 30))

    @property
    def cleanup_interval_secs(self) -> float:
        return float(self.data.get("cleanup_interval_secs", 300.0))
