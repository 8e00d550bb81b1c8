"""
Wiring for the userphone subsystem.

``CallingLibrary`` builds every userphone service once from infrastructure
handed in by ``main`` (cache store, database, webhook gateway, settings)
and owns their background lifecycle. Nothing here creates connections of
its own.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from interchat.cache.cache_store import CacheStore
from interchat.configuration.settings_sections import CallingSettings, StorageSettings
from interchat.database.database import Database
from interchat.gateway.webhook_gateway import WebhookGateway
from interchat.scheduler.call_cleanup_scheduler import CallCleanupScheduler
from interchat.userphone.call_cache_manager import CallCacheManager
from interchat.userphone.call_events import CallEventBus
from interchat.userphone.call_manager import CallManager
from interchat.userphone.matching_engine import MatchingEngine
from interchat.userphone.notification_service import NotificationService
from interchat.userphone.queue_manager import QueueManager
from interchat.util.logger import get_logger

logger = get_logger("calling_library")


class CallingLibrary:
    """Container for the userphone services.

    Attributes:
        events: Shared call event bus.
        cache: Call cache manager (active calls, webhooks, recent matches).
        queue: Queue manager.
        matching: Matching engine with its background sweep.
        notifications: Notification service.
        calls: Call manager; the entry point for commands.
    """

    def __init__(
        self,
        store: CacheStore,
        database: Database,
        gateway: WebhookGateway,
        settings: CallingSettings,
        storage_settings: Optional[StorageSettings] = None,
    ) -> None:
        self.events = CallEventBus()
        self.cache = CallCacheManager(store, settings)
        self.queue = QueueManager(store, self.cache, self.events, settings)
        self.matching = MatchingEngine(self.queue, self.cache, database.calls, self.events, settings)
        self.notifications = NotificationService(gateway, self.cache, store, settings)
        self.calls = CallManager(
            self.queue,
            self.matching,
            self.cache,
            database.calls,
            self.notifications,
            gateway,
            self.events,
            settings,
        )
        self.cleanup = CallCleanupScheduler(database.calls, storage_settings or StorageSettings())
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started

    def start(self) -> None:
        """Start the matching sweep and the retention sweep. Must run inside the event loop."""
        if self._started:
            return
        self.matching.start()
        self.cleanup.start()
        self._started = True
        logger.info("[CALLING LIBRARY] Userphone services started")

    async def shutdown(self) -> None:
        if not self._started:
            return
        await self.matching.stop()
        await self.cleanup.shutdown()
        self._started = False
        logger.info("[CALLING LIBRARY] Userphone services stopped")

    async def get_stats(self) -> Dict[str, Any]:
        """Queue, matching and cache statistics in one mapping."""
        return {
            "queue": await self.queue.get_queue_stats(),
            "matching": await self.matching.get_matching_stats(),
            "cache": await self.cache.get_cache_stats(),
        }
