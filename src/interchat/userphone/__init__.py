"""
Userphone: random one-to-one calls between channels of different servers.

- **queue_manager.py**: Priority-ordered wait queue with atomic per-channel claims.
- **matching_engine.py**: Background sweep pairing queued channels into calls.
- **call_cache_manager.py**: Active-call index, webhook cache, recent matches.
- **call_manager.py**: Command entry points (call, hangup, skip, relay).
- **notification_service.py**: Rate-limited embeds sent through webhooks.
- **call_events.py**: Typed event bus connecting the services.
- **calling_library.py**: Builds and starts all of the above.
"""
