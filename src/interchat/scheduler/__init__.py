"""
Background jobs that share the bot's event loop.

- **interval_task.py**: ``IntervalTask``, a reusable periodic runner with
  start / shutdown lifecycle. Drives the matching sweep.
- **call_cleanup_scheduler.py**: Periodic retention sweep for ended calls;
  reported calls are kept, ongoing calls are never purged.
"""
