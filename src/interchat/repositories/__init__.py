"""
Table-level data access used by the ``Database`` coordinator.

- **call_repo.py**: calls, participants, speakers, call messages, reports and
  the retention sweep.
- **connection_repo.py**: hubs and channel connections.
- **message_repo.py**: relayed originals and the broadcast mapping.
- **mod_log_repo.py**: hub moderation log.
"""
