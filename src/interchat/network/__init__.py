"""
Hub networks: channels in different servers mirroring each other.

- **broadcast_service.py**: Fan-out of new messages plus edit / delete
  propagation through the broadcast mapping.
- **reaction_service.py**: Reaction bookkeeping and the reaction button row.
- **reactions.py**: Pure reaction-map helpers (dedup, cap, ordering).
- **mod_logs.py**: Deleter resolution and the hub moderation log.
"""
