"""
Discord bot layer for InterChat.

This package connects the userphone and hub network services to Discord's
event system:

- **cogs/events_listener.py**: Bot lifecycle (on_ready), presence, starting the
  userphone background sweeps, and application command error handling

- **cogs/userphone_cmds.py**: ``/call``, ``/hangup`` and ``/skip``, the buttons on
  call notifications, and relaying of messages typed during a call

- **cogs/network_listener.py**: Hub fan-out of new messages, edit and delete
  propagation from raw events, and reaction syncing across copies
"""
