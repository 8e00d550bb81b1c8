"""
Discord-facing rendering for InterChat.

- **call_embeds.py**: Userphone notification embeds and their button rows.
- **hub_message.py**: Compact and embed renderings of relayed hub messages.
- **reaction_buttons.py**: The reaction button row patched into relayed copies.
- **console.py**: Interactive developer console (status, queue, shutdown)
  built on prompt_toolkit.
"""
