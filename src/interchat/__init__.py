"""
InterChat
=========

A Discord bot that links channels across servers: random one-to-one calls
between two servers (the userphone) and persistent hubs whose channels
mirror each other's messages, edits, deletions and reactions.
"""
