"""
Cogs package for InterChat.
Each module defines a cog class and a setup function to register it with the bot.
Services are handed to ``setup`` explicitly; the cogs are loaded in main.py.
"""
