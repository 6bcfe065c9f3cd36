# keygate/bot/__init__.py
"""
Discord front-end.
- client: KeyBot (commands.Bot subclass) and the standalone entry point
- cog: slash commands and the !panel / !getkey text commands
- interactions: redeem prompt, two-phase HWID reset, panel buttons
- privileges: guild roles -> privilege tiers
- presenters: engine results -> chat text
"""
