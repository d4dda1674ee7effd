# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Gengar Bark Slack bot.

Lets Slack users register the MCP servers their AI assistant may call,
through an App Home tab, modals and slash commands.
"""

__version__ = "1.0.0"
