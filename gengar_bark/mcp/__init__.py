# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
MCP server configuration subsystem.

Stores per-user MCP server connection profiles with encrypted auth tokens,
SSRF-checked URLs and live connectivity verification.
"""
