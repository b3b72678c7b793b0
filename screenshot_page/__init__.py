"""Screenshot Page MCP server - authenticated screenshots with persistent site cookies."""

from __future__ import annotations

__version__ = '0.1.0'
