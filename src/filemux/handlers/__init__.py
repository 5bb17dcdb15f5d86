"""
=============================================================================
HANDLERS MODULE
=============================================================================

Server-side operations bound to the served directory.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    REQUEST → HANDLER → REPLY                        │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    Request               RequestHandler           Reply             │
    │   ┌─────────┐           ┌─────────────┐         ┌─────────┐         │
    │   │ G       │           │             │         │ S       │         │
    │   │ a.txt   │ ────────▶ │ Served      │ ──────▶ │ <bytes> │         │
    │   │         │           │ Directory   │         │         │         │
    │   └─────────┘           └─────────────┘         └─────────┘         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

ServedDirectory does the filesystem work and raises OSError on failure.
RequestHandler turns requests into replies and every failure into F.

=============================================================================
"""

from .directory import ServedDirectory
from .operations import RequestHandler

__all__ = [
    "ServedDirectory",
    "RequestHandler",
]
