"""
Web module - aiohttp routes in front of the audit orchestrator.
"""

from .app import client_key, create_app


__all__ = [
    "create_app",
    "client_key",
]
