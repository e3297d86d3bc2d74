"""Route modules exposed by the API package."""

from . import admin, ping, queue, ws

__all__ = ["admin", "ping", "queue", "ws"]
