"""API routers."""

from . import conversations, websocket

__all__ = ["conversations", "websocket"]
