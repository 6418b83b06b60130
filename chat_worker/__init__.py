"""Chat Worker: conversations with a command-line assistant over WebSocket."""

__version__ = "1.0.0"
