"""Route-based websocket client, in-process channel pool and task result collection."""

__version__ = "0.1.0"
__all__ = ["channels", "wsclient", "tasks"]