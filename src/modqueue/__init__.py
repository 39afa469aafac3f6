"""modqueue: Moderation Queue Distributor.

This package provides the server-side components for the moderation queue:
the in-memory pending registry, least-loaded assignment of pending items to
connected moderators, the WebSocket push protocol, and a local artifact store.
"""

__version__ = "0.1.0"
__all__: list[str] = []
