"""HTTP and WebSocket surface for modqueue.

Exposes submission intake, moderation decisions, the public collection and
the ``/ws`` push channel used by moderator and viewer clients.
"""

__all__: list[str] = []
