"""WebSocket push channel (``/ws``) for moderator and viewer clients.

Each connection starts unidentified and identifies itself with its first
``moderator`` or ``viewer`` frame; from then on the server pushes views over
the same socket.  ``ping`` frames are answered with ``pong`` in any state.

Inbound frames that are not valid JSON, lack a ``type``, or carry an unknown
``type`` are logged and ignored; the connection stays open.  A connection
that stays silent for ``max_missed_pings`` consecutive ping intervals is
closed, which runs the normal disconnect path (a moderator's items are
released and redistributed).
"""

from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from modqueue.config import AppConfig
from modqueue.distribution.heartbeat import ConnectionTimedOut, KeepaliveTracker
from modqueue.distribution.messages import (
    MODERATOR_TYPES,
    PING_TYPE,
    VIEWER_TYPES,
    ErrorMessage,
    InboundMessage,
    Pong,
)
from modqueue.distribution.sessions import ClientSession, ModeratorSessionManager, SessionStateError

logger = logging.getLogger(__name__)

router = APIRouter()

#: Close code sent when the keepalive budget runs out ("going away").
_KEEPALIVE_CLOSE_CODE: int = 1001


@router.websocket("/ws")
async def push_channel(websocket: WebSocket) -> None:
    """Serve one client connection until it closes or times out."""
    sessions: ModeratorSessionManager = websocket.app.state.sessions
    config: AppConfig = websocket.app.state.config

    await websocket.accept()
    session = sessions.open(websocket)
    tracker = KeepaliveTracker(
        interval=config.ping_interval_seconds,
        max_missed=config.max_missed_pings,
        label=session.label,
    )
    try:
        while True:
            raw = await tracker.receive(lambda: _receive_frame(websocket))
            await handle_frame(sessions, session, raw, config.moderator_key)
    except WebSocketDisconnect as exc:
        logger.debug("%s closed by client (code=%s)", session.label, exc.code)
    except ConnectionTimedOut:
        try:
            await websocket.close(code=_KEEPALIVE_CLOSE_CODE)
        except RuntimeError:
            logger.debug("%s was already closed", session.label)
    finally:
        await sessions.close(session)


async def handle_frame(
    sessions: ModeratorSessionManager,
    session: ClientSession,
    raw: str,
    moderator_key: str = "",
) -> None:
    """Dispatch one inbound frame.

    Parameters
    ----------
    sessions:
        The session manager.
    session:
        The session the frame arrived on.
    raw:
        The frame's text.
    moderator_key:
        Shared moderator credential; empty disables the check.
    """
    try:
        message = InboundMessage.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning(
            "Ignoring malformed frame from %s: %s", session.label, exc.errors()[0]["msg"]
        )
        return

    try:
        match message.type:
            case kind if kind == PING_TYPE:
                await sessions.broadcaster.send(session, Pong().to_wire())
            case kind if kind in MODERATOR_TYPES:
                if not _key_matches(message.key, moderator_key):
                    logger.warning("Moderator identification rejected for %s", session.label)
                    await sessions.broadcaster.send(
                        session, ErrorMessage(error="unauthorized").to_wire()
                    )
                    return
                await sessions.identify_moderator(session)
            case kind if kind in VIEWER_TYPES:
                await sessions.identify_viewer(session)
            case kind:
                logger.warning("Ignoring unknown message type %r from %s", kind, session.label)
    except SessionStateError as exc:
        logger.warning("Ignoring identification: %s", exc)


async def _receive_frame(websocket: WebSocket) -> str:
    """Return the next text frame, decoding binary frames as UTF-8."""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(code=message.get("code", 1000))
    text = message.get("text")
    if text is None:
        data: bytes = message.get("bytes") or b""
        text = data.decode("utf-8", errors="replace")
    return str(text)


def _key_matches(provided: str | None, expected: str) -> bool:
    if not expected:
        return True
    return provided is not None and secrets.compare_digest(provided.encode(), expected.encode())
