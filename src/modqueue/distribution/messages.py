"""Pydantic models for the WebSocket push protocol.

Every JSON frame exchanged with a moderator or viewer client is defined here
as a Pydantic v2 ``BaseModel``.  Field names follow the client wire format
(camelCase) through aliases; Python code uses snake_case.

Server → client
---------------
- :class:`AssignedId`      ``{"type": "assignedId", "id": "mod_..."}``
- :class:`ModeratorView`   ``{"pendingImages": [{"url": ..., "ownerId": ...}]}``
- :class:`PublicCollection` ``{"images": [url, ...]}``
- :class:`ItemDeleted`     ``{"type": "itemDeleted", "id": ...}``
- :class:`Pong`            ``{"type": "pong"}``
- :class:`ErrorMessage`    ``{"type": "error", "error": ...}``

Client → server
---------------
- :class:`InboundMessage`  ``{"type": "moderator" | "viewer" | "ping", ...}``
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

#: Inbound ``type`` values and the legacy names older clients still send.
MODERATOR_TYPES: frozenset[str] = frozenset({"moderator", "admin"})
VIEWER_TYPES: frozenset[str] = frozenset({"viewer", "client"})
PING_TYPE: str = "ping"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-ready dict using wire (alias) field names."""
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Client → server
# ---------------------------------------------------------------------------


class InboundMessage(BaseModel):
    """A frame received from a client.

    Attributes
    ----------
    type:
        Message kind.  ``"moderator"``/``"viewer"`` identify the connection
        (``"admin"``/``"client"`` are accepted as legacy names); ``"ping"``
        is a keepalive.
    key:
        Shared moderator credential, only meaningful on moderator
        identification.
    """

    type: str = Field(min_length=1)
    key: str | None = None

    model_config = ConfigDict(extra="allow")


# ---------------------------------------------------------------------------
# Server → client
# ---------------------------------------------------------------------------


class AssignedId(_WireModel):
    """Tells a moderator client the id it was registered under."""

    type: Literal["assignedId"] = "assignedId"
    id: str


class PendingEntry(_WireModel):
    """One pending item inside a :class:`ModeratorView`."""

    url: str
    owner_id: str | None = Field(default=None, alias="ownerId")


class ModeratorView(_WireModel):
    """The pending items currently owned by the receiving moderator."""

    pending_images: list[PendingEntry] = Field(default_factory=list, alias="pendingImages")


class PublicCollection(_WireModel):
    """The full approved collection, as image locators."""

    images: list[str] = Field(default_factory=list)


class ItemDeleted(_WireModel):
    """Out-of-band notice that an approved item was deleted."""

    type: Literal["itemDeleted"] = "itemDeleted"
    id: str


class Pong(_WireModel):
    """Keepalive reply."""

    type: Literal["pong"] = "pong"


class ErrorMessage(_WireModel):
    """Error notice for a single client; the connection stays open."""

    type: Literal["error"] = "error"
    error: str
