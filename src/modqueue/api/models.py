"""Pydantic models for the modqueue HTTP API.

All request and response bodies are defined here as Pydantic v2 ``BaseModel``
subclasses.  No raw dicts are used at API boundaries.  WebSocket frames live
in :mod:`modqueue.distribution.messages`.

Models
------
- :class:`SubmissionResponse` : ``POST /submissions`` response body
- :class:`ResolutionRequest`  : ``POST /moderation/{approve,deny,delete}`` body
- :class:`ResolutionResponse` : ``POST /moderation/*`` response body
- :class:`PublicImage`        : one approved image/caption pair
- :class:`PublicCollectionResponse`: ``GET /images`` response body
- :class:`StatusResponse`     : ``GET /status`` response body
- :class:`HealthResponse`     : ``GET /health`` response body
"""

from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, Field


class SubmissionResponse(BaseModel):
    """Response body for ``POST /submissions``.

    Attributes
    ----------
    item_id:
        Identifier of the newly queued item.
    status:
        Always ``"pending"``; the item awaits a moderator decision.
    """

    item_id: str
    status: Literal["pending"] = "pending"


class ResolutionRequest(BaseModel):
    """Request body for the moderation endpoints.

    ``item_id`` may be a bare id or the full locator a moderator received in
    its view.  ``imagePath`` is accepted as an alternative key for older
    clients.
    """

    item_id: str = Field(min_length=1, validation_alias=AliasChoices("item_id", "imagePath"))


class ResolutionResponse(BaseModel):
    """Response body for the moderation endpoints."""

    item_id: str
    status: Literal["approved", "denied", "deleted"]


class PublicImage(BaseModel):
    """An approved image and the locator of its caption."""

    image: str
    caption: str


class PublicCollectionResponse(BaseModel):
    """Response body for ``GET /images``."""

    images: list[PublicImage] = Field(default_factory=list)


class StatusResponse(BaseModel):
    """Response body for ``GET /status``.

    Attributes
    ----------
    pending:
        Items awaiting a decision.
    unclaimed:
        Pending items with no owner (non-zero only while no moderator is
        connected).
    moderators:
        Connected moderator sessions.
    viewers:
        Connected viewer sessions.
    loads:
        Owned-item count per connected moderator id.
    """

    pending: int = Field(ge=0)
    unclaimed: int = Field(ge=0)
    moderators: int = Field(ge=0)
    viewers: int = Field(ge=0)
    loads: dict[str, int] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Response body for ``GET /health``."""

    status: Literal["ok"] = "ok"
    version: str
