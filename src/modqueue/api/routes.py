"""FastAPI router for the modqueue HTTP API.

Endpoints:

- ``POST /submissions``       : submit an image + caption for moderation
- ``POST /moderation/approve``: promote a pending item to the public collection
- ``POST /moderation/deny``   : discard a pending item
- ``POST /moderation/delete`` : remove an approved item from the public collection
- ``GET /images``             : the approved collection
- ``GET /random-image``       : one random approved item
- ``GET /status``             : distribution statistics
- ``GET /health``             : liveness check

Dependencies are read from ``request.app.state`` (set by
:func:`modqueue.api.main.create_app`) and injected via FastAPI ``Depends``.
The moderation endpoints require the shared moderator credential in the
``X-Moderator-Key`` header whenever one is configured.
"""

from __future__ import annotations

import importlib.metadata
import logging
import random
import re
import secrets
from collections.abc import Awaitable, Callable
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Request, UploadFile

from modqueue.api.models import (
    HealthResponse,
    PublicCollectionResponse,
    PublicImage,
    ResolutionRequest,
    ResolutionResponse,
    StatusResponse,
    SubmissionResponse,
)
from modqueue.config import AppConfig
from modqueue.distribution.handlers import ResolutionHandler, SubmissionIntake
from modqueue.distribution.registry import DuplicateItemError, UnknownItemError
from modqueue.distribution.sessions import ModeratorSessionManager
from modqueue.store.artifacts import ArtifactNotFoundError, ArtifactStore, item_id_from_locator
from modqueue.store.retry import StorageError

logger = logging.getLogger(__name__)

router = APIRouter()

#: Markup removed from captions before storage.
_TAG_PATTERN: re.Pattern[str] = re.compile(r"<[^>]*>?")


# ---------------------------------------------------------------------------
# Dependency accessor helpers
# ---------------------------------------------------------------------------


def _get_config(request: Request) -> AppConfig:
    return request.app.state.config  # type: ignore[no-any-return]


def _get_store(request: Request) -> ArtifactStore:
    return request.app.state.store  # type: ignore[no-any-return]


def _get_sessions(request: Request) -> ModeratorSessionManager:
    return request.app.state.sessions  # type: ignore[no-any-return]


def _get_intake(request: Request) -> SubmissionIntake:
    return request.app.state.intake  # type: ignore[no-any-return]


def _get_resolver(request: Request) -> ResolutionHandler:
    return request.app.state.resolver  # type: ignore[no-any-return]


def _require_moderator(
    config: Annotated[AppConfig, Depends(_get_config)],
    x_moderator_key: Annotated[str | None, Header()] = None,
) -> None:
    """Reject the request unless it carries the shared moderator credential.

    Raises
    ------
    HTTPException
        403 when a credential is configured and the header is missing or wrong.
    """
    expected = config.moderator_key
    if not expected:
        return
    if x_moderator_key is None or not secrets.compare_digest(
        x_moderator_key.encode(), expected.encode()
    ):
        logger.warning("Moderation request rejected: bad or missing moderator key")
        raise HTTPException(status_code=403, detail="Not authenticated as a moderator.")


# ---------------------------------------------------------------------------
# POST /submissions
# ---------------------------------------------------------------------------


@router.post(
    "/submissions",
    response_model=SubmissionResponse,
    status_code=201,
    summary="Submit an image and caption for moderation",
    tags=["intake"],
)
async def post_submission(
    config: Annotated[AppConfig, Depends(_get_config)],
    intake: Annotated[SubmissionIntake, Depends(_get_intake)],
    image: Annotated[UploadFile | None, File()] = None,
    caption: Annotated[str, Form()] = "",
) -> SubmissionResponse:
    """Store a submission as pending and hand it to the least-loaded moderator.

    Raises
    ------
    HTTPException
        400 when the image or caption is missing or the caption is too long,
        413 when the image exceeds the size limit, 415 for non-image uploads,
        409 when the stored id is already pending, 502 when the artifact
        store rejects the write.
    """
    if image is None:
        logger.warning("Upload attempt without image file.")
        raise HTTPException(status_code=400, detail="No file uploaded.")
    content_type = image.content_type or ""
    if not content_type.startswith("image/"):
        logger.warning("Upload attempt with content type %r.", content_type)
        raise HTTPException(status_code=415, detail="Only image files are allowed.")
    if not caption.strip():
        logger.warning("Upload attempt without caption.")
        raise HTTPException(status_code=400, detail="No caption provided.")
    if len(caption) > config.max_caption_length:
        logger.warning("Upload attempt with excessively long caption.")
        raise HTTPException(status_code=400, detail="Caption too long.")

    data = await image.read(config.max_upload_bytes + 1)
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    if len(data) > config.max_upload_bytes:
        raise HTTPException(status_code=413, detail="Image too large.")

    try:
        item_id = await intake.submit(data, _TAG_PATTERN.sub("", caption), content_type)
    except StorageError as exc:
        logger.error("Error uploading image: %s", exc)
        raise HTTPException(status_code=502, detail="Failed to store submission.") from exc
    except DuplicateItemError as exc:
        raise HTTPException(status_code=409, detail="Submission already pending.") from exc
    return SubmissionResponse(item_id=item_id)


# ---------------------------------------------------------------------------
# POST /moderation/*
# ---------------------------------------------------------------------------


@router.post(
    "/moderation/approve",
    response_model=ResolutionResponse,
    dependencies=[Depends(_require_moderator)],
    summary="Approve a pending item",
    tags=["moderation"],
)
async def approve_item(
    body: ResolutionRequest,
    resolver: Annotated[ResolutionHandler, Depends(_get_resolver)],
) -> ResolutionResponse:
    """Promote a pending item; on storage failure it stays pending for a retry."""
    item_id = item_id_from_locator(body.item_id)
    await _run_resolution(resolver.approve, item_id, "approving")
    return ResolutionResponse(item_id=item_id, status="approved")


@router.post(
    "/moderation/deny",
    response_model=ResolutionResponse,
    dependencies=[Depends(_require_moderator)],
    summary="Deny a pending item",
    tags=["moderation"],
)
async def deny_item(
    body: ResolutionRequest,
    resolver: Annotated[ResolutionHandler, Depends(_get_resolver)],
) -> ResolutionResponse:
    """Discard a pending item; on storage failure it stays pending for a retry."""
    item_id = item_id_from_locator(body.item_id)
    await _run_resolution(resolver.deny, item_id, "denying")
    return ResolutionResponse(item_id=item_id, status="denied")


@router.post(
    "/moderation/delete",
    response_model=ResolutionResponse,
    dependencies=[Depends(_require_moderator)],
    summary="Delete an approved item",
    tags=["moderation"],
)
async def delete_item(
    body: ResolutionRequest,
    resolver: Annotated[ResolutionHandler, Depends(_get_resolver)],
) -> ResolutionResponse:
    """Remove an approved item and notify connected moderators and viewers."""
    item_id = item_id_from_locator(body.item_id)
    await _run_resolution(resolver.delete_public, item_id, "deleting")
    return ResolutionResponse(item_id=item_id, status="deleted")


# ---------------------------------------------------------------------------
# Public collection
# ---------------------------------------------------------------------------


@router.get(
    "/images",
    response_model=PublicCollectionResponse,
    summary="List approved images",
    tags=["public"],
)
async def get_images(
    store: Annotated[ArtifactStore, Depends(_get_store)],
) -> PublicCollectionResponse:
    """Return every approved image with its caption locator, oldest first."""
    item_ids = await _list_public(store)
    return PublicCollectionResponse(images=[_public_image(store, item_id) for item_id in item_ids])


@router.get(
    "/random-image",
    response_model=PublicImage,
    summary="Fetch one random approved image",
    tags=["public"],
)
async def get_random_image(
    store: Annotated[ArtifactStore, Depends(_get_store)],
) -> PublicImage:
    """Return a random approved image, or 404 when the collection is empty."""
    item_ids = await _list_public(store)
    if not item_ids:
        raise HTTPException(status_code=404, detail="No images found.")
    return _public_image(store, random.choice(item_ids))


# ---------------------------------------------------------------------------
# GET /status, GET /health
# ---------------------------------------------------------------------------


@router.get(
    "/status",
    response_model=StatusResponse,
    summary="Distribution statistics",
    tags=["ops"],
)
async def get_status(
    sessions: Annotated[ModeratorSessionManager, Depends(_get_sessions)],
) -> StatusResponse:
    """Return queue size, connection counts and per-moderator load."""
    registry = sessions.registry
    return StatusResponse(
        pending=len(registry),
        unclaimed=len(registry.unclaimed_items()),
        moderators=len(sessions.moderator_ids()),
        viewers=len(sessions.viewer_sessions()),
        loads=registry.load_counts(sessions.moderator_ids()),
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    tags=["ops"],
)
async def get_health() -> HealthResponse:
    """Return a liveness check response.  Always HTTP 200."""
    return HealthResponse(version=_get_package_version())


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


async def _run_resolution(
    action: Callable[[str], Awaitable[None]],
    item_id: str,
    verb: str,
) -> None:
    """Run a resolution coroutine and map its failures onto HTTP errors.

    Raises
    ------
    HTTPException
        404 when the item is unknown, 502 when the artifact store fails.
    """
    try:
        await action(item_id)
    except UnknownItemError:
        raise HTTPException(status_code=404, detail=f"Item '{item_id}' is not pending.") from None
    except ArtifactNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StorageError as exc:
        logger.error("Error %s image %s: %s", verb, item_id, exc)
        raise HTTPException(status_code=502, detail=f"Error {verb} image: {exc}") from exc


async def _list_public(store: ArtifactStore) -> list[str]:
    try:
        return await store.list_public()
    except StorageError as exc:
        logger.error("Error fetching approved images: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to fetch approved images.") from exc


def _public_image(store: ArtifactStore, item_id: str) -> PublicImage:
    return PublicImage(image=store.public_url(item_id), caption=store.caption_url(item_id))


def _get_package_version() -> str:
    """Return the installed package version, or ``"unknown"`` when not installed."""
    try:
        return importlib.metadata.version("modqueue")
    except importlib.metadata.PackageNotFoundError:
        return "unknown"
