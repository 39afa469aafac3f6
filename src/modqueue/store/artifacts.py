"""Durable artifact storage for submitted image + caption pairs.

The distribution engine depends only on the :class:`ArtifactStore` protocol.
:class:`LocalArtifactStore` is the filesystem-backed implementation used by
the application: a ``pending/`` directory holds submissions awaiting a
decision and a ``public/`` directory holds the approved collection.

Layout
------
::

    <root>/pending/image_1718000000000.jpg
    <root>/pending/image_1718000000000.txt     caption
    <root>/public/image_1717999999999.png
    <root>/public/image_1717999999999.txt

Design notes
------------
- An item's id is its image file name (e.g. ``"image_1718000000000.jpg"``);
  the caption lives beside it under the same stem with a ``.txt`` suffix.
- :meth:`LocalArtifactStore.promote` is copy → existence poll → delete.  If
  the process dies between copy and delete, the id exists in both
  directories; :meth:`LocalArtifactStore.list_pending` treats the public
  copy as the final state and skips it.
- Every filesystem call runs in a worker thread via :func:`asyncio.to_thread`
  so a slow disk never stalls the event loop.
- ``OSError`` is translated into :exc:`~modqueue.store.retry.StorageError` so
  callers handle a single failure family.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from modqueue.store.retry import StorageError, wait_until_visible

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Sub-directory holding submissions awaiting moderation.
PENDING_DIR: str = "pending"

#: Sub-directory holding the approved, publicly visible collection.
PUBLIC_DIR: str = "public"

#: Suffix of the caption file stored beside each image.
CAPTION_SUFFIX: str = ".txt"

#: Image file suffix by upload content type.  Unknown image types fall back to
#: :data:`DEFAULT_IMAGE_SUFFIX`.
IMAGE_SUFFIXES: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

DEFAULT_IMAGE_SUFFIX: str = ".jpg"


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class ArtifactNotFoundError(StorageError):
    """Raised when an operation names an artifact that does not exist."""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ArtifactStore(Protocol):
    """Storage operations the distribution engine relies on."""

    async def put_pending(self, image: bytes, caption: str, content_type: str) -> str: ...

    async def promote(self, item_id: str) -> None: ...

    async def discard(self, item_id: str) -> None: ...

    async def delete_public(self, item_id: str) -> None: ...

    async def list_pending(self) -> list[str]: ...

    async def list_public(self) -> list[str]: ...

    def pending_url(self, item_id: str) -> str: ...

    def public_url(self, item_id: str) -> str: ...

    def caption_url(self, item_id: str) -> str: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def caption_name(item_id: str) -> str:
    """Return the caption file name paired with image *item_id*."""
    return Path(item_id).stem + CAPTION_SUFFIX


def item_id_from_locator(locator: str) -> str:
    """Extract an item id from either a bare id or a full artifact URL.

    ``"/media/pending/image_1.jpg"`` and ``"image_1.jpg"`` both map to
    ``"image_1.jpg"``.  Query strings and fragments are ignored.
    """
    path = locator.split("?", 1)[0].split("#", 1)[0]
    return path.rstrip("/").rsplit("/", 1)[-1]


def _validate_item_id(item_id: str) -> None:
    # ids become file names; reject anything that could escape the store root
    if (
        not item_id
        or item_id in {".", ".."}
        or "/" in item_id
        or "\\" in item_id
        or item_id.endswith(CAPTION_SUFFIX)
    ):
        raise ArtifactNotFoundError(f"Invalid item id {item_id!r}.")


# ---------------------------------------------------------------------------
# LocalArtifactStore
# ---------------------------------------------------------------------------


class LocalArtifactStore:
    """Filesystem-backed :class:`ArtifactStore`.

    Parameters
    ----------
    root:
        Store root directory.  ``pending/`` and ``public/`` are created on
        construction if missing.
    base_url:
        URL prefix under which *root* is served (e.g. ``"/media"``).
    promote_attempts:
        Existence-poll attempts after each copy in :meth:`promote`.
    promote_interval:
        Seconds between existence-poll attempts.
    sleep:
        Awaitable sleep used by the existence poll.  Injectable for tests.
    """

    def __init__(
        self,
        root: Path,
        base_url: str = "/media",
        promote_attempts: int = 30,
        promote_interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._root = Path(root)
        self._base_url = base_url.rstrip("/")
        self._promote_attempts = promote_attempts
        self._promote_interval = promote_interval
        self._sleep = sleep
        self._pending = self._root / PENDING_DIR
        self._public = self._root / PUBLIC_DIR
        for directory in (self._pending, self._public):
            if not directory.exists():
                directory.mkdir(parents=True, exist_ok=True)
                logger.info("Directory %s created.", directory)

    @property
    def root(self) -> Path:
        """The store root directory."""
        return self._root

    # ------------------------------------------------------------------
    # Locators
    # ------------------------------------------------------------------

    def pending_url(self, item_id: str) -> str:
        """Return the public-facing locator of a pending image."""
        return f"{self._base_url}/{PENDING_DIR}/{quote(item_id)}"

    def public_url(self, item_id: str) -> str:
        """Return the public-facing locator of an approved image."""
        return f"{self._base_url}/{PUBLIC_DIR}/{quote(item_id)}"

    def caption_url(self, item_id: str) -> str:
        """Return the public-facing locator of an approved image's caption."""
        return f"{self._base_url}/{PUBLIC_DIR}/{quote(caption_name(item_id))}"

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def put_pending(self, image: bytes, caption: str, content_type: str) -> str:
        """Write a new image + caption pair into ``pending/``.

        Returns
        -------
        str
            The new item id (the image file name).

        Raises
        ------
        StorageError
            If either file cannot be written.
        """
        suffix = IMAGE_SUFFIXES.get(content_type.lower(), DEFAULT_IMAGE_SUFFIX)
        try:
            item_id = await asyncio.to_thread(self._write_pending, image, caption, suffix)
        except OSError as exc:
            raise StorageError(f"Failed to store submission: {exc}") from exc
        logger.info("Uploaded image %s and caption to '%s'.", item_id, PENDING_DIR)
        return item_id

    def _write_pending(self, image: bytes, caption: str, suffix: str) -> str:
        base = f"image_{time.time_ns() // 1_000_000}"
        attempt = 0
        while True:
            stem = base if attempt == 0 else f"{base}_{attempt}"
            attempt += 1
            # the stem keys both files, so it must be free under every suffix
            if self._stem_in_use(stem):
                continue
            item_id = stem + suffix
            image_path = self._pending / item_id
            caption_path = self._pending / caption_name(item_id)
            try:
                # "x" mode claims each name atomically against concurrent writers
                with image_path.open("xb") as fh:
                    fh.write(image)
            except FileExistsError:
                continue
            except OSError:
                image_path.unlink(missing_ok=True)
                raise
            try:
                self._write_caption(caption_path, caption)
            except FileExistsError:
                image_path.unlink(missing_ok=True)
                continue
            except OSError:
                image_path.unlink(missing_ok=True)
                caption_path.unlink(missing_ok=True)
                raise
            return item_id

    def _stem_in_use(self, stem: str) -> bool:
        return any(
            any(directory.glob(f"{stem}.*")) for directory in (self._pending, self._public)
        )

    @staticmethod
    def _write_caption(path: Path, caption: str) -> None:
        with path.open("x", encoding="utf-8") as fh:
            fh.write(caption)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def promote(self, item_id: str) -> None:
        """Move a pending pair into the public collection.

        Copies image and caption into ``public/``, waits until both copies
        are visible, then deletes the pending originals.

        Raises
        ------
        ArtifactNotFoundError
            If the pending image or caption does not exist.
        PromotionTimeoutError
            If a copy does not become visible within the attempt budget.  The
            pending originals are left in place.
        StorageError
            On any other filesystem failure.
        """
        _validate_item_id(item_id)
        caption = caption_name(item_id)
        logger.info("Approving image %s and caption %s", item_id, caption)
        for name in (item_id, caption):
            if not await asyncio.to_thread((self._pending / name).exists):
                raise ArtifactNotFoundError(f"File {name} not found in '{PENDING_DIR}'.")

        for name, description in ((item_id, "Image"), (caption, "Caption")):
            await self._copy_to_public(name)
            target = self._public / name
            await wait_until_visible(
                lambda target=target: asyncio.to_thread(target.exists),
                attempts=self._promote_attempts,
                interval=self._promote_interval,
                description=f"{description} {name}",
                sleep=self._sleep,
            )

        try:
            await asyncio.to_thread(self._unlink_pair, self._pending, item_id)
        except OSError as exc:
            raise StorageError(f"Failed to delete pending copy of {item_id}: {exc}") from exc
        logger.info("Both copies succeeded; deleted pending %s and %s", item_id, caption)

    async def _copy_to_public(self, name: str) -> None:
        try:
            await asyncio.to_thread(shutil.copyfile, self._pending / name, self._public / name)
        except OSError as exc:
            raise StorageError(f"Failed to copy {name}: {exc}") from exc

    async def discard(self, item_id: str) -> None:
        """Delete a pending pair.  Missing files are ignored."""
        _validate_item_id(item_id)
        try:
            await asyncio.to_thread(self._unlink_pair, self._pending, item_id)
        except OSError as exc:
            raise StorageError(f"Failed to delete {item_id}: {exc}") from exc
        logger.info("Deleted image %s and its caption from '%s'.", item_id, PENDING_DIR)

    async def delete_public(self, item_id: str) -> None:
        """Remove an approved pair from the public collection.

        Raises
        ------
        ArtifactNotFoundError
            If *item_id* is not in the public collection.
        """
        _validate_item_id(item_id)
        if not await asyncio.to_thread((self._public / item_id).exists):
            raise ArtifactNotFoundError(f"File {item_id} not found in '{PUBLIC_DIR}'.")
        try:
            await asyncio.to_thread(self._unlink_pair, self._public, item_id)
        except OSError as exc:
            raise StorageError(f"Failed to delete {item_id}: {exc}") from exc
        logger.info("Deleted image %s and its caption from '%s'.", item_id, PUBLIC_DIR)

    @staticmethod
    def _unlink_pair(directory: Path, item_id: str) -> None:
        (directory / item_id).unlink(missing_ok=True)
        (directory / caption_name(item_id)).unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_pending(self) -> list[str]:
        """Return unresolved item ids, oldest first.

        Ids that already exist in ``public/`` are resolved and skipped.
        """
        try:
            pending, public = await asyncio.gather(
                asyncio.to_thread(self._list_images, self._pending),
                asyncio.to_thread(self._list_images, self._public),
            )
        except OSError as exc:
            raise StorageError(f"Failed to list pending artifacts: {exc}") from exc
        published = set(public)
        return [item_id for item_id in pending if item_id not in published]

    async def list_public(self) -> list[str]:
        """Return approved item ids, oldest first."""
        try:
            return await asyncio.to_thread(self._list_images, self._public)
        except OSError as exc:
            raise StorageError(f"Failed to list public artifacts: {exc}") from exc

    @staticmethod
    def _list_images(directory: Path) -> list[str]:
        entries = [
            (path.stat().st_mtime_ns, path.name)
            for path in directory.iterdir()
            if path.is_file() and path.suffix != CAPTION_SUFFIX
        ]
        entries.sort()
        return [name for _, name in entries]

