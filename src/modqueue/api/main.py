"""FastAPI application factory for the modqueue moderation service.

Exposes a :func:`create_app` factory that builds the artifact store, the
pending registry and the distribution components, attaches them to
``app.state``, and registers the HTTP router (:mod:`modqueue.api.routes`) and
the WebSocket push channel (:mod:`modqueue.api.websocket`).

Usage::

    # Production startup
    modqueue                                   # console script, see run()
    uvicorn --factory modqueue.api.main:create_app --port 8080

    # Testing, with a temporary store
    from modqueue.api.main import create_app
    app = create_app(AppConfig(storage_dir=tmp_path),
                     id_factory=iter(["mod_a", "mod_b"]).__next__)

The pending registry is rebuilt from the store's pending listing when the
application starts (see :func:`_lifespan`).  Every restored item starts
unclaimed and is assigned as soon as the first moderator connects.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from modqueue import __version__
from modqueue.api import routes, websocket
from modqueue.config import AppConfig, get_config
from modqueue.distribution.broadcaster import UpdateBroadcaster
from modqueue.distribution.handlers import ResolutionHandler, SubmissionIntake
from modqueue.distribution.registry import PendingRegistry
from modqueue.distribution.sessions import ModeratorSessionManager, new_moderator_id
from modqueue.store.artifacts import ArtifactStore, LocalArtifactStore

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(
    config: AppConfig | None = None,
    store: ArtifactStore | None = None,
    id_factory: Callable[[], str] | None = None,
) -> FastAPI:
    """Create and configure the modqueue FastAPI application.

    Parameters
    ----------
    config:
        Runtime settings.  Defaults to :func:`~modqueue.config.get_config`.
    store:
        Pre-built artifact store.  If ``None``, a
        :class:`~modqueue.store.artifacts.LocalArtifactStore` is opened at
        ``config.storage_dir`` and served under ``config.public_base_url``.
    id_factory:
        Moderator id generator.  Defaults to
        :func:`~modqueue.distribution.sessions.new_moderator_id`.

    Returns
    -------
    FastAPI
        A fully-configured application with all routes registered and
        components attached to ``app.state``.
    """
    if config is None:
        config = get_config()

    if store is None:
        store = LocalArtifactStore(
            config.storage_dir,
            base_url=config.public_base_url,
            promote_attempts=config.promote_attempts,
            promote_interval=config.promote_interval_seconds,
        )
        logger.info("LocalArtifactStore opened at %s", config.storage_dir)

    if not config.moderator_key:
        logger.warning("MODQUEUE_MODERATOR_KEY is not set; moderator actions are unauthenticated")

    # ---- distribution components ----
    registry = PendingRegistry()
    broadcaster = UpdateBroadcaster(registry, store)
    sessions = ModeratorSessionManager(
        registry,
        broadcaster,
        id_factory=id_factory if id_factory is not None else new_moderator_id,
    )

    app = FastAPI(
        title="modqueue",
        description=(
            "Distributes submitted images to connected moderators by least load "
            "and pushes live views over WebSocket."
        ),
        version=__version__,
        lifespan=_lifespan,
    )

    # ---- Attach to app.state ----
    app.state.config = config
    app.state.store = store
    app.state.registry = registry
    app.state.broadcaster = broadcaster
    app.state.sessions = sessions
    app.state.intake = SubmissionIntake(store, sessions)
    app.state.resolver = ResolutionHandler(store, sessions)

    # ---- Register routes ----
    app.include_router(routes.router)
    app.include_router(websocket.router)

    if isinstance(store, LocalArtifactStore) and config.public_base_url != "/":
        app.mount(
            config.public_base_url,
            StaticFiles(directory=store.root),
            name="media",
        )

    return app


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Rebuild the pending registry from durable storage before serving."""
    store: ArtifactStore = app.state.store
    registry: PendingRegistry = app.state.registry

    restored = 0
    for item_id in await store.list_pending():
        if item_id not in registry:
            registry.insert(item_id)
            restored += 1
    logger.info("Restored %d pending item(s) from storage", restored)
    yield


# ---------------------------------------------------------------------------
# Console entry point
# ---------------------------------------------------------------------------


def run() -> None:
    """Start the bundled uvicorn server using environment configuration."""
    config = get_config()
    logging.basicConfig(level=config.log_level, format=_LOG_FORMAT)
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )
