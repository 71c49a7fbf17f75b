"""duckling entry point.

Initializes all components and starts the server:
  Settings -> Database -> Preferences -> Localizer -> StatusEngine ->
  LifecycleController -> AIGateway -> EventBus -> TaskScheduler -> App -> Uvicorn

Uses Starlette lifespan to manage component lifecycle on the same
event loop as uvicorn.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import uvicorn
from starlette.applications import Starlette

from duckling.capture import NoCapture, ScreenCapture, ScreenshotArchive
from duckling.chat.gateway import AIGateway
from duckling.chat.history import ConversationStore
from duckling.config import Settings
from duckling.events import EventBus
from duckling.handlers.task_scheduler import TaskScheduler
from duckling.i18n import Localizer
from duckling.pet.lifecycle import LifecycleController
from duckling.pet.status import StatusEngine
from duckling.storage.database import Database
from duckling.storage.preferences import SqlPreferenceStore

logger = logging.getLogger(__name__)


async def create_components(
    settings: Settings,
    *,
    capture: ScreenCapture | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> dict:
    """Initialize all components in dependency order.

    Returns dict with all components for lifespan storage.

    1. Database + preference store
    2. Localizer - persisted language
    3. EventBus - started before anything emits
    4. StatusEngine + LifecycleController - loads and catches up the pet
    5. AIGateway - key, pet name and conversation history
    6. TaskScheduler - status tick, auto-comments, cleanup
    """
    database = Database(settings)
    await database.connect()
    store = SqlPreferenceStore(database)

    localizer = Localizer(store, settings.default_language)
    await localizer.load()

    bus = EventBus()
    await bus.start()

    engine = StatusEngine(store, settings.life)
    lifecycle = LifecycleController(engine, bus, localizer)
    await lifecycle.startup()

    owns_http = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=settings.api_timeout_connect,
                read=settings.api_timeout_read,
                write=10,
                pool=10,
            ),
        )

    archive = ScreenshotArchive(settings.screenshot_dir) if settings.archive_screenshots else None
    gateway = AIGateway(
        settings,
        ConversationStore(store, settings.history_limit),
        store,
        localizer,
        http_client,
        capture=capture or NoCapture(),
        archive=archive,
    )
    await gateway.load()

    scheduler = TaskScheduler(lifecycle, gateway, bus, settings, archive=archive)
    await scheduler.start()

    return {
        "database": database,
        "store": store,
        "localizer": localizer,
        "bus": bus,
        "engine": engine,
        "lifecycle": lifecycle,
        "gateway": gateway,
        "scheduler": scheduler,
        "archive": archive,
        "http_client": http_client if owns_http else None,
    }


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down duckling...")

    # Timers first so nothing fires against closed resources
    scheduler = components.get("scheduler")
    if scheduler:
        await scheduler.stop()

    gateway = components.get("gateway")
    if gateway:
        await gateway.close()

    http_client = components.get("http_client")
    if http_client:
        await http_client.aclose()

    bus = components.get("bus")
    if bus:
        await bus.stop()

    database = components.get("database")
    if database:
        await database.disconnect()

    logger.info("duckling shutdown complete.")


def build_app(settings: Settings) -> Starlette:
    """Build the Starlette app; components are created in its lifespan."""
    components: dict = {}

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        nonlocal components
        components.update(await create_components(settings))

        # Store on app.state for access in tests
        app.state.components = components

        status = components["lifecycle"].status
        logger.info(
            "duckling started: mood=%s hunger=%.1f cleanliness=%.1f happiness=%.1f",
            status.mood,
            status.hunger,
            status.cleanliness,
            status.happiness,
        )
        yield

        await shutdown_components(components)

    # Import here to avoid circular imports at module level
    from duckling.api.rest import create_app

    return create_app(
        lifecycle=_lazy_component(components, "lifecycle"),
        gateway=_lazy_component(components, "gateway"),
        scheduler=_lazy_component(components, "scheduler"),
        bus=_lazy_component(components, "bus"),
        database=_lazy_component(components, "database"),
        settings=settings,
        lifespan=lifespan,
    )


class _LazyProxy:
    """Proxy that defers attribute access to a dict-backed component.

    Allows create_app() to receive component references before lifespan
    has initialized them. All attribute access is forwarded to the actual
    component once it's available.
    """

    def __init__(self, components: dict, key: str) -> None:
        object.__setattr__(self, "_components", components)
        object.__setattr__(self, "_key", key)

    def _resolve(self):
        components = object.__getattribute__(self, "_components")
        key = object.__getattribute__(self, "_key")
        obj = components.get(key)
        if obj is None:
            raise RuntimeError(f"Component '{key}' not yet initialized: lifespan hasn't started")
        return obj

    def __getattr__(self, name):
        return getattr(self._resolve(), name)

    def __len__(self):
        return len(self._resolve())


def _lazy_component(components: dict, key: str) -> _LazyProxy:
    """Create a lazy proxy for a component that will be initialized in lifespan."""
    return _LazyProxy(components, key)


def main() -> None:
    """Entry point: parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting duckling (model=%s)", settings.model)
    logger.info("Database: %s", settings.db_url)
    logger.info(
        "Balance: decay %.1f/%.1f/%.1f per hour, neglect window %.0fh",
        settings.life.hunger_decay,
        settings.life.cleanliness_decay,
        settings.life.happiness_decay,
        settings.life.neglect_window_hours,
    )
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set; chat needs a key saved through /settings")

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
