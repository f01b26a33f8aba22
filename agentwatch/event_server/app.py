from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import redis.asyncio as aioredis
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from loguru import logger
from sse_starlette.sse import AppStatus

from agentwatch.event_server.db.engine import create_engine, create_schema, create_session_factory
from agentwatch.event_server.hub import BroadcastHub
from agentwatch.event_server.log import setup_logging
from agentwatch.event_server.managers.ingest import IngestGateway
from agentwatch.event_server.managers.platforms import PlatformRegistry, seed_builtin_platforms
from agentwatch.event_server.relay import RedisRelay
from agentwatch.event_server.settings import get_settings
from agentwatch.event_server.store.base import StoreUnavailableError
from agentwatch.event_server.store.sql import SqlEventStore


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)

    logger.info("Event server starting (host={}, port={})", settings.host, settings.port)

    # -- Initialise state fields (always present, possibly None) ----------------
    _app.state.settings = settings
    _app.state.db_engine = None
    _app.state.db_session_factory = None
    _app.state.redis = None
    _app.state.relay = None

    # -- Database --------------------------------------------------------------
    engine = create_engine(settings.database_url)
    _app.state.db_engine = engine
    _app.state.db_session_factory = create_session_factory(engine)
    if settings.auto_create_schema:
        await create_schema(engine)
        logger.info("Database: schema created from metadata")
    logger.info("Database: connected ({})", engine.url.get_backend_name())

    # -- Platform registry -----------------------------------------------------
    registry = PlatformRegistry()
    async with _app.state.db_session_factory() as db:
        await seed_builtin_platforms(db)
        snapshot = await registry.refresh(db)
    _app.state.platform_registry = registry
    logger.info("Platform registry: {} platforms loaded", len(snapshot))

    # -- Event store and live fan-out ------------------------------------------
    store = SqlEventStore(_app.state.db_session_factory)
    hub = BroadcastHub(queue_size=settings.stream.queue_size)
    store.add_listener(hub.publish)
    _app.state.event_store = store
    _app.state.hub = hub
    logger.info("Event store: ready (last sequence={})", await store.last_sequence())

    # -- Redis -----------------------------------------------------------------
    if settings.redis_url:
        _app.state.redis = aioredis.from_url(
            settings.redis_url,
            decode_responses=False,
            socket_connect_timeout=5,
            retry_on_timeout=True,
        )
        relay = RedisRelay(_app.state.redis, hub)
        store.add_listener(relay.on_commit)
        await relay.start()
        _app.state.relay = relay
    else:
        logger.info("AGENTWATCH_REDIS_URL not set -- streams only carry this instance's commits")

    # -- SSE -------------------------------------------------------------------
    # Streams are closed explicitly below, after in-flight commits drained.
    AppStatus.disable_automatic_graceful_drain()
    AppStatus.should_exit = False

    # -- Ingest gateway --------------------------------------------------------
    gateway = IngestGateway(store, registry, settings)
    _app.state.gateway = gateway
    logger.info(
        "Gateway: initialised (sampling_rate={}, batch_size={}, max_payload={}KB)",
        settings.events.sampling_rate,
        settings.events.batch_size,
        settings.events.max_payload_size_kb,
    )

    yield

    # -- Shutdown --------------------------------------------------------------
    logger.info("Event server shutting down (in_flight={}, subscribers={})", gateway.in_flight, hub.active_count)

    # 1. Refuse new submissions.
    gateway.begin_shutdown()

    # 2. Let already-accepted submissions finish committing.
    await gateway.wait_until_drained(timeout=settings.graceful_shutdown_timeout)

    # 3. Close subscriber streams.  Must happen AFTER the drain so that
    #    subscribers receive the last committed events before their stream ends.
    hub.close_all()
    AppStatus.should_exit = True
    logger.info("Streams: signalled subscribers to close")

    if _app.state.relay is not None:
        await _app.state.relay.stop()

    # Close Redis client (returns pooled connections).
    if _app.state.redis is not None:
        await _app.state.redis.aclose()
        logger.info("Redis: closed")

    await store.close()
    await engine.dispose()
    logger.info("Database: disposed (stats={})", dict(gateway.stats))


app = FastAPI(title="agentwatch Event Server", lifespan=lifespan)


@app.exception_handler(StoreUnavailableError)
async def store_unavailable(_request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.warning("Store unavailable while serving a read: {}", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Event store temporarily unavailable."},
        headers={"Retry-After": "1"},
    )


@app.get("/health")
async def health(request: Request) -> dict[str, Any]:
    gateway: IngestGateway | None = getattr(request.app.state, "gateway", None)
    hub: BroadcastHub | None = getattr(request.app.state, "hub", None)
    draining = gateway is None or gateway.is_shutting_down
    return {
        "status": "draining" if draining else "ok",
        "subscribers": hub.active_count if hub is not None else 0,
    }


# ---------------------------------------------------------------------------
# API router -- all versioned endpoints live under /v1
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/v1")

from agentwatch.event_server.routers.agents import router as agents_router  # noqa: E402
from agentwatch.event_server.routers.analytics import router as analytics_router  # noqa: E402
from agentwatch.event_server.routers.events import router as events_router  # noqa: E402
from agentwatch.event_server.routers.export import router as export_router  # noqa: E402
from agentwatch.event_server.routers.platforms import router as platforms_router  # noqa: E402
from agentwatch.event_server.routers.sessions import router as sessions_router  # noqa: E402
from agentwatch.event_server.routers.stream import router as stream_router  # noqa: E402

api.include_router(events_router)
api.include_router(sessions_router)
api.include_router(agents_router)
api.include_router(stream_router)
api.include_router(platforms_router)
api.include_router(analytics_router)
api.include_router(export_router)

app.include_router(api)
