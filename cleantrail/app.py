"""
Server entry point: FastAPI app setup and route configuration.

Launches a Playwright browser, wires it to a ``PrivacyEngine`` and
exposes the engine's requests over HTTP, plus a Server-Sent Events
stream of everything the engine broadcasts.
"""

from __future__ import annotations

import contextlib
import dataclasses
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import dotenv
import fastapi
import pydantic
import uvicorn
from fastapi.middleware import cors
from starlette import responses

from cleantrail.api import events as api_events
from cleantrail.config import EngineSettings, get_settings
from cleantrail.engine.context import Collaborators
from cleantrail.engine.engine import PrivacyEngine
from cleantrail.host import playwright_host
from cleantrail.store import local_store
from cleantrail.utils import logger, serialization

dotenv.load_dotenv()

log = logger.create_logger("Server")


@dataclasses.dataclass
class Runtime:
    """Objects that live for the lifetime of the server."""

    engine: PrivacyEngine
    hub: api_events.EventHub
    badge: api_events.MemoryBadge
    session: playwright_host.BrowserSession | None = None
    host: playwright_host.PlaywrightHost | None = None

    async def close(self) -> None:
        await self.engine.stop()
        if self.host is not None:
            await self.host.drain()
        if self.session is not None:
            await self.session.close()


RuntimeFactory = Callable[[EngineSettings], Awaitable[Runtime]]


async def build_browser_runtime(settings: EngineSettings) -> Runtime:
    """Launch Chromium and start an engine bound to it."""
    store = local_store.JsonFileStateStore(settings.store_path) if settings.store_path else local_store.MemoryStateStore()
    hub = api_events.EventHub()
    badge = api_events.MemoryBadge()

    session = playwright_host.BrowserSession()
    context = await session.launch(headless=settings.headless)
    host = playwright_host.PlaywrightHost(context)
    engine = PrivacyEngine(
        Collaborators(
            store=store,
            rule_engine=host.rule_engine,
            cookies=host.cookies,
            site_data=host.site_data,
            injector=host.injector,
            estimator=host.estimator,
            badge=badge,
            broadcaster=hub,
        ),
        settings,
    )
    await host.bind(engine.dispatch)
    await engine.start()
    await session.open_page(settings.start_url)
    return Runtime(engine=engine, hub=hub, badge=badge, session=session, host=host)


# ============================================================================
# Request Bodies
# ============================================================================


class _Body(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(alias_generator=serialization.snake_to_camel, populate_by_name=True)


class TrackerBlockingRequest(_Body):
    enabled: bool


class ProfileRequest(_Body):
    profile: str
    source: str = "manual"


# ============================================================================
# App Factory
# ============================================================================


def create_app(runtime_factory: RuntimeFactory = build_browser_runtime, settings: EngineSettings | None = None) -> fastapi.FastAPI:
    """Build the FastAPI app; *runtime_factory* creates the engine at startup."""
    settings = settings or get_settings()

    @contextlib.asynccontextmanager
    async def lifespan(app: fastapi.FastAPI) -> AsyncGenerator[None]:
        logger.start_log_file("server")
        log.section("CleanTrail Server Started")
        log.info("Environment", {"env": settings.environment})
        runtime = await runtime_factory(settings)
        app.state.runtime = runtime
        try:
            yield
        finally:
            await runtime.close()
            log.info("Server stopped")
            logger.end_log_file()

    app = fastapi.FastAPI(title="CleanTrail Privacy Engine", lifespan=lifespan)

    app.add_middleware(
        cors.CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _runtime(request: fastapi.Request) -> Runtime:
        return request.app.state.runtime

    async def _ask(request: fastapi.Request, message: dict[str, Any]) -> dict[str, Any]:
        reply = await _runtime(request).engine.handle_message(message)
        if reply is None:
            raise fastapi.HTTPException(status_code=404, detail=f"Unknown request {message['type']!r}")
        if reply.get("ok") is False:
            raise fastapi.HTTPException(status_code=500, detail=reply.get("error") or "Request failed")
        return reply

    # ========================================================================
    # API Routes
    # ========================================================================

    @app.get("/api/privacy-score")
    async def privacy_score(request: fastapi.Request) -> dict[str, Any]:
        reply = await _ask(request, {"type": "getPrivacyScore"})
        return {**reply, "badge": _runtime(request).badge.as_dict()}

    @app.get("/api/tracker-stats")
    async def tracker_stats(request: fastapi.Request) -> dict[str, Any]:
        return await _ask(request, {"type": "getTrackerStats"})

    @app.post("/api/tracker-blocking")
    async def tracker_blocking(body: TrackerBlockingRequest, request: fastapi.Request) -> dict[str, Any]:
        log.info("Tracker blocking requested", {"enabled": body.enabled})
        return await _ask(request, {"type": "setTrackerBlocking", "enabled": body.enabled})

    @app.post("/api/manual-clear")
    async def manual_clear(request: fastapi.Request) -> dict[str, Any]:
        return await _ask(request, {"type": "manualClear"})

    @app.post("/api/profile")
    async def set_profile(body: ProfileRequest, request: fastapi.Request) -> dict[str, Any]:
        return await _ask(request, {"type": "setActiveProfile", "profile": body.profile, "source": body.source})

    @app.delete("/api/profile/source")
    async def reset_profile_source(request: fastapi.Request) -> dict[str, Any]:
        return await _ask(request, {"type": "resetProfileSource"})

    @app.get("/api/diagnostics")
    async def diagnostics() -> dict[str, Any]:
        return {"lines": logger.get_diagnostics()}

    @app.get("/api/events")
    async def events_stream(request: fastapi.Request) -> responses.StreamingResponse:
        """Stream broadcast engine events via SSE."""
        return responses.StreamingResponse(
            _runtime(request).hub.stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "Access-Control-Allow-Origin": "*",
            },
        )

    return app


def main() -> None:
    """Run the server with uvicorn."""
    settings = get_settings()
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
