"""Blog engine: FastAPI app for admin-only AI blog generation.

Loads config.yaml on startup. Exposes /api/ai/generate-blog-stream for SSE
streaming, image rehosting for generated posts, plus operational endpoints
for health, config viewing, and hot-reload. A scheduler sweeps expired
rate-limit windows.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from blog_engine.auth import AdminEmailPolicy, SupabaseAuth, token_from_request
from blog_engine.config import EngineConfig, load_config, reload_config
from blog_engine.errors import ValidationError
from blog_engine.pipeline.progress import ProgressEmitter, QueueSink
from blog_engine.pipeline.rate_limit import RateLimiter
from blog_engine.runtime import GenerationOrchestrator, build_request, with_identity
from blog_engine.scheduler import setup_scheduler
from blog_engine.schemas import CurrentUser, RehostRequest, RehostResponse
from blog_engine.storage import ImageStorage

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Content-Type-Options": "nosniff",
    "X-Accel-Buffering": "no",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create shared clients and start the scheduler on startup."""
    config: EngineConfig = app.state.config
    # Provider calls have no read deadline of their own; the host enforces one.
    app.state.http_client = httpx.AsyncClient(timeout=httpx.Timeout(None, connect=10.0))
    app.state.rate_limiter = RateLimiter(
        config.rate_limit.window_seconds, config.rate_limit.max_requests
    )
    app.state.auth = SupabaseAuth(config.supabase)

    scheduler = setup_scheduler(config, app.state.rate_limiter)
    scheduler.start()
    app.state.scheduler = scheduler
    logger.info(
        f"Blog engine started (origins={config.allowed_origins}, "
        f"admin={'set' if config.admin_email else 'unset'}, "
        f"rate_limit={config.rate_limit.max_requests}/{config.rate_limit.window_seconds:g}s)"
    )
    yield
    app.state.scheduler.shutdown()
    await app.state.http_client.aclose()
    logger.info("Blog engine shutting down")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_engine_config(request: Request) -> EngineConfig:
    return request.app.state.config


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_auth_provider(request: Request) -> SupabaseAuth:
    return request.app.state.auth


async def get_current_user(
    request: Request,
    client: httpx.AsyncClient = Depends(get_http_client),
    auth: SupabaseAuth = Depends(get_auth_provider),
) -> CurrentUser | None:
    return await auth.get_current_user(client, token_from_request(request))


async def verify_api_key(request: Request) -> None:
    """Validate X-API-Key header against the configured key.
    If no api_key is set in config, auth is disabled (dev mode).
    """
    config = get_engine_config(request)
    if not config.api_key:
        return

    key = request.headers.get("X-API-Key")
    if key != config.api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


router = APIRouter()


# ---------------------------------------------------------------------------
# Generation endpoint
# ---------------------------------------------------------------------------


@router.post("/api/ai/generate-blog-stream")
async def generate_blog_stream(
    request: Request,
    client: httpx.AsyncClient = Depends(get_http_client),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    auth: SupabaseAuth = Depends(get_auth_provider),
):
    """Run the blog-generation pipeline for the admin.

    Streams progress as Server-Sent Events (SSE), ending with a
    ``final_result`` frame or an error frame.
    """
    config = get_engine_config(request)

    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Request body must be valid JSON"})

    try:
        generation = build_request(body, config.limits)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    # Session lookup is the first external call; only valid requests get here.
    user = await auth.get_current_user(client, token_from_request(request))
    generation = with_identity(generation, user)

    try:
        orchestrator = GenerationOrchestrator(
            config, client, rate_limiter, AdminEmailPolicy(config.admin_email)
        )
        sink = QueueSink()
        emitter = ProgressEmitter(sink)
    except Exception as e:
        logger.error(f"Stream setup error: {e}", exc_info=True)
        return JSONResponse(
            status_code=500, content={"error": "Failed to setup blog generation stream"}
        )

    async def stream():
        task = asyncio.create_task(orchestrator.run(generation, user, emitter))
        try:
            async for frame in sink.frames():
                yield frame
        finally:
            # Client went away before the pipeline finished.
            if not task.done():
                task.cancel()

    return StreamingResponse(stream(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/api/blog/images/rehost", response_model=RehostResponse)
async def rehost_images(
    body: RehostRequest,
    request: Request,
    user: CurrentUser | None = Depends(get_current_user),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """Copy generated images to durable storage before a post is published."""
    config = get_engine_config(request)
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    if not AdminEmailPolicy(config.admin_email).is_authorized(user):
        raise HTTPException(status_code=403, detail="Admin access required")

    storage = ImageStorage(client, config.supabase)
    images = await storage.store_images(body.images, body.title)
    return RehostResponse(images=images)


# ---------------------------------------------------------------------------
# Operational endpoints
# ---------------------------------------------------------------------------


@router.get("/health")
async def health(request: Request):
    """Liveness check."""
    config = get_engine_config(request)
    rate_limiter = getattr(request.app.state, "rate_limiter", None)
    return {
        "status": "healthy",
        "admin_configured": bool(config.admin_email),
        "rate_limited_identities": len(rate_limiter) if rate_limiter is not None else 0,
    }


@router.get("/config")
async def get_current_config(request: Request):
    """Return current config as JSON. Holds no secrets, only env var names."""
    return get_engine_config(request).model_dump(exclude={"api_key"})


@router.post("/reload", dependencies=[Depends(verify_api_key)])
async def reload(request: Request):
    """Hot-reload config.yaml without container restart.

    Stops the current scheduler, reloads config, retunes the rate limiter,
    and starts a new scheduler.
    """
    try:
        new_config = reload_config()
        request.app.state.config = new_config

        rate_limiter: RateLimiter = request.app.state.rate_limiter
        rate_limiter.window_seconds = new_config.rate_limit.window_seconds
        rate_limiter.max_requests = new_config.rate_limit.max_requests
        request.app.state.auth = SupabaseAuth(new_config.supabase)

        request.app.state.scheduler.shutdown(wait=False)
        new_scheduler = setup_scheduler(new_config, rate_limiter)
        new_scheduler.start()
        request.app.state.scheduler = new_scheduler

        return {
            "status": "reloaded",
            "admin_configured": bool(new_config.admin_email),
            "rate_limit": new_config.rate_limit.model_dump(),
        }
    except Exception as e:
        logger.error(f"Reload failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Reload failed: {e}")


def create_app(config: EngineConfig | None = None) -> FastAPI:
    """Build the app. Without ``config``, config.yaml is loaded from disk."""
    boot_config = config or load_config()

    app = FastAPI(title="thehackai Blog Engine", version="0.1.0", lifespan=lifespan)
    app.state.config = boot_config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=boot_config.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
