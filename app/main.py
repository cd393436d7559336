"""
SPC Alerts push service: FastAPI application.
"""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.db import close_db, init_db
from app.errors import PushServiceError
from app.routers import push
from app.settings import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format=LOG_FORMAT if settings.log_format == "text" else None,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s %s", settings.app_name, settings.app_version)
    if not settings.push_enabled:
        logger.warning("VAPID keys not configured: /send-push will answer 500")
    await init_db()
    yield
    logger.info("Shutting down %s", settings.app_name)
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    lifespan=lifespan,
)

# Pages on any origin call the fan-out endpoint; no cookies are involved
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Tag each request with an X-Request-ID (client supplied or generated)."""
    request.state.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    response = await call_next(request)
    response.headers["X-Request-ID"] = request.state.request_id
    return response


@app.exception_handler(PushServiceError)
async def push_service_error_handler(request: Request, exc: PushServiceError):
    """Validation, configuration and store errors as {"error", "type"}."""
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(
        level, "%s on %s [%s]: %s",
        type(exc).__name__, request.url.path,
        getattr(request.state, "request_id", "-"), exc.message,
    )
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
    return JSONResponse({"error": str(exc), "type": type(exc).__name__}, status_code=500)


@app.get("/health", tags=["health"])
@app.get("/healthz", tags=["health"], include_in_schema=False)
async def health():
    return {"status": "healthy"}


@app.get("/version", tags=["meta"])
async def version():
    """App version and the cache name the background receiver installs under."""
    return {"version": settings.app_version, "cache_key": settings.agent_cache_name}


app.include_router(push.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.host, port=settings.port, reload=settings.debug)
