"""HTTP surface for Feed Tagger."""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import Config
from .errors import FeedTaggerError, InputError, UpstreamFetchError
from .logging_config import create_execution_logger, new_execution_id, setup_structured_logging
from .service import FeedService

CORS_METHODS = ["GET", "HEAD", "POST", "OPTIONS", "DELETE"]
SHUTDOWN_GRACE_SECONDS = 30.0


def _is_true(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


def create_app(service: FeedService | None = None, config: Config | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        service: Prebuilt service (tests); built from ``config`` otherwise
        config: Configuration used when no service is given
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "service", None) is None:
            app.state.service = FeedService.from_config(config or Config())
        yield
        await app.state.service.shutdown(timeout=SHUTDOWN_GRACE_SECONDS)

    app = FastAPI(title="Feed Tagger", version=__version__, lifespan=lifespan)
    app.state.service = service
    logger = create_execution_logger("api", new_execution_id("api"))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_METHODS,
        allow_headers=["Content-Type"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("request_started", method=request.method, path=request.url.path)
        response = await call_next(request)
        logger.info(
            "request_ended",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response

    @app.exception_handler(InputError)
    async def input_error_handler(request: Request, exc: InputError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(UpstreamFetchError)
    async def upstream_error_handler(request: Request, exc: UpstreamFetchError):
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.exception_handler(FeedTaggerError)
    async def feed_tagger_error_handler(request: Request, exc: FeedTaggerError):
        logger.error(f"Request failed: {exc}", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.api_route("/rss", methods=["GET", "HEAD"])
    async def rss(request: Request, url: str | None = None, tagsOnly: str | None = None):
        service: FeedService = request.app.state.service
        if _is_true(tagsOnly):
            items = await service.get_cached_feed(url)
        else:
            items = await service.get_feed(url)
        return JSONResponse(content=[item.to_dict() for item in items])

    @app.delete("/clear-cache")
    async def clear_cache(request: Request, url: str | None = None):
        service: FeedService = request.app.state.service
        result = await service.invalidate(url)
        return {"success": True, "message": "Cache cleared", **result}

    @app.get("/health")
    async def health(request: Request):
        service: FeedService = request.app.state.service
        return {"status": "ok", "pending_enrichments": service.pending_tasks}

    return app


def main() -> None:
    """Run the API with uvicorn."""
    config = Config()
    setup_structured_logging(config.log_level)
    server_config = config.get_server_config()
    uvicorn.run(
        create_app(config=config),
        host=server_config.host,
        port=server_config.port,
        log_config=None,
    )
