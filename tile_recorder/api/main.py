from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import Settings, get_settings
from ..core.browser import BrowserFactory
from ..core.events import RecorderEventBroker
from ..errors import RecorderError
from ..services.session_manager import SessionManager
from .routers import health as r_health
from .routers import sessions as r_sessions

logger = logging.getLogger(__name__)


# Custom log filter to suppress noisy status polling
class StatusPollFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return "/api/recording-status/" not in record.getMessage()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    access = logging.getLogger("uvicorn.access")
    if not any(isinstance(f, StatusPollFilter) for f in access.filters):
        access.addFilter(StatusPollFilter())


def create_app(
    settings: Optional[Settings] = None,
    browser_factory: Optional[BrowserFactory] = None,
) -> FastAPI:
    settings = settings or get_settings()
    broker = RecorderEventBroker()
    manager = SessionManager(settings, browser_factory=browser_factory, broker=broker)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("[API] Recorder service ready (output: %s)", settings.output_dir)
        try:
            yield
        finally:
            await manager.shutdown()
            logger.info("[API] All sessions closed")

    app = FastAPI(title="Tile Recorder API", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.broker = broker
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RecorderError)
    async def recorder_error_handler(request: Request, exc: RecorderError):
        logger.info("[API] %s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.http_status)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            {
                "success": False,
                "error": "Invalid request body",
                "errorType": "validation_error",
                "details": {"errors": jsonable_encoder(exc.errors())},
            },
            status_code=422,
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("[API] Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            {"success": False, "error": str(exc) or type(exc).__name__, "errorType": "internal_error"},
            status_code=500,
        )

    app.include_router(r_health.router)
    app.include_router(r_sessions.router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run("tile_recorder.api.main:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
