import logging
import logging.config
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from upload_service.session_sweeper import SessionSweeper

from .config import Settings, get_settings
from .dependencies import UploadComponents, build_components
from .exceptions import register_exception_handlers
from .health.router import PATHS_EXCLUDED_FOR_LOGGING, EndpointFilter
from .health.router import router as health_router
from .uploads.router import router as uploads_router

logger = logging.getLogger("upload_api")


def configure_logging(level: str) -> None:
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                }
            },
            "handlers": {
                "console": {"class": "logging.StreamHandler", "formatter": "default"}
            },
            "root": {"handlers": ["console"], "level": level.upper()},
        }
    )
    logging.getLogger("uvicorn.access").addFilter(
        EndpointFilter(PATHS_EXCLUDED_FOR_LOGGING)
    )


def create_app(
    settings: Settings | None = None, components: UploadComponents | None = None
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.components = components or build_components(settings)
        sweeper = SessionSweeper(
            app.state.components.manager, settings.SWEEP_INTERVAL_SEC
        )
        sweeper.start()
        try:
            yield
        finally:
            await sweeper.stop()
            if app.state.components.redis_service is not None:
                await app.state.components.redis_service.close()

    app = FastAPI(title="Upload API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.include_router(uploads_router)
    app.include_router(health_router)
    return app


def run() -> None:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    logger.info("Upload API listening at %s:%s.", settings.HOST, settings.PORT)
    uvicorn.run(create_app(settings), host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
