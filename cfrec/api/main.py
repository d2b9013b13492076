"""FastAPI application main module.

This module builds the FastAPI application for the CFRec service. The engine
and its cache client are created at startup and closed at shutdown by the
application lifespan; tests can inject a ready engine through ``create_app``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cfrec import __version__
from cfrec.api.logging_config import RequestLoggingMiddleware, setup_logging
from cfrec.api.routes import recommend
from cfrec.config import EngineSettings, get_settings
from cfrec.exceptions import CFRecException
from cfrec.recommender.cache import create_cache
from cfrec.recommender.engine import RecommendationEngine
from cfrec.recommender.metrics import metrics_service
from cfrec.recommender.stores import InMemoryBehaviorStore, InMemorySimilarityStore
from cfrec.recommender.utils import (
    behaviors_from_frame,
    check_snapshot_exists,
    load_behaviors_csv,
    load_store_snapshot,
)

logger = logging.getLogger(__name__)


def build_engine(settings: EngineSettings) -> RecommendationEngine:
    """Create the engine with in-memory stores, seeded from files when configured."""
    behavior_store = InMemoryBehaviorStore()
    similarity_store = InMemorySimilarityStore()

    if settings.seed_csv:
        df = load_behaviors_csv(settings.seed_csv)
        for event in behaviors_from_frame(df):
            behavior_store.add_behavior(event)
        logger.info(f"Seeded {len(behavior_store)} behaviors from {settings.seed_csv}")

    if settings.snapshot_dir:
        if check_snapshot_exists(settings.snapshot_dir):
            load_store_snapshot(settings.snapshot_dir, similarity_store)
        else:
            logger.warning(f"No similarity snapshot found in {settings.snapshot_dir}")

    return RecommendationEngine(
        behavior_store=behavior_store,
        similarity_store=similarity_store,
        cache=create_cache(settings),
        settings=settings,
        metrics=metrics_service,
    )


def create_app(
    engine: Optional[RecommendationEngine] = None,
    settings: Optional[EngineSettings] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        engine: Pre-built engine to serve. When omitted, one is built from
            ``settings`` at startup.
        settings: Engine settings; read from the environment when omitted.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.engine = engine or build_engine(settings)
        app.state.engine.start()
        logger.info("CFRec service started")
        try:
            yield
        finally:
            app.state.engine.close()
            logger.info("CFRec service stopped")

    app = FastAPI(
        title="CFRec API",
        description="Collaborative filtering product recommendation service",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(recommend.router)

    @app.exception_handler(CFRecException)
    async def cfrec_exception_handler(request: Request, exc: CFRecException) -> JSONResponse:
        logger.warning(
            "Request rejected",
            extra={
                "path": str(request.url.path),
                "error_type": type(exc).__name__,
                "error": exc.message,
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": type(exc).__name__,
                "message": exc.message,
                "details": exc.details,
            },
        )

    @app.get("/ping")
    def ping() -> Dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/status")
    def status(request: Request) -> Dict[str, Any]:
        """Engine status: refresher state, queue depth and cache settings."""
        engine_status = request.app.state.engine.status()
        engine_status["cache_backend"] = settings.cache_backend.value
        engine_status["version"] = __version__
        return engine_status

    @app.get("/metrics")
    def metrics(request: Request) -> Dict[str, Any]:
        return request.app.state.engine.metrics.get_metrics()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)

    uvicorn.run(
        "cfrec.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
    )
