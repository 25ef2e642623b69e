# nanochat/main.py
from contextlib import asynccontextmanager
from typing import Optional
import logging
import time

import httpx
from fastapi import FastAPI

from nanochat.api.v1.router import api_router
from nanochat.core.config import Settings, settings as default_settings
from nanochat.core.error_handlers import register_error_handlers
from nanochat.core.logging import setup_logging
from nanochat.db.session import create_engine, init_db
from nanochat.observability.metrics import snapshot_metrics
from nanochat.observability.middleware import RequestIdMiddleware
from nanochat.services.api_client import NanoChatAPI
from nanochat.services.store import LocalStore
from nanochat.services.sync import SyncService

logger = logging.getLogger(__name__)


def create_app(
        app_settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    """Local access API over the sync core; `transport` replaces the network in tests"""
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Sync service starting...")
        engine = create_engine(app_settings)
        await init_db(engine)
        api = NanoChatAPI(app_settings, transport=transport)
        app.state.sync = SyncService(api, LocalStore.from_engine(engine), app_settings=app_settings)
        try:
            yield
        finally:
            app.state.sync.reconciler.generations.cancel_all()
            await api.aclose()
            await engine.dispose()
            logger.info("Sync service stopped")

    app = FastAPI(title="NanoChat Sync", version="1.0.0", lifespan=lifespan)
    app.add_middleware(RequestIdMiddleware)
    register_error_handlers(app)

    @app.get("/health")
    async def health_check():
        counts = await app.state.sync.store.counts()
        return {"status": "healthy", "timestamp": time.time(), "cached": counts}

    @app.get("/metrics")
    async def metrics():
        return snapshot_metrics()

    app.include_router(api_router, prefix="/api/v1")
    return app


setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=default_settings.SERVER_HOST, port=default_settings.SERVER_PORT)
