"""
Integration Gateway — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import get_gateway, shutdown_gateway
from api.middleware import register_middleware
from api.routes import router as api_router
from config.settings import config
from database.session import init_models
from oauth.routes import router as oauth_router
from plugins.registry import CapabilityRegistry
from webhooks.routes import router as webhook_router

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "asyncio"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Integration Gateway",
        version="1.0.0",
        description="OAuth install, credential vault and webhook fan-out for third-party plugins.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Routes
    app.include_router(oauth_router, prefix="/oauth")
    app.include_router(webhook_router, prefix="/webhook")
    app.include_router(api_router, prefix="/api/v1")

    @app.on_event("startup")
    async def on_startup():
        logger.info("Discovering plugins…")
        registry = CapabilityRegistry()
        registry.discover(config.plugin_modules)
        logger.info("Registered plugins: %s", registry.plugin_ids() or "none")

        if config.auto_create_tables:
            await init_models()

        if config.plugin_configs:
            seeded = await get_gateway().config_store.seed(config.plugin_configs)
            if seeded:
                logger.info("Seeded plugin configs: %s", seeded)

        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        await shutdown_gateway()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
