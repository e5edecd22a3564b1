"""
Wellhost channel service — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from auth.routes import router as auth_router
from channels.encryption import is_encryption_enabled
from channels.registry import ChannelRegistry
from channels.routes import router as channels_router
from config.settings import config
from webhooks.handlers import dispatcher
from webhooks.routes import router as webhooks_router

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "sqlalchemy.engine"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title=config.app_name,
        version="1.0.0",
        description="Booking-channel connections for the Wellhost dashboard.",
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
    app.include_router(auth_router, prefix="/api/auth")
    app.include_router(channels_router, prefix="/api")
    app.include_router(webhooks_router, prefix="/api")

    @app.on_event("startup")
    async def on_startup():
        for provider in ChannelRegistry().list_providers():
            if provider["configured"]:
                logger.info("Channel ready: %s", provider["display_name"])
            else:
                logger.warning(
                    "Channel %s not configured (missing client id/secret)",
                    provider["provider"],
                )
        if not config.channex_webhook_secret:
            logger.warning("CHANNEX_WEBHOOK_SECRET not set — Channex webhooks will be rejected")
        if config.accept_legacy_auth_tokens:
            logger.warning("Unsigned legacy auth_token cookies are accepted")
        is_encryption_enabled()
        logger.info("Webhook events handled: %s", ", ".join(dispatcher.event_types))
        logger.info("Application ready to accept requests.")

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
