# main.py

import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from config import ConfigError, Settings, as_bool, load_settings
from deploy_runner import DeployRunner
from logging_config import setup_logging
from notifications import Notifications
from rate_limiter import RateLimiter

# Routers
from routers.health import router as health_router
from routers.webhook import router as webhook_router

logger = logging.getLogger(__name__)


def _log_loop_exception(loop, context):
    """Keep the listener alive when a background task blows up."""
    exc = context.get("exception")
    logger.error(f"Unhandled error in event loop: {context.get('message')}", exc_info=exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
    logger.info("ScriptHook is ready to receive webhooks.")
    yield
    active = app.state.runner.active
    if active:
        logger.warning(f"Shutting down with {active} deployment(s) still running.")


def create_app(
        settings: Optional[Settings] = None,
        runner: Optional[DeployRunner] = None,
        notifier: Optional[Notifications] = None,
        rate_limiter: Optional[RateLimiter] = None
) -> FastAPI:
    """
    Build the application around an already validated configuration.

    With no settings the configuration is loaded here, so the app can also be
    served with `uvicorn main:create_app --factory`.
    """
    if settings is None:
        settings = load_settings()
    if notifier is None:
        notifier = Notifications(settings.slack_webhook_url)

    app = FastAPI(
        title="ScriptHook",
        description="GitHub push webhook receiver that runs local deployment scripts",
        version="1.0.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.runner = runner if runner is not None else DeployRunner(settings, notifier)
    app.state.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter(settings.rate_limit_max, settings.rate_limit_window)

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):
        logger.error(f"Unhandled error while serving {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"}
        )

    app.include_router(health_router)
    app.include_router(webhook_router)
    return app


def main():
    # Initialize logging once the debug flag is known; env value until then
    setup_logging(as_bool(os.getenv("DEBUG", "")))
    logger.info("Starting the ScriptHook application...")

    try:
        settings = load_settings()
    except ConfigError as e:
        logger.critical(f"Configuration error, refusing to start: {e}")
        sys.exit(1)

    setup_logging(settings.debug, settings.log_db_path)
    app = create_app(settings)
    logger.info(f"Webhook server listening on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
