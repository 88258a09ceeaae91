import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

# .env must be loaded before aifaq.core.config builds its Settings
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from aifaq.api import billing, health, products, settings as settings_api, webhooks  # noqa: E402
from aifaq.core.config import settings, validate_config  # noqa: E402
from aifaq.core.database import create_all_tables  # noqa: E402
from aifaq.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from aifaq.core.logging import configure_logging  # noqa: E402
from aifaq.core.middleware.request_id import RequestIdMiddleware  # noqa: E402

logger = logging.getLogger("aifaq")


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_all_tables()
    logger.info(
        "app.started",
        extra={"env": settings.ENV, "api_version": settings.SHOPIFY_API_VERSION, "billing_test_mode": settings.billing_test_mode},
    )
    yield
    logger.info("app.stopped")


def create_app() -> FastAPI:
    configure_logging(settings.ENV)
    validate_config()

    app = FastAPI(title="AI FAQ", lifespan=lifespan)
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health.router)
    for module in (billing, products, settings_api, webhooks):
        app.include_router(module.router, prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("aifaq.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), log_level="info")
