import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Load env before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from tutorhub.core.config import settings, validate_config
from tutorhub.core.database import create_all_tables
from tutorhub.core.logging import configure_logging
from tutorhub.core.middleware.request_id import RequestIdMiddleware
from tutorhub.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from tutorhub.api import companions, health, sessions, subscriptions, webhooks

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("tutorhub")
    logger.info("Starting TutorHub backend...")
    if settings.DATABASE_URL:
        try:
            create_all_tables()
        except SQLAlchemyError:
            # /readyz reports the missing tables
            logger.exception("startup.create_tables_failed")
    try:
        yield
    finally:
        logging.getLogger("tutorhub").info("Stopping TutorHub backend...")


app = FastAPI(title="TutorHub - Backend", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (adjust origins in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.APP_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.root_router, tags=["health"])
app.include_router(health.router, tags=["health"])
app.include_router(webhooks.router, tags=["webhooks"])
app.include_router(subscriptions.router, tags=["subscription"])
app.include_router(companions.router, tags=["companions"])
app.include_router(sessions.router, tags=["sessions"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tutorhub.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=False)
