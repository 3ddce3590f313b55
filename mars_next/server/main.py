"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS,
Logfire request tracing), registers the exception handlers and includes all
API routers. It serves as the root of the web server.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mars_next.core.logging_config import get_logger, setup_logging
from mars_next.core.monitoring import initialize_logfire

from .api.v1 import chat, health, usage
from .core import constant
from .core.config import settings
from .core.database import init_db
from .exception_handlers import setup_exception_handlers
from .middleware import LogfireMiddleware

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Creates the database tables on startup and initializes Logfire monitoring.
    """
    # Startup
    logger.info("Starting up MARS Next Server...")
    initialize_logfire(app)
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    yield

    # Shutdown
    logger.info("Shutting down MARS Next Server...")


app = FastAPI(
    title=constant.PROJECT_NAME,
    description="""
    MARS Next Server API

    This API runs the agents of a project against a user's message. It streams a
    single agent's answer token by token over Server-Sent Events, runs several agents
    and synthesizes their answers, and reports token usage.
    """,
    version=constant.VERSION,
    openapi_url=f"{constant.API_V1_STR}/openapi.json",
    docs_url=f"{constant.API_V1_STR}/docs",
    redoc_url=f"{constant.API_V1_STR}/redoc",
    lifespan=lifespan,
)

# Set all CORS enabled origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=settings.cors.allow_methods,
    allow_headers=settings.cors.allow_headers,
)
app.add_middleware(LogfireMiddleware)

setup_exception_handlers(app)

app.include_router(health.router, tags=["health"])
app.include_router(chat.router, prefix=f"{constant.API_V1_STR}/projects", tags=["chat"])
app.include_router(usage.router, prefix=f"{constant.API_V1_STR}/usage", tags=["usage"])
