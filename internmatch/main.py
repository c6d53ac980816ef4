"""
InternMatch - Main Application

FastAPI backend with:
- PostgreSQL for structured data (SQLAlchemy)
- MongoDB for AI outputs
- ABA PayWay subscriptions with monthly usage quotas
- JWT authentication enforced by middleware

Run: uvicorn internmatch.main:app --reload
"""

import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from internmatch.api.routes import api_router
from internmatch.core.auth import RequestAuthenticator
from internmatch.core.config import get_settings
from internmatch.core.errors import (
    AppError, app_error_handler, http_error_handler, unhandled_exception_handler, validation_error_handler,
)
from internmatch.core.logging import configure_logging
from internmatch.db.mongodb import init_mongo_indexes, test_mongo_connection
from internmatch.db.postgres import create_tables, test_postgres_connection

settings = get_settings()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="InternMatch API",
    description="""
    Job and internship marketplace backend.

    ## Features
    - **Authentication**: JWT for students, companies and admins; email verification
    - **Jobs & Applications**: Post, browse, apply, move candidates through the pipeline
    - **AI tooling**: ATS scoring, resume builder, role suggestions, interview prep
    - **Billing**: ABA PayWay subscriptions, plan resolution, monthly usage quotas
    - **Admin**: User management, analytics overview, audit trail
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Last added runs outermost: CORS wraps the authenticator
app.add_middleware(RequestAuthenticator)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# Include API routes
app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup_event():
    """Create tables and MongoDB indexes."""
    configure_logging(settings.log_level)
    create_tables()
    try:
        init_mongo_indexes()
    except Exception as e:
        logger.warning("MongoDB index initialization failed: %s", e)


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    postgres_ok = await run_in_threadpool(test_postgres_connection)
    mongo_ok = await run_in_threadpool(test_mongo_connection)
    return {
        "status": "healthy" if postgres_ok else "degraded",
        "postgres": "connected" if postgres_ok else "disconnected",
        "mongodb": "connected" if mongo_ok else "disconnected",
    }
