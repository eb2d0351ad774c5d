"""Main FastAPI application."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from flagkit.config import get_settings
from flagkit.exceptions import FlagkitError
from flagkit.middleware.logging import LoggingMiddleware, get_logger
from flagkit.api import evaluation, experiments, flags, health, setup
from flagkit.database import engine, Base

settings = get_settings()
logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    Base.metadata.create_all(bind=engine)
    logger.info("database_tables_ready")

    yield

    logger.info("shutdown", service=settings.app_name)

app = FastAPI(
    title=settings.app_name,
    description="Feature flags and A/B experiments with deterministic bucketing",
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

allowed_origins = [
    "http://localhost:5173",
    "http://localhost:3000",
    settings.frontend_url,
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Trace-ID"]
)

app.add_middleware(LoggingMiddleware)


@app.exception_handler(FlagkitError)
async def flagkit_error_handler(request: Request, exc: FlagkitError):
    """Map domain errors to their HTTP status."""
    logger.warning(
        "request_rejected",
        path=request.url.path,
        error=exc.message,
        error_type=type(exc).__name__,
        status_code=exc.status_code
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__}
    )


app.include_router(health.router, tags=["health"])
app.include_router(flags.router, tags=["flags"])
app.include_router(experiments.router, tags=["experiments"])
app.include_router(evaluation.router, tags=["evaluation"])
app.include_router(setup.router, tags=["setup"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": "0.1.0",
        "docs": "/docs" if settings.debug else "disabled",
        "endpoints": {
            "health": "/health",
            "flags": "/platforms/{platform}/environments/{environment}/flags",
            "experiments": "/platforms/{platform}/environments/{environment}/experiments",
            "evaluate": "POST /platforms/{platform}/environments/{environment}/evaluate"
        }
    }


# uvicorn flagkit.main:app --reload
