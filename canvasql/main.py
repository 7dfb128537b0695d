"""canvasql FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from canvasql.api.routes import flows, health, metrics
from canvasql.core.config import settings
from canvasql.core.logging_config import configure_logging
from canvasql.core.metrics import app_info
from canvasql.core.middleware import ObservabilityMiddleware

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle events."""
    app_info.info({"version": "0.1.0", "env": settings.app_env})
    yield


app = FastAPI(
    title="canvasql",
    description="Visual query canvas: validates node graphs and compiles them to SQL",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes: all REST under /api/v1/
app.include_router(health.router, tags=["health"])
app.include_router(flows.router, prefix="/api/v1/flows", tags=["flows"])
app.include_router(metrics.router, tags=["metrics"])
