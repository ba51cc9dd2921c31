import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from matchbank.api import (
    health_router,
    marketplace_router,
    monitoring_router,
    resolution_router,
)
from matchbank.config import settings
from matchbank.db.database import init_db
from matchbank.models.failure import ApiResponse, InvalidArgument, MarketError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    await init_db()
    yield


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("matchbank"),
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(marketplace_router)
app.include_router(monitoring_router)
app.include_router(resolution_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _envelope(status_code: int, body: ApiResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(MarketError)
async def market_error_handler(_request: Request, exc: MarketError) -> JSONResponse:
    return _envelope(exc.status_code, exc.to_response())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    error = InvalidArgument("Request failed validation.", detail=str(exc.errors()))
    return _envelope(error.status_code, error.to_response())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("UNHANDLED_ERROR", extra={"path": request.url.path})
    return _envelope(500, ApiResponse.unknown_failure(detail=type(exc).__name__))
