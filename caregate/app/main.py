"""FastAPI application bootstrap for CareGate."""
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from .domain.errors import AccessControlError
from .infra.db import init_db
from .infra.logging import setup_logging
from .routers import doctors, patients, records

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    yield


async def access_control_error_handler(request: Request, exc: AccessControlError) -> JSONResponse:
    logger.info("request refused", path=request.url.path, code=exc.code, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": exc.code})


async def storage_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("storage unavailable", path=request.url.path, error=str(exc.orig))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Storage is temporarily unavailable", "code": "storage_unavailable"},
    )


def create_app() -> FastAPI:
    app = FastAPI(title="CareGate API", version="0.1.0", lifespan=lifespan)

    app.add_exception_handler(AccessControlError, access_control_error_handler)
    app.add_exception_handler(OperationalError, storage_error_handler)

    app.include_router(doctors.router, prefix="/doctors", tags=["doctors"])
    app.include_router(patients.router, prefix="/patients", tags=["patients"])
    app.include_router(records.router, prefix="/records", tags=["records"])

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok"}

    return app


app = create_app()
