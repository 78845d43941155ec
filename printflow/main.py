from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from printflow import config
from printflow.database import init_db
from printflow.errors import ConcurrentUpdate, InsufficientData, InvalidTransition, LineNotFound, PrintflowError
from printflow.routers.api import router

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    InvalidTransition: status.HTTP_409_CONFLICT,
    ConcurrentUpdate: status.HTTP_409_CONFLICT,
    LineNotFound: status.HTTP_404_NOT_FOUND,
    InsufficientData: status.HTTP_422_UNPROCESSABLE_CONTENT,
}


def configure_logging() -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def printflow_error_handler(request: Request, exc: PrintflowError) -> JSONResponse:
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "errorCode": exc.error_code})


def create_app() -> FastAPI:
    configure_logging()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        init_db()
        logger.info("printflow API started")
        yield

    app = FastAPI(
        title="Printflow Workflow Engine",
        description="Production stage tracking, health scoring and delay prediction for order lines.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_exception_handler(PrintflowError, printflow_error_handler)
    app.include_router(router)

    @app.get("/health")
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
