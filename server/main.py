"""Entry point for the file server."""

import time
import uuid
from typing import Type

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from docstore.exceptions import StoreError
from gridstore.exceptions import (
    CorruptFileError,
    FileNotFoundError as GridFileNotFoundError,
    GridFSException,
    InvalidArgumentError,
    StreamError,
)
from server.config import SERVER_HOST, SERVER_PORT
from server.routes import file_router

logger = setup_logging('server')

app = FastAPI(
    title="GridStore File Server",
    description="Chunked file storage over a document store",
    version="1.0.0"
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(f"Request started: {request.method} {request.url.path} [request_id={request_id}]")

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


def _register_error_handler(exc_class: Type[Exception], status_code: int, code: str) -> None:
    """
    Map an exception class to a JSON error response with the given status and code.

    Client errors are logged as warnings, everything else with the traceback.
    """
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, 'request_id', 'unknown')
        message = f"{exc_class.__name__}: {exc} [request_id={request_id}] path={request.url.path}"
        if status_code < 500:
            logger.warning(message)
        else:
            logger.error(message, exc_info=exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc), "code": code})

    app.add_exception_handler(exc_class, handler)


_register_error_handler(GridFileNotFoundError, status.HTTP_404_NOT_FOUND, "FILE_NOT_FOUND")
_register_error_handler(InvalidArgumentError, status.HTTP_400_BAD_REQUEST, "INVALID_ARGUMENT")
_register_error_handler(CorruptFileError, status.HTTP_500_INTERNAL_SERVER_ERROR, "CORRUPT_FILE")
_register_error_handler(StreamError, status.HTTP_500_INTERNAL_SERVER_ERROR, "STREAM_ERROR")
_register_error_handler(StoreError, status.HTTP_503_SERVICE_UNAVAILABLE, "STORE_UNAVAILABLE")
_register_error_handler(GridFSException, status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR")


app.include_router(file_router)


@app.get("/")
async def root():
    """
    Root endpoint for health check.
    """
    return {"message": "GridStore File Server API", "status": "running"}


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "server.main:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
    )


if __name__ == "__main__":
    main()
