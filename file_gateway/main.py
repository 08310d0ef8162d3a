from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response

from file_gateway import config
from file_gateway.app.errors import MethodNotAllowed
from file_gateway.app.services.response_cache import MemoryResponseCache
from file_gateway.app.services.retrieval_service import RetrievalService
from file_gateway.app.services.storage_manager import create_bucket
from file_gateway.app.services.upload_service import UploadService
from file_gateway.logger_config import setup_logger

# Logger setup
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create the bucket and the two handlers sharing it
    bucket = await create_bucket()
    app.state.upload_service = UploadService(
        bucket,
        domain=config.DOMAIN,
        max_size_mb=config.MAX_SIZE_MB,
        auth_secret=config.AUTH,
    )
    app.state.retrieval_service = RetrievalService(
        bucket,
        MemoryResponseCache(config.CACHE_MAX_ENTRIES, config.CACHE_MAX_BYTES),
        max_cached_object_size=config.CACHE_MAX_OBJECT_BYTES,
    )
    yield


# Create FastAPI app with lifespan. Every path other than /upload names an
# object, so the generated docs routes are turned off.
app = FastAPI(
    title="File Gateway",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)


async def upload(request: Request) -> Response:
    """Upload a file as multipart form data (fields: file, optional path)."""
    if request.method != "POST":
        error = MethodNotAllowed("Method Not Allowed")
        return PlainTextResponse(error.message, status_code=error.status_code)
    return await request.app.state.upload_service.handle(request)


async def retrieve(request: Request) -> Response:
    """Serve a stored object by its key, for any method."""
    return await request.app.state.retrieval_service.handle(request)


# Routes without a method list accept every HTTP method
app.add_route("/upload", upload)
app.add_route("/{key:path}", retrieve)


def run():
    logger.info("Starting File Gateway...")
    logger.info(f"Public domain: {config.DOMAIN}")
    logger.info(f"Storage backend: {config.STORAGE_BACKEND}")
    if config.STORAGE_BACKEND == "local":
        logger.info(f"Data directory: {Path(config.DATA_DIR).resolve()}")
    logger.info(f"Maximum upload size: {config.MAX_SIZE_MB} MB")
    logger.info(f"Upload authorization: {'enabled' if config.AUTH else 'disabled'}")
    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
