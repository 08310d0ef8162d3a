from typing import Optional

from fastapi import Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse

from file_gateway.app.errors import NotFound
from file_gateway.app.services.response_cache import CachedResponse, ResponseCache
from file_gateway.app.services.storage_manager import ObjectStore
from file_gateway.logger_config import setup_logger

logger = setup_logger()

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "html": "text/html",
    "css": "text/css",
    "js": "application/javascript",
    "json": "application/json",
    "zip": "application/zip",
    "rar": "application/x-rar-compressed",
    "7z": "application/x-7z-compressed",
}


def key_from_path(path: str) -> str:
    return path[1:] if path.startswith("/") else path


def resolve_content_type(key: str, stored_type: Optional[str]) -> str:
    """Prefer the stored content type; fall back to the key's extension."""
    if stored_type and stored_type != DEFAULT_CONTENT_TYPE:
        return stored_type
    extension = key.rsplit(".", 1)[-1].lower()
    return CONTENT_TYPES.get(extension, DEFAULT_CONTENT_TYPE)


class RetrievalService:
    def __init__(
        self,
        bucket: ObjectStore,
        cache: ResponseCache,
        max_cached_object_size: int = 10 * 1024 * 1024,
    ):
        """
        Args:
            bucket: Object store the keys are read from
            cache: Response cache keyed by the full request URL
            max_cached_object_size: Objects larger than this many bytes are streamed and never cached
        """
        self.bucket = bucket
        self.cache = cache
        self.max_cached_object_size = max_cached_object_size

    async def fetch(self, url: str, path: str) -> Response:
        cached = await self.cache.match(url)
        if cached is not None:
            logger.debug(f"Cache hit: {url}")
            return cached.to_response()

        key = key_from_path(path)
        stored = await self.bucket.get(key)
        if stored is None:
            raise NotFound("Failed to fetch file content")

        content_type = resolve_content_type(key, stored.content_type)
        logger.debug(f"Serving {key!r} as {content_type}")
        headers = {"Content-Type": content_type, "Content-Disposition": "inline"}

        if stored.size > self.max_cached_object_size:
            logger.debug(f"Streaming {key!r} uncached ({stored.size} bytes)")
            return StreamingResponse(stored.chunks, status_code=200, headers=headers)

        response = Response(content=await stored.read(), status_code=200, headers=headers)
        await self.cache.put(url, CachedResponse.from_response(response))
        return response

    async def handle(self, request: Request) -> Response:
        """Serve the object named by the request path, going through the response cache."""
        url = str(request.url)
        logger.info(f"Receiving download request for: {url}")
        try:
            return await self.fetch(url, request.url.path)
        except NotFound as e:
            logger.info(f"Object not found for path: {request.url.path}")
            return PlainTextResponse(e.message, status_code=e.status_code)
