import re
import time
from typing import Callable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.datastructures import UploadFile

from file_gateway.app.errors import GatewayError, MissingInput, PayloadTooLarge, Unauthorized
from file_gateway.app.services.storage_manager import ObjectStore
from file_gateway.logger_config import setup_logger

logger = setup_logger()

EXTENSION_PATTERN = re.compile(r"\.[^/.]+$")


def current_millis() -> int:
    return int(time.time() * 1000)


def derive_key(filename: str, folder_path: str, timestamp: int) -> str:
    """Build the storage key for an uploaded file.

    The key is ``{folder}/{name}_{timestamp}.{extension}``, where *folder* is
    *folder_path* without surrounding whitespace and slashes. A blank folder
    puts the object at the bucket root; a folder made only of slashes gives a
    key with a leading "/".
    """
    extension = filename.rsplit(".", 1)[1] if "." in filename else ""
    base_name = EXTENSION_PATTERN.sub("", filename)
    name = f"{base_name}_{timestamp}.{extension}"

    folder_path = folder_path.strip()
    if folder_path:
        return f"{folder_path.strip('/')}/{name}"
    return name


def get_file_size(file: UploadFile) -> int:
    if file.size is not None:
        return file.size
    file.file.seek(0, 2)
    size = file.file.tell()
    file.file.seek(0)
    return size


class UploadService:
    def __init__(
        self,
        bucket: ObjectStore,
        domain: str,
        max_size_mb: int = 100,
        auth_secret: Optional[str] = None,
        clock: Callable[[], int] = current_millis,
    ):
        """
        Args:
            bucket: Object store that receives the uploads
            domain: Public hostname used to build the returned URL
            max_size_mb: Upload size ceiling in megabytes
            auth_secret: Value the Authorization header must equal. Empty or None disables the check
            clock: Returns the current time in milliseconds since the epoch
        """
        if max_size_mb < 0:
            raise ValueError("max_size_mb must not be negative")
        self.bucket = bucket
        self.domain = domain
        self.max_size_mb = max_size_mb
        self.max_size = max_size_mb * 1024 * 1024
        self.auth_secret = auth_secret
        self.clock = clock

    def authorize(self, auth_header: Optional[str]) -> None:
        if not self.auth_secret:
            return
        if not auth_header:
            raise Unauthorized("missing Authorization header")
        if auth_header != self.auth_secret:
            raise Unauthorized("Authorization verification failed")

    def public_url(self, key: str) -> str:
        return f"https://{self.domain}/{key}"

    async def handle(self, request: Request) -> Response:
        """Store the multipart ``file`` field and return its public URL as a JSON string."""
        logger.info("Receiving upload request")
        try:
            self.authorize(request.headers.get("Authorization"))

            form = await request.form()
            try:
                file = form.get("file")
                folder_path = form.get("path")
                if not isinstance(file, UploadFile):
                    raise MissingInput("missing file")
                if not isinstance(folder_path, str):
                    folder_path = ""

                size = get_file_size(file)
                logger.debug(f"Upload {file.filename!r}: {size} bytes, type {file.content_type!r}")
                if size > self.max_size:
                    raise PayloadTooLarge(f"file size exceeds {self.max_size_mb}MB limit")

                key = derive_key(file.filename or "", folder_path, self.clock())
                await self.bucket.put(key, file.file, file.content_type)
            finally:
                await form.close()

            logger.info(f"Stored upload under key: {key}")
            return JSONResponse(self.public_url(key))

        except GatewayError as e:
            logger.warning(f"Upload rejected ({e.status_code}): {e.message}")
            return JSONResponse({"error": e.message}, status_code=e.status_code)
        except Exception as e:
            logger.error(f"Error uploading file: {str(e)}", exc_info=True)
            return JSONResponse({"error": str(e)}, status_code=500)
