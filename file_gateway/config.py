"""Configuration settings for the file gateway."""
import os


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    try:
        return int(value) if value else default
    except ValueError:
        return default


# Public URLs
DOMAIN = os.getenv("DOMAIN", "localhost:8000")

# Upload limits
MAX_SIZE_MB = _int_env("MAX_SIZE_MB", 100)

# Shared secret for uploads, empty disables the check
AUTH = os.getenv("AUTH", "")

# Object store: "local" or "r2"
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")

# Directory paths (local backend)
DATA_DIR = os.getenv("DATA_DIR", "./data")
TEMP_DIR = os.getenv("TEMP_DIR", "./temp")

# R2 / S3-compatible backend
R2_BUCKET = os.getenv("R2_BUCKET", "")
R2_ENDPOINT_URL = os.getenv("R2_ENDPOINT_URL", "")
R2_REGION = os.getenv("R2_REGION", "auto")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")

# Response cache
CACHE_MAX_ENTRIES = _int_env("CACHE_MAX_ENTRIES", 1024)
CACHE_MAX_BYTES = _int_env("CACHE_MAX_BYTES", 256 * 1024 * 1024)  # 256MB
# Larger objects are streamed straight from the bucket and never cached
CACHE_MAX_OBJECT_BYTES = _int_env("CACHE_MAX_OBJECT_BYTES", 10 * 1024 * 1024)  # 10MB

# Logging
LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = _int_env("PORT", 8000)
