import asyncio
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Optional

from fastapi.responses import Response

from file_gateway.logger_config import setup_logger

logger = setup_logger()


@dataclass(frozen=True)
class CachedResponse:
    """Snapshot of a response: status, headers and the full body."""
    status_code: int
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_response(cls, response: Response) -> "CachedResponse":
        headers = {k: v for k, v in response.headers.items() if k.lower() != "content-length"}
        return cls(status_code=response.status_code, body=bytes(response.body), headers=headers)

    def to_response(self) -> Response:
        return Response(content=self.body, status_code=self.status_code, headers=dict(self.headers))


class ResponseCache(ABC):
    """Read-through cache keyed by the full request URL."""

    @abstractmethod
    async def match(self, url: str) -> Optional[CachedResponse]:
        ...

    @abstractmethod
    async def put(self, url: str, response: CachedResponse) -> None:
        ...


class MemoryResponseCache(ResponseCache):
    """In-process LRU cache bounded by entry count and by total body size.

    Entries are only ever dropped by eviction. A body larger than
    *max_bytes* on its own is not stored.
    """

    def __init__(self, max_entries: int = 1024, max_bytes: int = 256 * 1024 * 1024):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        self._max_entries = max_entries
        self._max_bytes = max_bytes
        self._entries: "OrderedDict[str, CachedResponse]" = OrderedDict()
        self._total_bytes = 0
        self._lock = asyncio.Lock()

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    async def match(self, url: str) -> Optional[CachedResponse]:
        async with self._lock:
            cached = self._entries.get(url)
            if cached is not None:
                self._entries.move_to_end(url)
            return cached

    async def put(self, url: str, response: CachedResponse) -> None:
        size = len(response.body)
        if size > self._max_bytes:
            logger.debug(f"Not caching {url}: {size} bytes exceeds cache capacity")
            return

        async with self._lock:
            previous = self._entries.pop(url, None)
            if previous is not None:
                self._total_bytes -= len(previous.body)
            self._entries[url] = response
            self._total_bytes += size

            while len(self._entries) > self._max_entries or self._total_bytes > self._max_bytes:
                evicted, entry = self._entries.popitem(last=False)
                self._total_bytes -= len(entry.body)
                logger.debug(f"Evicted cached response for {evicted}")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: str) -> bool:
        return url in self._entries
