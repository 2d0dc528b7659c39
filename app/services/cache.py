from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, Type, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class CacheBackend(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any, ttl: float) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_pattern(self, prefix: str) -> int: ...


class InMemoryCacheBackend:
    """Process-local key/value cache with per-entry expiry."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._clock = clock

    async def get(self, key: str) -> Any:
        await asyncio.sleep(0)
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl: float) -> None:
        await asyncio.sleep(0)
        self._entries[key] = (self._clock() + ttl, value)

    async def delete(self, key: str) -> None:
        await asyncio.sleep(0)
        self._entries.pop(key, None)

    async def delete_pattern(self, prefix: str) -> int:
        await asyncio.sleep(0)
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def __len__(self) -> int:
        return len(self._entries)


class CacheService:
    """Best-effort cache in front of the read paths.

    Failures of the backend are logged and reported as a miss (or ignored for
    writes); they never propagate to the caller.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        enabled: bool = True,
        default_ttl: float = 3600,
        entity_ttl: float = 1800,
        list_ttl: float = 600,
        stats_ttl: float = 900,
    ) -> None:
        self._backend = backend
        self.enabled = enabled
        self.default_ttl = default_ttl
        self.entity_ttl = entity_ttl
        self.list_ttl = list_ttl
        self.stats_ttl = stats_ttl

    async def get_model(self, key: str, model: Type[ModelT]) -> Optional[ModelT]:
        if not self.enabled:
            return None
        try:
            data = await self._backend.get(key)
            if data is None:
                return None
            logger.debug("Cache hit for %s", key)
            return model.model_validate(data)
        except Exception as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

    async def set_model(self, key: str, value: BaseModel, ttl: float | None = None) -> None:
        if not self.enabled:
            return
        try:
            await self._backend.set(
                key, value.model_dump(mode="json"), ttl if ttl is not None else self.default_ttl
            )
        except Exception as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    async def delete(self, key: str) -> None:
        if not self.enabled:
            return
        try:
            await self._backend.delete(key)
        except Exception as exc:
            logger.warning("Cache delete failed for %s: %s", key, exc)

    async def delete_pattern(self, prefix: str) -> None:
        if not self.enabled:
            return
        try:
            removed = await self._backend.delete_pattern(prefix)
            logger.debug("Evicted %s cache entries under %s", removed, prefix)
        except Exception as exc:
            logger.warning("Cache prefix delete failed for %s: %s", prefix, exc)
