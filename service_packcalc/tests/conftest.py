"""
Shared fixtures for Pack Calculator tests.
"""

import fnmatch
from typing import Any, Dict, Optional

import pytest


class InMemoryRedis:
    """Async stand-in for the subset of redis.asyncio.Redis the cache uses.

    Expiry is driven by ``advance(seconds)`` rather than wall time. Setting
    ``fail`` makes every call raise ConnectionError.
    """

    def __init__(self):
        self.data: Dict[str, Any] = {}
        self.ttls: Dict[str, int] = {}
        self.expires_at: Dict[str, float] = {}
        self.now = 0.0
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise ConnectionError("redis unreachable")

    def _expire(self):
        for key in [k for k, t in self.expires_at.items() if t <= self.now]:
            self.data.pop(key, None)
            self.ttls.pop(key, None)
            self.expires_at.pop(key, None)

    def advance(self, seconds: float):
        self.now += seconds
        self._expire()

    async def get(self, key: str) -> Optional[Any]:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: Any, ex: Optional[int] = None):
        self._check()
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
            self.expires_at[key] = self.now + ex
        else:
            self.ttls.pop(key, None)
            self.expires_at.pop(key, None)
        return True

    async def incr(self, key: str) -> int:
        self._check()
        value = int(self.data.get(key, 0)) + 1
        self.data[key] = str(value)
        return value

    async def mget(self, *keys: str):
        self._check()
        return [self.data.get(key) for key in keys]

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if key in self.data:
                removed += 1
            self.data.pop(key, None)
            self.ttls.pop(key, None)
            self.expires_at.pop(key, None)
        return removed

    async def scan_iter(self, match: str = "*", count: int = 100):
        self._check()
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def info(self) -> Dict[str, Any]:
        self._check()
        return {"used_memory_human": "1.00M", "uptime_in_seconds": 42}

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_redis():
    """In-memory Redis double."""
    return InMemoryRedis()
