from __future__ import annotations

"""
Key/value stores for the valid-settings registry.

Every backend offers plain get/set of a whole value plus two set-shaped
helpers used by ValidityCache:
  - merge(key, entries): additive update that must not lose concurrent writes
  - has_member(key, member): membership test; a missing key means "no members"
"""

import fcntl
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional

import redis

log = logging.getLogger(__name__)


class CacheBackend:
    name = "base"

    def __init__(self) -> None:
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def merge(self, key: str, entries: Mapping[str, str]) -> None:
        # Read/merge/write serialized within this process.
        with self._lock:
            current = self.get(key) or {}
            current.update(entries)
            self.set(key, current)

    def has_member(self, key: str, member: str) -> bool:
        data = self.get(key)
        return bool(data) and member in data

    def count(self, key: str) -> int:
        data = self.get(key)
        return len(data) if data else 0


class MemoryCacheBackend(CacheBackend):
    """Process-local store; values are copied on the way in and out."""
    name = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            value = self._data.get(key)
            return dict(value) if isinstance(value, dict) else value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = dict(value) if isinstance(value, dict) else value


class JsonFileCacheBackend(CacheBackend):
    """
    One JSON document per key under `root`:

        root/
          └─ {key}.json

    Writes go through a temp file + os.replace; merge additionally holds an
    exclusive flock on `{key}.lock` so several worker processes can share it.
    """
    name = "file"

    def __init__(self, root: str = "data/cache") -> None:
        super().__init__()
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return self.root / f"{safe}.json"

    @contextmanager
    def _file_lock(self, key: str) -> Iterator[None]:
        lock_path = self._path(key).with_suffix(".lock")
        with lock_path.open("a") as fh:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        try:
            return json.loads(path.read_text())
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            log.warning("Discarding corrupt cache file %s", path)
            return None

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        fd, tmp = tempfile.mkstemp(dir=str(self.root), prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(value, f)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def merge(self, key: str, entries: Mapping[str, str]) -> None:
        with self._lock, self._file_lock(key):
            current = self.get(key) or {}
            current.update(entries)
            self.set(key, current)


class RedisCacheBackend(CacheBackend):
    """
    Stores each set as a Redis hash (member -> member). HSET is additive and
    atomic on the server, so concurrent registrations never drop entries.
    """
    name = "redis"

    def __init__(self, url: str = "redis://localhost:6379/0", client: Optional[redis.Redis] = None) -> None:
        super().__init__()
        self.client = client or redis.Redis.from_url(url, decode_responses=True)

    def get(self, key: str) -> Optional[Any]:
        data = self.client.hgetall(key)
        return dict(data) if data else None

    def set(self, key: str, value: Any) -> None:
        pipe = self.client.pipeline(transaction=True)
        pipe.delete(key)
        if value:
            pipe.hset(key, mapping=dict(value))
        pipe.execute()

    def merge(self, key: str, entries: Mapping[str, str]) -> None:
        if entries:
            self.client.hset(key, mapping=dict(entries))

    def has_member(self, key: str, member: str) -> bool:
        return bool(self.client.hexists(key, member))

    def count(self, key: str) -> int:
        return int(self.client.hlen(key))


def make_backend(kind: str, *, path: str = "data/cache", redis_url: str = "redis://localhost:6379/0") -> CacheBackend:
    kind = (kind or "memory").lower()
    if kind == "memory":
        return MemoryCacheBackend()
    if kind == "file":
        return JsonFileCacheBackend(path)
    if kind == "redis":
        return RedisCacheBackend(redis_url)
    raise ValueError(f"Unknown cache backend {kind!r} (expected memory|file|redis)")
