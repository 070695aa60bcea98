from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)

EXISTS_MARKER = {"exists": True}


class LocalCache:
    """Durable key/value map backed by one JSON file.

    Entries never expire. Every mutation is flushed through a temp file and an
    atomic replace so a crash mid-run keeps the last complete state.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._data: dict[str, Any] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def _load_locked(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Local cache %s unreadable, starting empty: %s", self._path, exc)
            return
        if isinstance(payload, dict):
            self._data = payload

    def _persist_locked(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
        tmp_path.write_text(json.dumps(self._data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)

    def get(self, key: str) -> Any:
        with self._lock:
            self._load_locked()
            return self._data.get(key)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            self._load_locked()
            return len(self._data)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._load_locked()
            self._data[key] = value
            self._persist_locked()

    def delete(self, key: str) -> None:
        with self._lock:
            self._load_locked()
            if self._data.pop(key, None) is not None:
                self._persist_locked()


@dataclass(frozen=True)
class CacheLookup:
    value: Any
    source: str

    @property
    def hit(self) -> bool:
        return self.source != "miss"


def cache_aside(
    cache: LocalCache,
    key: str,
    fetch_remote: Callable[[], Any],
    *,
    force: bool = False,
    accept_cached: Callable[[Any], bool] | None = None,
    to_cached: Callable[[Any], Any] | None = None,
) -> CacheLookup:
    """Local cache first, then the remote lookup, backfilling the cache on a remote hit.

    ``fetch_remote`` returns ``None`` for a miss. ``force`` bypasses both tiers'
    short-circuit and always reports a miss without calling the remote.
    """
    if force:
        return CacheLookup(None, "miss")
    cached = cache.get(key)
    if cached is not None and (accept_cached is None or accept_cached(cached)):
        return CacheLookup(cached, "cache")
    value = fetch_remote()
    if value is None:
        return CacheLookup(None, "miss")
    cache.set(key, to_cached(value) if to_cached else value)
    logger.debug("Backfilled local cache %s key=%s", cache.path.name, key)
    return CacheLookup(value, "remote")
