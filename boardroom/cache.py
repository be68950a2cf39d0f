"""Advisory, content-addressed cache over the SQLite substrate.

Every read or write failure is logged and swallowed: a broken cache makes
the pipeline slower, never wrong and never failed.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any, Callable

from boardroom.db.database import Database

logger = logging.getLogger(__name__)

DAY = 24 * 60 * 60

OPERATION_TTLS = {
    "report": 30 * DAY,
    "quality-control": 30 * DAY,
    "research": DAY,
}
DEFAULT_TTL = DAY


def _normalise(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() or None
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted({str(n) for n in (_normalise(v) for v in value) if n is not None})
        return items or None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value
    return str(value).strip().lower() or None


def content_digest(text: str) -> str:
    """Exact fingerprint of free text, for keys where case is significant."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def make_cache_key(operation: str, **fields: Any) -> str:
    """Derive a key from an operation name and its significant inputs.

    Strings are case- and whitespace-normalised, collections are treated as
    unordered sets, empty fields are dropped and fields are sorted by name,
    so neither argument order nor list order perturbs the key.
    """
    normalised = {
        name: value
        for name, value in ((n, _normalise(v)) for n, v in fields.items())
        if value is not None
    }
    material = json.dumps(
        [operation.strip().lower(), sorted(normalised.items())],
        separators=(",", ":"),
        sort_keys=True,
    )
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return f"{operation}:{digest}"


class ReportCache:
    """Get/set with time-to-live over ``Database``."""

    def __init__(
        self,
        db: Database,
        ttls: dict[str, int] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.ttls = {**OPERATION_TTLS, **(ttls or {})}
        self._clock = clock

    def ttl_for(self, key: str) -> int:
        operation = key.split(":", 1)[0]
        return self.ttls.get(operation, DEFAULT_TTL)

    async def get(self, key: str) -> Any | None:
        """Return the live value for ``key`` or ``None`` on a miss."""
        try:
            row = await self.db.cache_get(key)
            if row is None:
                return None
            if self._clock() >= row["expires_at"]:
                await self.db.cache_delete(key)
                return None
            return json.loads(row["payload"])
        except Exception as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Store ``value``; returns False instead of raising when the write fails."""
        try:
            now = self._clock()
            ttl = self.ttl_for(key) if ttl is None else ttl
            await self.db.cache_put(key, json.dumps(value), now, now + ttl)
            return True
        except Exception as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)
            return False

    async def purge_expired(self) -> int:
        try:
            removed = await self.db.cache_purge_expired(self._clock())
        except Exception as exc:
            logger.warning("Cache cleanup failed: %s", exc)
            return 0
        if removed:
            logger.info("Purged %d expired cache entries", removed)
        return removed

    async def clear_operation(self, operation: str) -> int:
        try:
            return await self.db.cache_clear_prefix(f"{operation}:")
        except Exception as exc:
            logger.warning("Cache clear failed for %s: %s", operation, exc)
            return 0
