"""Read-through cache in front of a template store.

Materialized templates never change once stored, so a cached record only goes
stale when a newer version is added (for "latest" lookups) or when records are
deleted. Entries also expire after a TTL so out-of-process writers are picked
up eventually.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from workflow_orchestrator.templates.model import WorkflowTemplate
from workflow_orchestrator.templates.store import TemplateStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0

# (template_id, version); version None means "latest"
_FindKey = tuple[str, int | None]


@dataclass(frozen=True, slots=True)
class CacheStats:
    records: int
    expired: int
    hits: int
    misses: int
    ttl_seconds: float

    def to_json(self) -> dict[str, Any]:
        return {
            "records": self.records,
            "expired": self.expired,
            "hits": self.hits,
            "misses": self.misses,
            "ttl_seconds": self.ttl_seconds,
        }


@dataclass(slots=True)
class _Entry:
    template: WorkflowTemplate
    expires_at: float


class CachedTemplateStore:
    """A :class:`TemplateStore` that remembers lookups for ``ttl_seconds``.

    ``get`` and ``find`` are cached; ``list`` always reads through. Misses
    (``None``) are not cached. Writes go to the wrapped store first and then
    drop the entries they could have made stale.
    """

    def __init__(
        self,
        store: TemplateStore,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._by_id: dict[str, _Entry] = {}
        self._by_key: dict[_FindKey, _Entry] = {}
        self._hits = 0
        self._misses = 0

    def _cached(self, table: dict[Any, _Entry], key: Any) -> WorkflowTemplate | None:
        now = self._clock()
        with self._lock:
            entry = table.get(key)
            if entry is not None and entry.expires_at > now:
                self._hits += 1
                return entry.template
            if entry is not None:
                del table[key]
            self._misses += 1
            return None

    def _remember(self, template: WorkflowTemplate, *keys: _FindKey) -> None:
        entry = _Entry(template, self._clock() + self.ttl_seconds)
        with self._lock:
            self._by_id[template.id] = entry
            self._by_key[(template.template_id, template.version)] = entry
            for key in keys:
                self._by_key[key] = entry

    def get(self, storage_id: str) -> WorkflowTemplate | None:
        template = self._cached(self._by_id, storage_id)
        if template is not None:
            return template
        template = self.store.get(storage_id)
        if template is not None:
            self._remember(template)
        return template

    def find(self, template_id: str, version: int | None = None) -> WorkflowTemplate | None:
        key: _FindKey = (template_id, version)
        template = self._cached(self._by_key, key)
        if template is not None:
            return template
        template = self.store.find(template_id, version)
        if template is not None:
            self._remember(template, key)
        return template

    def list(self, business_type: str | None = None) -> list[WorkflowTemplate]:
        return self.store.list(business_type)

    def add(self, template: WorkflowTemplate) -> None:
        self.store.add(template)
        # a new version changes what "latest" resolves to
        self.invalidate(template.template_id)

    def delete_business_type(self, business_type: str) -> int:
        deleted = self.store.delete_business_type(business_type)
        if deleted:
            self.invalidate_all()
        return deleted

    def preload(self, template_ids: Iterable[str] | None = None) -> int:
        """Warm the cache with the latest version of each template.

        With no ``template_ids`` every stored template is loaded. Returns the
        number of records cached; unknown IDs are logged and skipped.
        """

        if template_ids is None:
            latest: dict[str, WorkflowTemplate] = {}
            for template in self.store.list():
                self._remember(template)
                current = latest.get(template.template_id)
                if current is None or template.version > current.version:
                    latest[template.template_id] = template
            for template_id, template in latest.items():
                self._remember(template, (template_id, None))
            count = len(latest)
        else:
            count = 0
            for template_id in template_ids:
                if self.find(template_id) is None:
                    logger.warning("Template not found for preload", extra={"template_id": template_id})
                    continue
                count += 1

        logger.info("Template cache preloaded", extra={"count": count})
        return count

    def invalidate(self, template_id: str) -> None:
        """Drop every cached version of ``template_id``."""

        with self._lock:
            for key in [k for k in self._by_key if k[0] == template_id]:
                del self._by_key[key]
            for storage_id in [
                sid for sid, e in self._by_id.items() if e.template.template_id == template_id
            ]:
                del self._by_id[storage_id]
        logger.debug("Template cache invalidated", extra={"template_id": template_id})

    def invalidate_all(self) -> None:
        with self._lock:
            self._by_id.clear()
            self._by_key.clear()
        logger.debug("Template cache cleared")

    def stats(self) -> CacheStats:
        now = self._clock()
        with self._lock:
            return CacheStats(
                records=len(self._by_id),
                expired=sum(1 for e in self._by_id.values() if e.expires_at <= now),
                hits=self._hits,
                misses=self._misses,
                ttl_seconds=self.ttl_seconds,
            )
