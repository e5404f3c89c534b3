"""
In-process content cache/index.

The ledger never forgets anything, so neither does the cache: entries are
added or refreshed in place, never removed.

Three maps are kept:

* ``names``     known package names, in first-seen order
* ``tx_names``  transaction id -> package name (ids are immutable content)
* ``files``     package name -> last metadata document seen or written

Metadata documents are copied on the way in and on the way out, so editing a
document a caller passed in or got back never changes what the cache serves.
Transactions whose payload names no package are remembered as unresolvable
and not fetched again; a payload the gateway cannot serve yet (``NotFound``)
is retried on the next listing.

Access discipline
-----------------
One cache is constructed by the owner (usually the plugin) and passed by
reference to every package manager it hands out. All access happens on one
event loop. Mutations are synchronous and never await, so they are atomic
with respect to other tasks. The one multi-step operation, refreshing the
name listing from a fresh id list, runs under ``listing_lock`` so concurrent
listings do not fetch the same unknown ids twice. Nothing serializes
create/update races on the same package: the ledger accepts both appends.
"""

from __future__ import annotations

import asyncio
import copy
import time
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set

from ..errors import NotFound
from ..logging import get_logger
from ..metrics import Metrics

log = get_logger(__name__)

Resolver = Callable[[str], Awaitable[Optional[str]]]

_PENDING = object()


class ContentCache:
    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[Metrics] = None,
        max_concurrency: int = 8,
    ) -> None:
        self._names: Dict[str, None] = {}
        self._tx_names: Dict[str, str] = {}
        self._files: Dict[str, Any] = {}
        self._seen_at: Dict[str, float] = {}
        self._unresolvable: Set[str] = set()
        self._clock = clock
        self._metrics = metrics
        self.listing_lock = asyncio.Lock()
        self._max_concurrency = max_concurrency

    # ---------- read views ----------

    def names(self) -> List[str]:
        return list(self._names)

    @property
    def files(self) -> Mapping[str, Any]:
        return MappingProxyType(self._files)

    @property
    def tx_names(self) -> Mapping[str, str]:
        return MappingProxyType(self._tx_names)

    def has_name(self, name: str) -> bool:
        return name in self._names

    def metadata(self, name: str) -> Optional[Any]:
        """Private copy of the cached document for ``name``, or None."""
        doc = self._files.get(name)
        return None if doc is None else copy.deepcopy(doc)

    def known_tx(self, tx_id: str) -> bool:
        return tx_id in self._tx_names

    def unknown(self, tx_ids: Iterable[str]) -> List[str]:
        seen = set()
        out = []
        for tx_id in tx_ids:
            if tx_id not in self._tx_names and tx_id not in self._unresolvable and tx_id not in seen:
                seen.add(tx_id)
                out.append(tx_id)
        return out

    def is_stale(self, name: str, max_age_s: Optional[float]) -> bool:
        """True when ``name`` was last refreshed more than ``max_age_s`` ago. No max age, never stale."""
        if max_age_s is None or name not in self._seen_at:
            return False
        return self._clock() - self._seen_at[name] > max_age_s

    # ---------- mutations (append or refresh only) ----------

    def add_name(self, name: str) -> None:
        if name not in self._names:
            self._names[name] = None
            self._gauge()

    def register(self, name: str, metadata: Any) -> None:
        self.add_name(name)
        self._files[name] = copy.deepcopy(metadata)
        self._seen_at[name] = self._clock()
        self._gauge()

    def touch(self, name: str) -> None:
        if name in self._files:
            self._seen_at[name] = self._clock()

    def remember_tx(self, tx_id: str, name: str) -> None:
        self._tx_names.setdefault(tx_id, name)
        self.add_name(name)
        self._gauge()

    # ---------- listing ----------

    async def refresh(self, tx_ids: Iterable[str], resolve: Resolver) -> List[str]:
        """
        Resolve the package name of every id not already known and record it.
        At most ``max_concurrency`` resolves run at once. ``resolve`` returns
        None for content that names no package and raises ``NotFound`` for
        content that is not served yet. Returns the full name listing.
        """
        async with self.listing_lock:
            todo = self.unknown(tx_ids)
            if todo:
                log.debug("cache.refresh", unknown=len(todo))
                gate = asyncio.Semaphore(self._max_concurrency)

                async def one(tx_id: str) -> Any:
                    async with gate:
                        try:
                            return await resolve(tx_id)
                        except NotFound:
                            log.debug("cache.tx_pending", tx_id=tx_id)
                            return _PENDING

                resolved = await asyncio.gather(*(one(tx_id) for tx_id in todo))
                for tx_id, name in zip(todo, resolved):
                    if name is _PENDING:
                        continue
                    if name:
                        self.remember_tx(tx_id, name)
                    else:
                        self._unresolvable.add(tx_id)
            return self.names()

    def _gauge(self) -> None:
        if self._metrics is None:
            return
        self._metrics.cache_entries.labels(map="names").set(len(self._names))
        self._metrics.cache_entries.labels(map="tx_names").set(len(self._tx_names))
        self._metrics.cache_entries.labels(map="files").set(len(self._files))


__all__ = ["ContentCache"]
