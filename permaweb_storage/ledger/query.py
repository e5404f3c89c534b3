"""
Tag-match queries against the ledger.

Every query is a conjunction of the fixed ``Source``/``ENV`` markers, the
data-only marker ``to = ""``, the caller's equalities and, when a storage
address is given, ``from = <address>``. Results are transaction ids in the
order the gateway returns them; that order is *not* guaranteed to be
submission order.
"""

from __future__ import annotations

from typing import List, Optional

from ..adapters.gateway import Gateway
from ..adapters.tags import Expr, Markers, TagName, data_query, equals
from ..errors import QueryError
from ..logging import get_logger
from ..metrics import Metrics

log = get_logger(__name__)

PACKAGE_FILE = "package.json"


class QueryClient:
    def __init__(self, gateway: Gateway, markers: Markers, metrics: Optional[Metrics] = None) -> None:
        self._gateway = gateway
        self.markers = markers
        self._metrics = metrics

    async def run_query(self, query: Expr, *, kind: str = "raw") -> List[str]:
        try:
            ids = await self._gateway.arql(query)
        except QueryError:
            if self._metrics:
                self._metrics.queries_total.labels(kind=kind, outcome="error").inc()
            raise
        if self._metrics:
            self._metrics.queries_total.labels(kind=kind, outcome="ok").inc()
        log.debug("ledger.query", kind=kind, results=len(ids))
        return ids

    async def find_by_file(self, name: str, file_name: str, from_address: Optional[str] = None) -> List[str]:
        q = data_query(
            self.markers,
            equals(TagName.PACKAGE_NAME, name),
            equals(TagName.FILE_NAME, file_name),
            from_address=from_address,
        )
        return await self.run_query(q, kind="by_file")

    async def find_by_file_and_version(
        self,
        name: str,
        file_name: str,
        version: str,
        from_address: Optional[str] = None,
    ) -> List[str]:
        q = data_query(
            self.markers,
            equals(TagName.PACKAGE_NAME, name),
            equals(TagName.PACKAGE_VERSION, version),
            equals(TagName.FILE_NAME, file_name),
            from_address=from_address,
        )
        return await self.run_query(q, kind="by_version")

    async def find_all_package_hashes(self, from_address: Optional[str] = None) -> List[str]:
        """Ids of every metadata document (one or more per package)."""
        q = data_query(
            self.markers,
            equals(TagName.FILE_NAME, PACKAGE_FILE),
            from_address=from_address,
        )
        return await self.run_query(q, kind="all_packages")


__all__ = ["QueryClient", "PACKAGE_FILE"]
