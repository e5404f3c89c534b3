from __future__ import annotations

"""
Prometheus metrics for permaweb-storage.

All collectors live on a private ``CollectorRegistry`` held by :class:`Metrics`,
so several storage instances (or test cases) never collide on the global
default registry. A host process that already exposes ``/metrics`` can merge
``metrics.registry`` into its own exposition, or call ``render_latest()``.

Recorded
--------
- ledger_queries_total{kind,outcome}
- ledger_reads_total{kind,outcome}
- ledger_transactions_total{file_kind,status}
- ledger_submitted_bytes_total
- ledger_settle_delay_seconds (histogram)
- cache_entries{map} (gauge)
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info, generate_latest


class Metrics:
    """
    Holder for registry and metric objects. One per plugin instance.
    """

    def __init__(self, service_name: str = "permaweb-storage", service_version: Optional[str] = None) -> None:
        self.registry = CollectorRegistry()

        self.queries_total = Counter(
            "ledger_queries_total",
            "Tag queries issued against the ledger gateway",
            ["kind", "outcome"],
            registry=self.registry,
        )
        self.reads_total = Counter(
            "ledger_reads_total",
            "Transaction and payload fetches",
            ["kind", "outcome"],
            registry=self.registry,
        )
        self.transactions_total = Counter(
            "ledger_transactions_total",
            "Signed transactions submitted, by response status",
            ["file_kind", "status"],
            registry=self.registry,
        )
        self.submitted_bytes_total = Counter(
            "ledger_submitted_bytes_total",
            "Payload bytes accepted into the submission pool",
            registry=self.registry,
        )
        self.settle_delay_seconds = Histogram(
            "ledger_settle_delay_seconds",
            "Settling delay applied after an accepted submission",
            buckets=(1.0, 1.1, 1.25, 1.5, 2.0, 3.0, 5.0, 10.0, 30.0),
            registry=self.registry,
        )
        self.cache_entries = Gauge(
            "cache_entries",
            "Entries held by the content cache",
            ["map"],
            registry=self.registry,
        )

        self.service_info = Info("service", "Service metadata", registry=self.registry)
        payload = {"name": service_name}
        if service_version:
            payload["version"] = service_version
        self.service_info.info(payload)

    def render_latest(self) -> bytes:
        return generate_latest(self.registry)


def file_kind(file_name: str) -> str:
    """Low-cardinality label for a file name."""
    if file_name == "package.json":
        return "metadata"
    if file_name == "name":
        return "registration"
    return "tarball"


__all__ = ["Metrics", "file_kind"]
