"""
One gateway connection shared by the query client, writer and reader.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from ..adapters import gateway as gateway_mod
from ..adapters.gateway import Gateway
from ..adapters.tags import Markers
from ..adapters.wallet import Wallet
from ..config import Settings
from ..metrics import Metrics
from .query import QueryClient
from .reader import TransactionReader
from .writer import SettlePolicy, Sleep, TransactionWriter


@dataclass
class Ledger:
    gateway: Gateway
    query: QueryClient
    writer: TransactionWriter
    reader: TransactionReader

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        wallet: Optional[Wallet] = None,
        *,
        gateway: Optional[Gateway] = None,
        metrics: Optional[Metrics] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> "Ledger":
        gw = gateway or gateway_mod.from_settings(settings)
        markers = Markers(source=settings.source, env=settings.env)
        return cls(
            gateway=gw,
            query=QueryClient(gw, markers, metrics),
            writer=TransactionWriter(
                gw,
                markers,
                wallet,
                app_name=settings.app_name,
                app_version=settings.app_version,
                settle=SettlePolicy(settings.settle_base_ms, settings.settle_bytes_per_ms),
                sleep=sleep,
                metrics=metrics,
            ),
            reader=TransactionReader(gw, metrics),
        )

    async def aclose(self) -> None:
        await self.gateway.close()


__all__ = ["Ledger"]
