"""
Build, sign and submit tagged data transactions.

A 200 from ``POST /tx`` means *accepted into the submission pool*, not
*confirmed*. After acceptance the writer waits a settling delay proportional
to the payload size and then reports success; it never polls for
confirmation. A caller killed during the delay may never observe success even
though the transaction was accepted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional, Tuple, Union

from ..adapters.b64 import BytesLike, ensure_bytes
from ..adapters.gateway import Gateway
from ..adapters.tags import Markers, Tag, TagList, TagName
from ..adapters.transaction import Transaction
from ..adapters.wallet import Wallet
from ..errors import ConfigurationError, WriteError
from ..logging import get_logger
from ..metrics import Metrics, file_kind

log = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]
ExtraTags = Iterable[Union[Tag, Tuple[Union[TagName, str], str]]]


@dataclass(frozen=True)
class SettlePolicy:
    base_ms: float = 1000.0
    bytes_per_ms: float = 10000.0

    def delay_s(self, data_size: int) -> float:
        return (self.base_ms + data_size / self.bytes_per_ms) / 1000.0


@dataclass(frozen=True)
class Submission:
    tx_id: str
    status: int
    data_size: int
    settle_delay_s: float


class TransactionWriter:
    def __init__(
        self,
        gateway: Gateway,
        markers: Markers,
        wallet: Optional[Wallet],
        *,
        app_name: str,
        app_version: str,
        settle: SettlePolicy = SettlePolicy(),
        sleep: Sleep = asyncio.sleep,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self._gateway = gateway
        self.markers = markers
        self.wallet = wallet
        self.app_name = app_name
        self.app_version = app_version
        self.settle = settle
        self._sleep = sleep
        self._metrics = metrics

    def default_tags(self, content_type: str, package_name: str, file_name: str) -> TagList:
        return TagList(
            [
                (TagName.CONTENT_TYPE, content_type),
                (TagName.APP_NAME, self.app_name),
                (TagName.APP_VERSION, self.app_version),
                (TagName.SOURCE, self.markers.source),
                (TagName.ENV, self.markers.env),
                (TagName.PACKAGE_NAME, package_name),
                (TagName.FILE_NAME, file_name),
            ]
        )

    async def create_data_transaction(
        self,
        content_type: str,
        payload: Union[BytesLike, str],
        package_name: str,
        file_name: str,
        extra_tags: Optional[ExtraTags] = None,
    ) -> Transaction:
        if self.wallet is None:
            raise ConfigurationError("Undefined JWK, can't create a transaction without it")

        tags = self.default_tags(content_type, package_name, file_name)
        if extra_tags:
            tags.extend(extra_tags)

        data = ensure_bytes(payload)
        anchor = await self._gateway.tx_anchor()
        reward = await self._gateway.price(len(data))
        tx = Transaction.build(data, tags, last_tx=anchor, reward=reward).sign(self.wallet)
        log.debug(
            "ledger.tx_created",
            tx_id=tx.id,
            package=package_name,
            file=file_name,
            size=tx.data_size,
        )
        return tx

    async def send_transaction(self, tx: Transaction) -> Submission:
        kind = file_kind(tx.get_tag(TagName.FILE_NAME) or "")
        resp = await self._gateway.post_transaction(tx.to_json())
        if self._metrics:
            self._metrics.transactions_total.labels(file_kind=kind, status=str(resp.status_code)).inc()
        if resp.status_code != 200:
            log.error(
                "ledger.tx_rejected",
                tx_id=tx.id,
                status=resp.status_code,
                reason=resp.reason_phrase,
            )
            raise WriteError(resp.status_code, resp.reason_phrase, details={"tx_id": tx.id})

        delay = self.settle.delay_s(tx.data_size)
        log.info("ledger.tx_accepted", tx_id=tx.id, size=tx.data_size, settle_s=round(delay, 3))
        if self._metrics:
            self._metrics.submitted_bytes_total.inc(tx.data_size)
            self._metrics.settle_delay_seconds.observe(delay)
        await self._sleep(delay)
        return Submission(tx_id=tx.id, status=resp.status_code, data_size=tx.data_size, settle_delay_s=delay)


__all__ = ["TransactionWriter", "SettlePolicy", "Submission"]
