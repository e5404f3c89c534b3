"""
Fetch transactions and payloads.

``get_transaction`` is the trusted path: the record is verified (id is the
hash of the signature, signature covers the content) before anything is
returned, so a tampered or corrupted read never reaches a caller as data.
``get_transaction_data`` is the cheap path used on hot reads and does no
verification.
"""

from __future__ import annotations

from typing import Literal, Optional, Union, overload

from ..adapters.gateway import Gateway
from ..adapters.transaction import Transaction
from ..errors import IntegrityError, StorageError
from ..logging import get_logger
from ..metrics import Metrics

log = get_logger(__name__)


class TransactionReader:
    def __init__(self, gateway: Gateway, metrics: Optional[Metrics] = None) -> None:
        self._gateway = gateway
        self._metrics = metrics

    def _count(self, kind: str, outcome: str) -> None:
        if self._metrics:
            self._metrics.reads_total.labels(kind=kind, outcome=outcome).inc()

    async def get_transaction(self, tx_id: str) -> Transaction:
        try:
            raw = await self._gateway.get_transaction(tx_id)
        except StorageError:
            self._count("transaction", "error")
            raise
        try:
            tx = Transaction.from_json(raw)
        except ValueError as e:
            self._count("transaction", "invalid")
            log.error("ledger.tx_malformed", tx_id=tx_id, error=str(e))
            raise IntegrityError(tx_id, "malformed transaction") from e
        if tx.id != tx_id or not tx.verify():
            self._count("transaction", "invalid")
            log.error("ledger.tx_invalid_signature", tx_id=tx_id)
            raise IntegrityError(tx_id)
        self._count("transaction", "ok")
        return tx

    @overload
    async def get_transaction_data(self, tx_id: str, as_text: Literal[True]) -> str: ...

    @overload
    async def get_transaction_data(self, tx_id: str, as_text: Literal[False] = ...) -> bytes: ...

    async def get_transaction_data(self, tx_id: str, as_text: bool = False) -> Union[str, bytes]:
        try:
            data = await self._gateway.get_transaction_data(tx_id)
        except StorageError:
            self._count("data", "error")
            raise
        self._count("data", "ok")
        return data.decode("utf-8") if as_text else data


__all__ = ["TransactionReader"]
