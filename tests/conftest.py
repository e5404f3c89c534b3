from __future__ import annotations

import copy
import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set

import httpx
import pytest
import structlog

from permaweb_storage.adapters.b64 import b64url_decode, b64url_encode
from permaweb_storage.adapters.tags import Expr, TagList, TagName, flatten
from permaweb_storage.adapters.transaction import Transaction
from permaweb_storage.adapters.wallet import Wallet
from permaweb_storage.config import Settings
from permaweb_storage.errors import NotFound
from permaweb_storage.ledger import Ledger
from permaweb_storage.metrics import Metrics
from permaweb_storage.services.package_manager import PackageManager
from permaweb_storage.storage.cache import ContentCache

GATEWAY_URL = "https://gateway.test:443"
ANCHOR = b64url_encode(b"\x07" * 32)


# ----------------------------
# Keys
# ----------------------------
@pytest.fixture(scope="session")
def wallet() -> Wallet:
    """Signing key for the storage under test (2048 bits keeps the suite fast)."""
    return Wallet.generate(2048)


@pytest.fixture(scope="session")
def other_wallet() -> Wallet:
    """A second author sharing the same ledger."""
    return Wallet.generate(2048)


@pytest.fixture()
def jwk_file(tmp_path: Path, wallet: Wallet) -> Path:
    path = tmp_path / "wallet.json"
    path.write_text(json.dumps(wallet.to_jwk()), encoding="utf-8")
    return path


# ----------------------------
# Logging
# ----------------------------
@pytest.fixture()
def restore_logging() -> Iterator[None]:
    """Undo setup_logging: it replaces the root handlers and the structlog config."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


# ----------------------------
# Settings
# ----------------------------
@pytest.fixture()
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    for key in ("PERMAWEB_HOST", "PERMAWEB_STORAGE_ADDRESS", "PERMAWEB_JWK", "PERMAWEB_PACKAGES"):
        monkeypatch.delenv(key, raising=False)
    return Settings(host="gateway.test", port=443, protocol="https", _env_file=None)


# ----------------------------
# In-memory ledger
# ----------------------------
class FakeGateway:
    """
    Test double for permaweb_storage.adapters.gateway.Gateway.

    Stores transaction JSON in submission order and answers ARQL conjunctions
    by matching tags plus the ``from``/``to`` pseudo keys. Every call is
    counted so tests can assert what was (not) fetched.
    """

    url = GATEWAY_URL

    def __init__(self) -> None:
        self.txs: Dict[str, Dict[str, Any]] = {}
        self.order: List[str] = []
        self.calls: Dict[str, int] = defaultdict(int)
        self.queries: List[Expr] = []
        self.posted: List[Dict[str, Any]] = []
        self.post_status = 200
        # Indexed but not served yet (the gateway answers 202).
        self.pending: Set[str] = set()
        self.closed = False

    # -- gateway surface --

    async def arql(self, query: Expr) -> List[str]:
        self.calls["arql"] += 1
        self.queries.append(query)
        clauses = flatten(query)
        return [tx_id for tx_id in self.order if self._matches(self.txs[tx_id], clauses)]

    async def get_transaction(self, tx_id: str) -> Dict[str, Any]:
        self.calls["get_transaction"] += 1
        if tx_id not in self.txs or tx_id in self.pending:
            raise NotFound(f"transaction {tx_id}")
        return copy.deepcopy(self.txs[tx_id])

    async def get_transaction_data(self, tx_id: str) -> bytes:
        self.calls["get_transaction_data"] += 1
        if tx_id not in self.txs or tx_id in self.pending:
            raise NotFound(f"transaction {tx_id}")
        return b64url_decode(self.txs[tx_id]["data"])

    async def tx_anchor(self) -> str:
        self.calls["tx_anchor"] += 1
        return ANCHOR

    async def price(self, byte_size: int, target: Optional[str] = None) -> str:
        self.calls["price"] += 1
        return str(1000 + byte_size * 3)

    async def post_transaction(self, tx_json: Dict[str, Any]) -> httpx.Response:
        self.calls["post_transaction"] += 1
        self.posted.append(tx_json)
        if self.post_status == 200:
            self._store(tx_json)
            return httpx.Response(200, text="OK")
        return httpx.Response(self.post_status)

    async def close(self) -> None:
        self.closed = True

    # -- helpers --

    def _store(self, tx_json: Dict[str, Any]) -> None:
        self.txs[tx_json["id"]] = copy.deepcopy(tx_json)
        self.order.append(tx_json["id"])

    @staticmethod
    def _matches(tx_json: Dict[str, Any], clauses) -> bool:
        tx = Transaction.from_json(tx_json)
        for key, value in clauses:
            if key == "from":
                if tx.owner_address != value:
                    return False
            elif key == "to":
                if tx.target != value:
                    return False
            elif tx.get_tag(key) != value:
                return False
        return True

    def seed(
        self,
        wallet: Wallet,
        payload: bytes | str,
        *,
        package: str,
        file_name: str,
        version: Optional[str] = None,
        source: str = "NPM",
        env: str = "TEST-6",
        content_type: str = "application/json",
    ) -> str:
        """Append a signed transaction directly, bypassing the writer."""
        tags = TagList(
            [
                (TagName.CONTENT_TYPE, content_type),
                (TagName.APP_NAME, "seed"),
                (TagName.APP_VERSION, "0"),
                (TagName.SOURCE, source),
                (TagName.ENV, env),
                (TagName.PACKAGE_NAME, package),
                (TagName.FILE_NAME, file_name),
            ]
        )
        if version:
            tags.add(TagName.PACKAGE_VERSION, version)
        tx = Transaction.build(payload, tags, last_tx=ANCHOR, reward="1").sign(wallet)
        self._store(tx.to_json())
        return tx.id

    def seed_metadata(self, wallet: Wallet, metadata: Dict[str, Any], **kw: Any) -> str:
        version = (metadata.get("dist-tags") or {}).get("latest")
        return self.seed(
            wallet,
            json.dumps(metadata),
            package=metadata["name"],
            file_name="package.json",
            version=version,
            **kw,
        )


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def metrics() -> Metrics:
    return Metrics(service_version="test")


@pytest.fixture()
def ledger(settings: Settings, wallet: Wallet, gateway: FakeGateway, sleeps: SleepRecorder, metrics: Metrics) -> Ledger:
    return Ledger.from_settings(settings, wallet, gateway=gateway, metrics=metrics, sleep=sleeps)


@pytest.fixture()
def cache() -> ContentCache:
    return ContentCache()


@pytest.fixture()
def manager(ledger: Ledger, cache: ContentCache) -> PackageManager:
    return PackageManager("pkg-a", ledger, cache)
