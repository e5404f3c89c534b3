"""
Host-facing storage plugin.

The registry host constructs one :class:`StoragePlugin` from its config block
and then:

* ``add(name)`` / ``get()`` to maintain and list the package name index
* ``get_package_storage(name)`` for a :class:`PackageManager` per package
* ``get_secret()`` / ``set_secret()`` for the signing key material

Search and token storage are not offered by the ledger and answer
``ServiceUnavailable``; removal answers ``Forbidden``.

All package managers handed out by one plugin share its :class:`ContentCache`
and its gateway connection.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, List, Optional

from .adapters.wallet import Wallet
from .config import Settings, get_settings
from .errors import ConfigurationError, Forbidden, ServiceUnavailable
from .ledger import Ledger
from .ledger.writer import Sleep
from .logging import get_logger
from .metrics import Metrics
from .services.package_manager import PackageManager
from .storage.cache import ContentCache
from .version import __version__

log = get_logger(__name__)

NAME_FILE = "name"
NAME_CONTENT_TYPE = "text/plain"


def read_secret(path: Path) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"cannot read JWK file {path}: {e.strerror or e}") from e


class StoragePlugin:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        cache: Optional[ContentCache] = None,
        ledger: Optional[Ledger] = None,
        metrics: Optional[Metrics] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.storage_address = self.settings.storage_address

        self._secret = read_secret(self.settings.jwk) if self.settings.jwk else ""
        self.wallet: Optional[Wallet] = Wallet.from_jwk(self._secret) if self._secret else None

        self.metrics = metrics or Metrics(service_version=__version__)
        self.cache = cache if cache is not None else ContentCache(metrics=self.metrics, max_concurrency=self.settings.listing_concurrency)
        self.ledger = ledger or Ledger.from_settings(
            self.settings, self.wallet, metrics=self.metrics, sleep=sleep
        )
        log.info(
            "plugin.init",
            gateway=self.settings.gateway_url,
            storage_address=self.storage_address,
            signer=self.wallet.address if self.wallet else None,
        )

    # ---------- lifecycle ----------

    async def aclose(self) -> None:
        await self.ledger.aclose()

    async def __aenter__(self) -> "StoragePlugin":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ---------- secret ----------

    async def get_secret(self) -> str:
        return self._secret

    async def set_secret(self, secret: str) -> None:
        wallet = Wallet.from_jwk(secret) if secret else None
        self._secret = secret
        self.wallet = wallet
        self.ledger.writer.wallet = wallet

    # ---------- name index ----------

    async def add(self, name: str) -> None:
        """
        Register ``name`` on the ledger unless a registration already exists.
        """
        ids = await self.ledger.query.find_by_file(name, NAME_FILE, self.storage_address)
        if ids:
            log.debug("plugin.add_exists", package=name)
            self.cache.add_name(name)
            return
        tx = await self.ledger.writer.create_data_transaction(NAME_CONTENT_TYPE, name, name, NAME_FILE)
        await self.ledger.writer.send_transaction(tx)
        self.cache.add_name(name)
        log.info("plugin.added", package=name, tx_id=tx.id)

    async def get(self) -> List[str]:
        """
        All known package names. Only metadata transactions not seen before
        are fetched; ones that name no package are skipped from then on.
        """
        ids = await self.ledger.query.find_all_package_hashes(self.storage_address)
        names = await self.cache.refresh(ids, self._resolve_name)
        log.debug("plugin.get", ledger_ids=len(ids), names=len(names))
        return names

    async def _resolve_name(self, tx_id: str) -> Optional[str]:
        # NotFound (payload not served yet) propagates; the cache retries it next listing.
        try:
            doc = json.loads(await self.ledger.reader.get_transaction_data(tx_id, as_text=True))
        except ValueError:
            log.warning("plugin.metadata_invalid", tx_id=tx_id)
            return None
        name = doc.get("name") if isinstance(doc, dict) else None
        return str(name) if name else None

    # ---------- per-package storage ----------

    def get_package_storage(self, package_name: str) -> PackageManager:
        return PackageManager(
            package_name,
            self.ledger,
            self.cache,
            self.settings.resolve_storage_address(package_name),
            verify_reads=self.settings.verify_metadata_reads,
            max_age_s=self.settings.metadata_max_age_s,
        )

    # ---------- unsupported ----------

    async def search(self, *args: Any, **kwargs: Any) -> None:
        log.warning("plugin.search_unavailable")
        raise ServiceUnavailable("search not implemented yet")

    async def remove(self, name: str) -> None:
        log.warning("plugin.remove_refused", package=name)
        raise Forbidden("remove method is disabled. You can't remove packages from the permaweb")

    async def save_token(self, token: Any) -> None:
        log.warning("plugin.save_token_unavailable")
        raise ServiceUnavailable("save token method not implemented")

    async def delete_token(self, user: str, token_key: str) -> None:
        log.warning("plugin.delete_token_unavailable", user=user)
        raise ServiceUnavailable("delete token method not implemented")

    async def read_tokens(self, token_filter: Any = None) -> List[Any]:
        log.warning("plugin.read_tokens_unavailable")
        raise ServiceUnavailable("read tokens method not implemented")


__all__ = ["StoragePlugin", "read_secret", "NAME_FILE"]
