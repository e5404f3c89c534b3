"""
Package lifecycle on top of the append-only ledger.

A package is in one of three states from this adapter's point of view:

* absent          no cache entry, no matching transaction
* cached-only     ``create_package`` registered metadata, nothing written yet
* ledger-backed   at least one ``package.json`` transaction carries its name

Nothing is ever overwritten. ``save_package`` appends a new metadata
transaction that becomes "latest" only through :func:`pick_latest`, and
delete/remove are refused outright.
"""

from __future__ import annotations

import inspect
import json
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Union

from ..adapters.tags import TagName
from ..errors import Conflict, Forbidden, InternalError, NotFound
from ..ledger import PACKAGE_FILE, Ledger, Submission
from ..logging import get_logger
from ..storage.cache import ContentCache
from .streams import ReadTarball, UploadTarball

log = get_logger(__name__)

Metadata = Dict[str, Any]
Mutator = Callable[[Metadata], Union[Optional[Metadata], Awaitable[Optional[Metadata]]]]

METADATA_CONTENT_TYPE = "application/json"
TARBALL_CONTENT_TYPE = "application/octet-stream"


def pick_latest(tx_ids: Sequence[str]) -> Optional[str]:
    """
    Choose the "current" transaction among matches: the last id returned by
    the gateway. The gateway does not promise submission order, so this is a
    policy, kept in one place so it can be swapped for a block-height rule.
    """
    return tx_ids[-1] if tx_ids else None


def latest_version(metadata: Metadata) -> Optional[str]:
    tags = metadata.get("dist-tags") if isinstance(metadata, dict) else None
    if isinstance(tags, dict) and tags.get("latest"):
        return str(tags["latest"])
    return None


def dump_metadata(metadata: Metadata) -> str:
    return json.dumps(metadata, indent="\t", ensure_ascii=False)


class PackageManager:
    def __init__(
        self,
        package_name: str,
        ledger: Ledger,
        cache: ContentCache,
        storage_address: Optional[str] = None,
        *,
        verify_reads: bool = False,
        max_age_s: Optional[float] = None,
    ) -> None:
        self.package_name = package_name
        self.ledger = ledger
        self.cache = cache
        self.storage_address = storage_address
        self.verify_reads = verify_reads
        self.max_age_s = max_age_s

    # ------------------------------------------------------------------ #
    # Metadata
    # ------------------------------------------------------------------ #

    async def create_package(self, name: str, metadata: Metadata) -> None:
        """
        Register ``metadata`` as pending. Fails with ``Conflict`` if the ledger
        (or a pending registration) already holds this name and version. A
        document without ``dist-tags.latest`` conflicts with any existing
        metadata for the name. No transaction is written until ``save_package``.
        """
        version = latest_version(metadata)
        log.debug("package.create", package=name, version=version)

        pending = self.cache.metadata(name)
        if pending is not None and (version is None or latest_version(pending) == version):
            raise Conflict(name, details={"version": version})

        if version is None:
            ids = await self.ledger.query.find_by_file(name, PACKAGE_FILE, self.storage_address)
        else:
            ids = await self.ledger.query.find_by_file_and_version(
                name, PACKAGE_FILE, version, self.storage_address
            )
        if ids:
            log.debug("package.create_conflict", package=name, version=version, tx_id=pick_latest(ids))
            raise Conflict(name, details={"version": version})

        self.cache.register(name, metadata)

    async def read_package(self, name: str) -> Metadata:
        cached = self.cache.metadata(name)
        if cached is not None:
            if not self.cache.is_stale(name, self.max_age_s):
                return cached
            try:
                return await self._read_from_ledger(name)
            except NotFound:
                # Pending entry never saved; ledger content cannot vanish, so keep serving it.
                self.cache.touch(name)
                return cached
        return await self._read_from_ledger(name)

    async def _read_from_ledger(self, name: str) -> Metadata:
        ids = await self.ledger.query.find_by_file(name, PACKAGE_FILE, self.storage_address)
        tx_id = pick_latest(ids)
        if tx_id is None:
            log.debug("package.not_found", package=name)
            raise NotFound(name)

        if self.verify_reads:
            text = (await self.ledger.reader.get_transaction(tx_id)).data_text()
        else:
            text = await self.ledger.reader.get_transaction_data(tx_id, as_text=True)
        try:
            metadata = json.loads(text)
        except ValueError as e:
            log.error("package.metadata_invalid", package=name, tx_id=tx_id)
            raise InternalError(f"metadata for {name} is not valid JSON", details={"tx_id": tx_id}) from e

        self.cache.register(name, metadata)
        self.cache.remember_tx(tx_id, name)
        log.debug("package.read", package=name, tx_id=tx_id, candidates=len(ids))
        return metadata

    async def update_package(self, name: str, mutator: Mutator) -> Metadata:
        """
        Read, apply ``mutator`` to a copy, save the result. The mutator may be
        sync or async and may either return the new document or edit its
        argument in place. If it raises, nothing is written.
        """
        # read_package hands out a private copy.
        draft = await self.read_package(name)
        try:
            result = mutator(draft)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            log.error("package.update_failed", package=name, error=str(e))
            raise
        updated = draft if result is None else result
        await self.save_package(name, updated)
        return updated

    async def save_package(self, name: str, metadata: Metadata) -> Submission:
        version = latest_version(metadata)
        extra = [(TagName.PACKAGE_VERSION, version)] if version else None
        tx = await self.ledger.writer.create_data_transaction(
            METADATA_CONTENT_TYPE, dump_metadata(metadata), name, PACKAGE_FILE, extra
        )
        submission = await self.ledger.writer.send_transaction(tx)
        self.cache.register(name, metadata)
        self.cache.remember_tx(tx.id, name)
        log.info("package.saved", package=name, version=version, tx_id=tx.id)
        return submission

    async def delete_package(self, file_name: str) -> None:
        log.error("package.delete_refused", package=self.package_name, file=file_name)
        raise Forbidden("You can't delete packages from the permaweb", details={"file": file_name})

    async def remove_package(self) -> None:
        log.error("package.remove_refused", package=self.package_name)
        raise Forbidden("You can't remove packages from the permaweb")

    # ------------------------------------------------------------------ #
    # Tarballs
    # ------------------------------------------------------------------ #

    def write_tarball(self, file_name: str) -> UploadTarball:
        package = self.package_name

        async def prepare() -> None:
            ids = await self.ledger.query.find_by_file(package, file_name, self.storage_address)
            if ids:
                log.debug("tarball.exists", package=package, file=file_name, tx_id=pick_latest(ids))
                raise Conflict(file_name, details={"package": package})

        async def commit(payload: bytes) -> Submission:
            tx = await self.ledger.writer.create_data_transaction(
                TARBALL_CONTENT_TYPE, payload, package, file_name
            )
            submission = await self.ledger.writer.send_transaction(tx)
            log.info("tarball.uploaded", package=package, file=file_name, size=len(payload), tx_id=tx.id)
            return submission

        return UploadTarball(file_name, prepare=prepare, commit=commit)

    def read_tarball(self, file_name: str) -> ReadTarball:
        package = self.package_name

        async def fetch() -> bytes:
            ids = await self.ledger.query.find_by_file(package, file_name, self.storage_address)
            tx_id = pick_latest(ids)
            if tx_id is None:
                log.debug("tarball.not_found", package=package, file=file_name)
                raise NotFound(f"{package}/{file_name}")
            tx = await self.ledger.reader.get_transaction(tx_id)
            data = tx.data_bytes()
            if not data:
                log.error("tarball.empty", package=package, file=file_name, tx_id=tx_id)
                raise InternalError("file content empty", details={"tx_id": tx_id})
            return data

        return ReadTarball(file_name, fetch=fetch)


__all__ = ["PackageManager", "pick_latest", "latest_version", "dump_metadata"]
