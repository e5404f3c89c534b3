"""
Operator CLI for permaweb-storage.

Utilities:
  - address   : print the ledger address of a JWK key file
  - list      : list package names stored under the configured address
  - show      : print the latest metadata document of a package
  - fetch     : download a tarball (verified) to a file or stdout

Gateway and markers come from ``PERMAWEB_*`` environment variables (or .env).

Usage:
  permaweb-storage <command> [options]
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import typer

from .adapters.wallet import Wallet
from .config import Settings
from .errors import StorageError
from .logging import bind_package_context, setup_logging
from .plugin import StoragePlugin

app = typer.Typer(add_completion=False, help="permaweb-storage: package storage on an append-only ledger")


def _fail(err: StorageError) -> None:
    typer.echo(f"error [{err.code}]: {err.message}", err=True)
    raise typer.Exit(code=1)


def _run(work: Callable[[StoragePlugin], Awaitable[Any]]) -> Any:
    async def _go() -> Any:
        async with StoragePlugin(Settings()) as plugin:
            return await work(plugin)

    try:
        return asyncio.run(_go())
    except StorageError as err:
        _fail(err)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR (default: PERMAWEB_LOG_LEVEL)"),
    log_format: Optional[str] = typer.Option(None, "--log-format", help='"json" or "console" (default: PERMAWEB_LOG_FORMAT)'),
):
    """
    Shared options for all subcommands. Logs go to stderr.
    """
    setup_logging(Settings(), level=log_level, log_format=log_format)


@app.command("address")
def address(
    jwk: Path = typer.Option(..., "--jwk", help="Path to a JWK key file"),
):
    """
    Print the ledger address derived from a JWK key file.
    """
    try:
        wallet = Wallet.from_file(jwk)
    except StorageError as err:
        _fail(err)
    typer.echo(wallet.address)


@app.command("list")
def list_packages():
    """
    List package names known to the ledger (scoped by PERMAWEB_STORAGE_ADDRESS).
    """
    names = _run(lambda plugin: plugin.get())
    for name in names:
        typer.echo(name)


@app.command("show")
def show(name: str = typer.Argument(..., help="Package name")):
    """
    Print the latest metadata document for NAME.
    """
    bind_package_context(package=name)

    async def _work(plugin: StoragePlugin):
        return await plugin.get_package_storage(name).read_package(name)

    metadata = _run(_work)
    typer.echo(json.dumps(metadata, indent=2, sort_keys=True))


@app.command("fetch")
def fetch(
    name: str = typer.Argument(..., help="Package name"),
    file_name: str = typer.Argument(..., help="Tarball file name, e.g. pkg-1.0.0.tgz"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write to this file instead of stdout"),
):
    """
    Download FILE_NAME of package NAME. The transaction signature is verified.
    """
    bind_package_context(package=name, file=file_name)

    async def _work(plugin: StoragePlugin) -> bytes:
        stream = plugin.get_package_storage(name).read_tarball(file_name)
        return await stream.read_all()

    data = _run(_work)
    if out is not None:
        out.write_bytes(data)
        typer.echo(f"wrote {len(data)} bytes to {out}")
    else:
        typer.echo(data, nl=False)


if __name__ == "__main__":  # pragma: no cover
    app()
