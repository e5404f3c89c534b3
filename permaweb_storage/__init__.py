"""
Permaweb Storage
================

Package-registry storage backend on top of an append-only, tag-queried ledger.

This package exposes:

- ``__version__``: semantic version string
- ``StoragePlugin``: host-facing entry point (lists names, hands out per-package storage)

Prefer importing submodules directly for specific concerns:
``permaweb_storage.config``, ``permaweb_storage.ledger``,
``permaweb_storage.services.package_manager``, etc.
"""

from __future__ import annotations

from .version import __version__

__all__ = ["__version__", "StoragePlugin"]


def __getattr__(name: str):
    # Lazy so that importing the package for its version does not pull httpx/cryptography.
    if name == "StoragePlugin":
        from .plugin import StoragePlugin

        return StoragePlugin
    raise AttributeError(name)
