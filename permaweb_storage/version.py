"""
Version helpers for permaweb-storage.

``__version__`` is the semantic version for packaging and is also the default
``App-Version`` tag written on every ledger transaction.
"""

from __future__ import annotations

# Bump this when making a release; use semver (MAJOR.MINOR.PATCH)
__version__ = "0.1.0"

APP_NAME = "permaweb-storage"


def user_agent() -> str:
    return f"{APP_NAME}/{__version__}"


__all__ = ["__version__", "APP_NAME", "user_agent"]
