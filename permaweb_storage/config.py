from __future__ import annotations

"""
Configuration loader for permaweb-storage.

- Reads environment variables (optionally from `.env`) via pydantic-settings.
- Accepts the host registry's plugin config block through
  :meth:`Settings.from_plugin_config` (camelCase keys as they appear in YAML).
- Exposes a cached `get_settings()` accessor.

Environment variables (all prefixed with ``PERMAWEB_``):
    HOST                  (str, default "arweave.net")   Ledger gateway host
    PORT                  (int, default 443)
    PROTOCOL              (str, default "https")
    TIMEOUT_MS            (int, default 20000)           HTTP client timeout
    REQUEST_LOGGING       (bool, default False)          Log every gateway request
    JWK                   (path, optional)               Signing key file (JWK JSON)
    STORAGE_ADDRESS       (str, optional)                Authoring address scoping all queries
    PACKAGES              (json mapping)                 {"@scope/*": "<address>", ...}

Ledger markers:
    SOURCE                (str, default "NPM")
    ENV                   (str, default "TEST-6")
    APP_NAME / APP_VERSION

Write settling:
    SETTLE_BASE_MS        (float, default 1000)
    SETTLE_BYTES_PER_MS   (float, default 10000)

Cache:
    VERIFY_METADATA_READS (bool, default False)          Verify signatures on metadata reads
    METADATA_MAX_AGE_S    (float, optional)              Revalidate cached metadata after this age

Listing:
    LISTING_CONCURRENCY   (int, default 8)               Parallel metadata fetches when listing names

Logging (applied by setup_logging, which the CLI calls):
    LOG_LEVEL             (str, default "INFO")
    LOG_FORMAT            (str, default "console")       json or console
"""

import fnmatch
import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .version import APP_NAME, __version__

# ----------------------------- Helpers --------------------------------------- #


def _parse_mapping(val: Optional[str | Mapping[str, Any]]) -> Dict[str, str]:
    if val is None:
        return {}
    if isinstance(val, Mapping):
        return {str(k): str(v) for k, v in val.items() if v}
    s = val.strip()
    if not s:
        return {}
    try:
        parsed = json.loads(s)
    except ValueError as e:
        raise ValueError("PACKAGES must be a JSON mapping of pattern->address") from e
    if not isinstance(parsed, dict):
        raise ValueError("PACKAGES must be a JSON mapping of pattern->address")
    return {str(k): str(v) for k, v in parsed.items() if v}


# Host config keys that differ from our field names.
_PLUGIN_KEYS = {
    "timeout": "timeout_ms",
    "logging": "request_logging",
    "storageAddress": "storage_address",
    "appName": "app_name",
    "appVersion": "app_version",
}


# --------------------------------- Settings ---------------------------------- #


class Settings(BaseSettings):
    # Gateway
    host: str = Field("arweave.net", description="Ledger gateway host")
    port: int = Field(443, ge=1, le=65535)
    protocol: str = Field("https", description="http or https")
    timeout_ms: int = Field(20000, ge=0, description="HTTP client timeout in milliseconds")
    request_logging: bool = Field(False, description="Log every gateway request at debug level")

    # Identity
    jwk: Optional[Path] = Field(None, description="Path to the JWK signing key file")
    storage_address: Optional[str] = Field(None, description="Authoring address scoping queries")
    packages: Dict[str, str] = Field(
        default_factory=dict, description="Package name pattern -> storage address overrides"
    )

    # Ledger markers written on and required of every transaction
    source: str = "NPM"
    env: str = "TEST-6"
    app_name: str = APP_NAME
    app_version: str = __version__

    # Settling delay after a write: base_ms + data_size / bytes_per_ms
    settle_base_ms: float = Field(1000.0, ge=0)
    settle_bytes_per_ms: float = Field(10000.0, gt=0)

    # Metadata reads
    verify_metadata_reads: bool = False
    metadata_max_age_s: Optional[float] = Field(None, gt=0)
    listing_concurrency: int = Field(8, ge=1, description="Parallel metadata fetches when listing names")

    # Logging
    log_level: str = Field("INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_format: str = Field("console", description='"json" or "console"')

    model_config = SettingsConfigDict(
        env_prefix="PERMAWEB_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    @field_validator("packages", mode="before")
    @classmethod
    def _coerce_packages(cls, v):
        return _parse_mapping(v)

    @field_validator("protocol", mode="before")
    @classmethod
    def _coerce_protocol(cls, v):
        proto = str(v or "https").strip().lower().rstrip(":/")
        if proto not in ("http", "https"):
            raise ValueError(f"unsupported protocol {v!r}")
        return proto

    @field_validator("log_level", mode="before")
    @classmethod
    def _coerce_level(cls, v):
        level = str(v or "INFO").strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return level

    @field_validator("log_format", mode="before")
    @classmethod
    def _coerce_format(cls, v):
        fmt = str(v or "console").strip().lower()
        if fmt not in ("json", "console"):
            raise ValueError(f"log format must be json or console, got {v!r}")
        return fmt

    @field_validator("storage_address", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    # ------------------------------------------------------------------ #

    @property
    def gateway_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0

    def resolve_storage_address(self, package_name: str) -> Optional[str]:
        """
        Storage address for ``package_name``: the first matching pattern in
        ``packages`` wins, otherwise the global ``storage_address``.
        """
        for pattern, address in self.packages.items():
            if fnmatch.fnmatchcase(package_name, pattern):
                return address
        return self.storage_address

    @classmethod
    def from_plugin_config(cls, config: Mapping[str, Any]) -> "Settings":
        """
        Build settings from the host registry's plugin config block, e.g.::

            store:
              permaweb:
                host: arweave.net
                jwk: /etc/registry/wallet.json
                storageAddress: <address>

        Explicit keys win over environment variables.
        """
        kwargs: Dict[str, Any] = {}
        for key, value in config.items():
            if value is None:
                continue
            kwargs[_PLUGIN_KEYS.get(key, key)] = value
        return cls(**kwargs)


# ------------------------------- Accessor API -------------------------------- #


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # pydantic-settings will read .env automatically


__all__ = ["Settings", "get_settings"]
