from __future__ import annotations

"""
Error hierarchy for permaweb-storage.

Every storage operation either returns a value or raises exactly one of the
exceptions below. There is no local recovery and no automatic retry: a failure
surfaces to the caller carrying a stable machine ``code`` and an HTTP-ish
``status_code`` the host registry can forward to its clients unchanged.

Usage
-----
    from permaweb_storage.errors import NotFound

    raise NotFound("lodash", details={"file": "package.json"})

Design
------
- Every error has:
  - ``status_code`` (int): HTTP status the host should answer with
  - ``code`` (str): stable machine code (e.g., "not_found")
  - ``message`` (str): human-friendly summary
  - ``details`` (dict|None): optional structured diagnostics
- ``to_problem()`` returns an RFC 7807 dict.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional


DEFAULT_ERROR_DOCS_BASE = "https://permaweb-storage.readthedocs.io/errors"


@dataclass
class StorageError(Exception):
    message: str
    status_code: int = 500
    code: str = "storage_error"
    details: Optional[Mapping[str, Any]] = None
    type_uri_base: str = DEFAULT_ERROR_DOCS_BASE

    def __post_init__(self) -> None:
        super().__init__(self.message)

    # dataclass(eq=True) would otherwise leave instances unhashable
    __hash__ = Exception.__hash__

    # --- RFC 7807 helpers -------------------------------------------------- #

    def type_uri(self) -> str:
        return f"{self.type_uri_base}#{self.code}"

    def title(self) -> str:
        return {
            "not_found": "Not Found",
            "conflict": "Conflict",
            "integrity_error": "Integrity Check Failed",
            "write_error": "Ledger Write Rejected",
            "configuration_error": "Storage Misconfigured",
            "forbidden": "Forbidden",
            "service_unavailable": "Service Unavailable",
            "query_error": "Ledger Unreachable",
            "internal_error": "Internal Error",
            "upload_aborted": "Upload Aborted",
        }.get(self.code, self.message or "Error")

    def to_problem(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "type": self.type_uri(),
            "title": self.title(),
            "status": self.status_code,
            "code": self.code,
            "detail": self.message,
        }
        if self.details:
            body["details"] = dict(self.details)
        return body

    # --- Conversions ------------------------------------------------------- #

    @classmethod
    def from_unexpected(cls, err: BaseException) -> "StorageError":
        """
        Wrap an unexpected exception as an internal error while keeping a
        minimal diagnostic in ``details``.
        """
        if isinstance(err, StorageError):
            return err
        wrapped = InternalError(
            str(err) or err.__class__.__name__,
            details={"exc_type": err.__class__.__name__},
        )
        wrapped.__cause__ = err
        return wrapped


# ------------------------------ Concrete types ------------------------------- #


class NotFound(StorageError):
    def __init__(self, what: str = "package", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=f"{what} not found", status_code=404, code="not_found", details=details)


class Conflict(StorageError):
    def __init__(self, name: str, *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(
            message=f"{name} package already exist",
            status_code=409,
            code="conflict",
            details=details,
        )


class IntegrityError(StorageError):
    def __init__(self, tx_id: str, reason: str = "signature does not match transaction content"):
        super().__init__(
            message=f"Invalid transaction {tx_id}: {reason}",
            status_code=422,
            code="integrity_error",
            details={"tx_id": tx_id},
        )
        self.tx_id = tx_id


class WriteError(StorageError):
    def __init__(self, status: int, status_text: str = "", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(
            message=f"Transaction rejected with HTTP {status}: {status_text}".rstrip(": "),
            status_code=status if 400 <= status < 600 else 502,
            code="write_error",
            details=details,
        )
        self.status = status
        self.status_text = status_text


class ConfigurationError(StorageError):
    def __init__(self, message: str = "No signing key configured", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=message, status_code=500, code="configuration_error", details=details)


class Forbidden(StorageError):
    def __init__(self, message: str = "You can't delete packages from the permaweb", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=message, status_code=403, code="forbidden", details=details)


class ServiceUnavailable(StorageError):
    def __init__(self, message: str = "Not implemented", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=message, status_code=503, code="service_unavailable", details=details)


class QueryError(StorageError):
    def __init__(self, message: str = "Ledger gateway unreachable", *, details: Optional[Mapping[str, Any]] = None, status: int = 502):
        super().__init__(message=message, status_code=status, code="query_error", details=details)


class InternalError(StorageError):
    def __init__(self, message: str = "Internal error", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=message, status_code=500, code="internal_error", details=details)


class UploadAborted(StorageError):
    def __init__(self, file_name: str = "", *, what: str = "upload"):
        super().__init__(
            message=f"{what} has been aborted",
            status_code=400,
            code="upload_aborted",
            details={"file": file_name} if file_name else None,
        )


__all__ = [
    "StorageError",
    "NotFound",
    "Conflict",
    "IntegrityError",
    "WriteError",
    "ConfigurationError",
    "Forbidden",
    "ServiceUnavailable",
    "QueryError",
    "InternalError",
    "UploadAborted",
]
