from __future__ import annotations

import base64
from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]


def ensure_bytes(data: Union[BytesLike, str]) -> bytes:
    """
    Ensure input is bytes.

    Accepts:
      - bytes / bytearray / memoryview  -> bytes(data)
      - str: encoded as UTF-8 (payloads are either text documents or binary tarballs)
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        return data.encode("utf-8")
    raise TypeError(f"Unsupported type for ensure_bytes: {type(data)!r}")


def b64url_encode(b: BytesLike) -> str:
    """
    Bytes -> unpadded base64url, the encoding the ledger uses for every binary field.
    """
    return base64.urlsafe_b64encode(bytes(b)).rstrip(b"=").decode("ascii")


def b64url_decode(s: Union[str, bytes]) -> bytes:
    """
    Unpadded (or padded) base64url -> bytes. Standard-alphabet input is accepted too.
    """
    if isinstance(s, bytes):
        s = s.decode("ascii")
    s = s.strip().replace("+", "-").replace("/", "_").rstrip("=")
    try:
        return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))
    except (ValueError, TypeError) as e:
        raise ValueError(f"invalid base64url string: {e}") from e


def int_to_b64url(n: int) -> str:
    length = max(1, (n.bit_length() + 7) // 8)
    return b64url_encode(n.to_bytes(length, "big"))


def b64url_to_int(s: str) -> int:
    return int.from_bytes(b64url_decode(s), "big")


__all__ = [
    "BytesLike",
    "ensure_bytes",
    "b64url_encode",
    "b64url_decode",
    "int_to_b64url",
    "b64url_to_int",
]
