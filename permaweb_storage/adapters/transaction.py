"""
Ledger transaction model (format 1).

Wire form (``GET /tx/{id}`` / ``POST /tx``) is a JSON object whose binary fields
are unpadded base64url strings and whose tag names/values are base64url too::

    {"format": 1, "id": "...", "last_tx": "...", "owner": "...",
     "tags": [{"name": "Q29udGVudC1UeXBl", "value": "..."}],
     "target": "", "quantity": "0", "data": "...", "reward": "1234",
     "signature": "..."}

The signed payload is the concatenation::

    owner || target || data || quantity || reward || last_tx || (name || value)*

and ``id = base64url(sha256(signature))``.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .b64 import BytesLike, b64url_decode, b64url_encode, ensure_bytes
from .tags import TagList, TagName
from .wallet import Wallet, owner_to_address, verify_signature

FORMAT = 1


@dataclass
class Transaction:
    # Tags are raw (name, value) pairs as read off the wire; TagList is used to build them.
    last_tx: str = ""
    owner: str = ""
    tags: List[Tuple[str, str]] = field(default_factory=list)
    target: str = ""
    quantity: str = "0"
    data: bytes = b""
    reward: str = "0"
    signature: str = ""
    id: str = ""
    format: int = FORMAT

    # ---------- construction ----------

    @classmethod
    def build(
        cls,
        payload: Union[BytesLike, str],
        tags: TagList,
        *,
        last_tx: str,
        reward: Union[int, str],
    ) -> "Transaction":
        return cls(
            last_tx=last_tx,
            tags=tags.pairs(),
            data=ensure_bytes(payload),
            reward=str(reward),
        )

    # ---------- accessors ----------

    @property
    def data_size(self) -> int:
        return len(self.data)

    @property
    def owner_address(self) -> str:
        return owner_to_address(self.owner) if self.owner else ""

    def get_tag(self, name: Union[TagName, str]) -> Optional[str]:
        key = str(name)
        for n, v in self.tags:
            if n == key:
                return v
        return None

    def tag_values(self) -> Dict[str, str]:
        # Later duplicates win, matching how the tags read in order.
        return {n: v for n, v in self.tags}

    def data_bytes(self) -> bytes:
        return self.data

    def data_text(self) -> str:
        return self.data.decode("utf-8")

    # ---------- signing ----------

    def signature_data(self) -> bytes:
        out = bytearray()
        out += b64url_decode(self.owner)
        out += b64url_decode(self.target)
        out += self.data
        out += self.quantity.encode("utf-8")
        out += self.reward.encode("utf-8")
        out += b64url_decode(self.last_tx)
        for name, value in self.tags:
            out += name.encode("utf-8")
            out += value.encode("utf-8")
        return bytes(out)

    def sign(self, wallet: Wallet) -> "Transaction":
        self.owner = wallet.owner
        raw = wallet.sign(self.signature_data())
        self.signature = b64url_encode(raw)
        self.id = b64url_encode(hashlib.sha256(raw).digest())
        return self

    def verify(self) -> bool:
        """
        True iff the id is the hash of the signature and the signature covers
        this exact content under ``owner``.
        """
        if not (self.signature and self.owner and self.id):
            return False
        try:
            raw = b64url_decode(self.signature)
            expected_id = b64url_encode(hashlib.sha256(raw).digest())
            if expected_id != self.id:
                return False
            return verify_signature(self.owner, self.signature_data(), raw)
        except ValueError:
            return False

    # ---------- wire ----------

    def to_json(self) -> Dict[str, Any]:
        return {
            "format": self.format,
            "id": self.id,
            "last_tx": self.last_tx,
            "owner": self.owner,
            "tags": [
                {"name": b64url_encode(n.encode("utf-8")), "value": b64url_encode(v.encode("utf-8"))}
                for n, v in self.tags
            ],
            "target": self.target,
            "quantity": self.quantity,
            "data": b64url_encode(self.data),
            "data_size": str(self.data_size),
            "reward": self.reward,
            "signature": self.signature,
        }

    @classmethod
    def from_json(cls, obj: Mapping[str, Any]) -> "Transaction":
        try:
            tags = [
                (b64url_decode(t["name"]).decode("utf-8"), b64url_decode(t["value"]).decode("utf-8"))
                for t in obj.get("tags") or []
            ]
            return cls(
                format=int(obj.get("format", FORMAT)),
                id=str(obj.get("id", "")),
                last_tx=str(obj.get("last_tx", "")),
                owner=str(obj.get("owner", "")),
                tags=tags,
                target=str(obj.get("target", "")),
                quantity=str(obj.get("quantity", "0")),
                data=b64url_decode(obj.get("data") or ""),
                reward=str(obj.get("reward", "0")),
                signature=str(obj.get("signature", "")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"malformed transaction JSON: {e}") from e


__all__ = ["Transaction", "FORMAT"]
