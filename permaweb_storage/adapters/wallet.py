"""
Signing identity: RSA keys in JWK form.

The ledger identifies an author by the RSA modulus ``n``:

* ``owner``   = base64url(n)             (carried on every transaction)
* ``address`` = base64url(sha256(n))     (what ``from = ...`` queries match)

Signatures are RSA-PSS over SHA-256 with MGF1(SHA-256). We sign with the
maximum salt length and verify with the salt length auto-detected, which
accepts signatures produced by other ledger clients too.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Mapping, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..errors import ConfigurationError
from .b64 import b64url_decode, b64url_encode, b64url_to_int, int_to_b64url

_JWK_PRIVATE_FIELDS = ("n", "e", "d", "p", "q", "dp", "dq", "qi")
PUBLIC_EXPONENT = 65537


def owner_to_address(owner: str) -> str:
    return b64url_encode(hashlib.sha256(b64url_decode(owner)).digest())


def verify_signature(owner: str, message: bytes, signature: bytes) -> bool:
    """
    Check an RSA-PSS/SHA-256 ``signature`` over ``message`` by the key whose
    modulus is ``owner`` (base64url). Returns False on any mismatch.
    """
    try:
        pub = rsa.RSAPublicNumbers(PUBLIC_EXPONENT, b64url_to_int(owner)).public_key()
        pub.verify(
            signature,
            message,
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.AUTO),
            hashes.SHA256(),
        )
    except (InvalidSignature, ValueError):
        return False
    return True


class Wallet:
    """Private signing key plus its derived ledger identity."""

    def __init__(self, private_key: rsa.RSAPrivateKey) -> None:
        self._key = private_key
        numbers = private_key.public_key().public_numbers()
        self._n = numbers.n
        self.owner = b64url_encode(self._n.to_bytes(private_key.key_size // 8, "big"))
        self.address = owner_to_address(self.owner)

    # ---------- construction ----------

    @classmethod
    def from_jwk(cls, jwk: Union[str, Mapping[str, Any]]) -> "Wallet":
        if isinstance(jwk, str):
            try:
                jwk = json.loads(jwk)
            except ValueError as e:
                raise ConfigurationError("JWK is not valid JSON") from e
        if not isinstance(jwk, Mapping):
            raise ConfigurationError("JWK must be a JSON object")
        if jwk.get("kty", "RSA") != "RSA":
            raise ConfigurationError(f"unsupported JWK key type {jwk.get('kty')!r}")
        missing = [f for f in _JWK_PRIVATE_FIELDS if not jwk.get(f)]
        if missing:
            raise ConfigurationError(
                "JWK is missing private key fields", details={"missing": missing}
            )
        try:
            v = {f: b64url_to_int(jwk[f]) for f in _JWK_PRIVATE_FIELDS}
            key = rsa.RSAPrivateNumbers(
                p=v["p"],
                q=v["q"],
                d=v["d"],
                dmp1=v["dp"],
                dmq1=v["dq"],
                iqmp=v["qi"],
                public_numbers=rsa.RSAPublicNumbers(v["e"], v["n"]),
            ).private_key()
        except ValueError as e:
            raise ConfigurationError(f"invalid JWK key material: {e}") from e
        return cls(key)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Wallet":
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"cannot read JWK file {path}: {e.strerror or e}") from e
        return cls.from_jwk(text)

    @classmethod
    def generate(cls, bits: int = 4096) -> "Wallet":
        return cls(rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=bits))

    # ---------- operations ----------

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(
            message,
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH),
            hashes.SHA256(),
        )

    def verify(self, message: bytes, signature: bytes) -> bool:
        return verify_signature(self.owner, message, signature)

    def to_jwk(self) -> Dict[str, str]:
        priv = self._key.private_numbers()
        pub = priv.public_numbers
        return {
            "kty": "RSA",
            "e": int_to_b64url(pub.e),
            "n": self.owner,
            "d": int_to_b64url(priv.d),
            "p": int_to_b64url(priv.p),
            "q": int_to_b64url(priv.q),
            "dp": int_to_b64url(priv.dmp1),
            "dq": int_to_b64url(priv.dmq1),
            "qi": int_to_b64url(priv.iqmp),
        }

    def __repr__(self) -> str:
        return f"Wallet(address={self.address!r})"


def generate_wallet(bits: int = 4096) -> Wallet:
    return Wallet.generate(bits)


__all__ = ["Wallet", "generate_wallet", "verify_signature", "owner_to_address"]
