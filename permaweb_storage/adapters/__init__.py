"""
Adapters for the ledger: thin, testable facades over the wire.

- b64          : base64url helpers used by every binary field
- tags         : closed tag vocabulary and ARQL query builder
- wallet       : JWK signing identity (RSA-PSS / SHA-256)
- transaction  : format-1 transaction model, signing and verification
- gateway      : async HTTP client for a ledger gateway node
"""
