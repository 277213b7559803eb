"""Development accounts for the devnet (``//Alice``, ``//Bob``, ...)."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from ..client import Signer

DEV_ACCOUNTS = ("Alice", "Bob", "Charlie", "Dave")


@dataclass(frozen=True)
class DevAccount(Signer):
    """An Ed25519 dev key; the account id is the raw public key."""

    name: str
    account_id: bytes
    seed: bytes = field(default=b"", repr=False, compare=False)

    def sign(self, payload: bytes) -> bytes:
        if not self.seed:
            raise ValueError(f"{self.name} has no secret seed")
        return Ed25519PrivateKey.from_private_bytes(self.seed).sign(payload)

    def __str__(self) -> str:
        return self.name


def dev_account(uri: str) -> DevAccount:
    """Deterministic keypair for a ``//Name`` URI.

    The secret seed is the 32-byte blake2b digest of the URI; it only has
    to be stable and distinct, not compatible with real key derivation.
    """
    if not uri.startswith("//") or len(uri) < 3:
        raise ValueError(f"dev account URIs look like //Alice, got {uri!r}")
    seed = hashlib.blake2b(uri.encode("utf-8"), digest_size=32).digest()
    public = Ed25519PrivateKey.from_private_bytes(seed).public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return DevAccount(uri[2:], public, seed)


def verify_signature(account_id: bytes, payload: bytes, signature: bytes) -> bool:
    """True when *signature* over *payload* was made by *account_id*'s key."""
    try:
        Ed25519PublicKey.from_public_bytes(account_id).verify(signature, payload)
    except (InvalidSignature, ValueError):
        return False
    return True
