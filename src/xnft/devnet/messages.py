"""Cross-chain messages as the devnet router carries them."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict

from ..location import MultiAsset


def message_hash(payload: Dict[str, Any], nonce: int) -> str:
    """``0x``-prefixed blake2b-256 over the canonical JSON payload and a nonce."""
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode() + nonce.to_bytes(8, "little")
    return "0x" + hashlib.blake2b(raw, digest_size=32).hexdigest()


@dataclass(frozen=True)
class XcmMessage:
    """A reserve-transfer message: one NFT plus the fee paying for it."""

    message_hash: str
    source: int
    destination: int
    beneficiary: bytes
    asset: MultiAsset
    fee: MultiAsset
    sent_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_hash": self.message_hash,
            "source": self.source,
            "destination": self.destination,
            "beneficiary": "0x" + self.beneficiary.hex(),
            "asset": self.asset.to_wire(),
            "fee": self.fee.to_wire(),
            "sent_at": self.sent_at,
        }
