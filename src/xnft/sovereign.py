"""
xnft — Sovereign & pallet account derivation

A sovereign account is the custody account on ledger X that represents
ledger Y's collective holdings on X.  It is a pure function of the
relationship kind and Y's numeric id::

    tag (4 ASCII bytes) || u32_le(para_id) || zero padding  -> 32 bytes

``"para"`` is used by a relay chain for its child parachains and
``"sibl"`` by parachains for their siblings.  Text rendering (SS58) is a
presentation concern and lives at the bottom of this module; the
derivation itself always works on raw bytes.
"""

from __future__ import annotations

import hashlib
import struct
from enum import Enum
from typing import Optional, Tuple, Union

ACCOUNT_LENGTH = 32
MAX_PARA_ID = 0xFFFF_FFFF

PALLET_PREFIX = b"modl"
PALLET_ID_LENGTH = 8


class SovereignKind(Enum):
    """Relationship between the local ledger and the remote one."""
    CHILD = b"para"
    SIBLING = b"sibl"

    @classmethod
    def parse(cls, value: Union[str, "SovereignKind"]) -> "SovereignKind":
        if isinstance(value, cls):
            return value
        try:
            return cls[value.upper()]
        except KeyError:
            raise ValueError(f"unknown sovereign kind: {value!r} (child|sibling)")


def derive_sovereign(kind: Union[str, SovereignKind], para_id: int) -> bytes:
    """Sovereign account of parachain ``para_id`` for the given relationship."""
    kind = SovereignKind.parse(kind)
    if not 0 <= para_id <= MAX_PARA_ID:
        raise ValueError(f"para id must fit in a u32, got {para_id}")
    raw = kind.value + struct.pack("<I", para_id)
    return raw.ljust(ACCOUNT_LENGTH, b"\x00")


def sibling_sovereign(para_id: int) -> bytes:
    return derive_sovereign(SovereignKind.SIBLING, para_id)


def child_sovereign(para_id: int) -> bytes:
    return derive_sovereign(SovereignKind.CHILD, para_id)


def _minimal_le(value: int) -> bytes:
    if value < 0:
        raise ValueError(f"sub-account index must be non-negative, got {value}")
    if value == 0:
        return b"\x00"
    return value.to_bytes((value.bit_length() + 7) // 8, "little")


def pallet_sub_account(pallet_id: Union[str, bytes], sub: Optional[int] = None) -> bytes:
    """Account owned by a pallet (``modl`` ++ 8-byte id [++ sub index])."""
    if isinstance(pallet_id, str):
        pallet_id = pallet_id.encode("ascii")
    if len(pallet_id) != PALLET_ID_LENGTH:
        raise ValueError(f"pallet ID length must be {PALLET_ID_LENGTH}, got {len(pallet_id)}")
    raw = PALLET_PREFIX + pallet_id
    if sub is not None:
        raw += _minimal_le(sub)
    return raw.ljust(ACCOUNT_LENGTH, b"\x00")


def pallet_account(pallet_id: Union[str, bytes]) -> bytes:
    return pallet_sub_account(pallet_id)


# ---------------------------------------------------------------------------
# SS58 text rendering
# ---------------------------------------------------------------------------

B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}

SS58_PREFIX = b"SS58PRE"
SS58_CHECKSUM_LENGTH = 2


def b58encode(b: bytes) -> str:
    n_pad = 0
    for c in b:
        if c == 0:
            n_pad += 1
        else:
            break
    num = int.from_bytes(b, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0] for _ in range(n_pad))
    out.reverse()
    return out.decode("ascii")


def b58decode(s: str) -> bytes:
    s_bytes = s.encode("ascii")
    num = 0
    for c in s_bytes:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    n_pad = 0
    for c in s_bytes:
        if c == B58_ALPHABET[0]:
            n_pad += 1
        else:
            break
    full = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + full


def _ss58_checksum(data: bytes) -> bytes:
    return hashlib.blake2b(SS58_PREFIX + data, digest_size=64).digest()[:SS58_CHECKSUM_LENGTH]


def _ss58_prefix(ss58_format: int) -> bytes:
    if 0 <= ss58_format < 64:
        return bytes([ss58_format])
    if 64 <= ss58_format < 16384:
        first = ((ss58_format & 0b0000_0000_1111_1100) >> 2) | 0b0100_0000
        second = (ss58_format >> 8) | ((ss58_format & 0b0000_0000_0000_0011) << 6)
        return bytes([first, second])
    raise ValueError(f"ss58 format out of range: {ss58_format}")


def ss58_encode(account: bytes, ss58_format: int = 42) -> str:
    """Render a 32-byte account in the ledger's SS58 address format."""
    if len(account) != ACCOUNT_LENGTH:
        raise ValueError(f"expected a {ACCOUNT_LENGTH}-byte account, got {len(account)}")
    body = _ss58_prefix(ss58_format) + account
    return b58encode(body + _ss58_checksum(body))


def ss58_decode(address: str) -> Tuple[int, bytes]:
    """Return ``(ss58_format, account)`` for an SS58 address."""
    raw = b58decode(address)
    if len(raw) < ACCOUNT_LENGTH + SS58_CHECKSUM_LENGTH + 1:
        raise ValueError(f"address too short: {address}")
    if raw[0] & 0b0100_0000:
        prefix_len = 2
        lower = ((raw[0] & 0b0011_1111) << 2) | (raw[1] >> 6)
        upper = raw[1] & 0b0011_1111
        ss58_format = lower | (upper << 8)
    else:
        prefix_len = 1
        ss58_format = raw[0]
    body, checksum = raw[:-SS58_CHECKSUM_LENGTH], raw[-SS58_CHECKSUM_LENGTH:]
    if _ss58_checksum(body) != checksum:
        raise ValueError(f"invalid SS58 checksum: {address}")
    account = body[prefix_len:]
    if len(account) != ACCOUNT_LENGTH:
        raise ValueError(f"unsupported account length {len(account)} in {address}")
    return ss58_format, account
