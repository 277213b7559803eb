"""
xnft — Generic Ledger

One ``Ledger`` type for every chain taking part in a bridge scenario.
Chain differences are data, not subclasses: a ``LedgerConfig`` picks the
role (relay or parachain), the native currency id and, for parachains,
the NFT addressing scheme (``NftScheme``) and the foreign-asset registry
layout (``DerivativeScheme``).  Presets for concrete chains live in
``xnft.chains``.

Usage::

    quartz = await Ledger.connect(backend, quartz_config(para_id=2095))
    quartz.account_location(bob.account_id)   # parents=1, [Parachain, AccountId32]
    quartz.sovereign_account(2000)            # b"sibl" + u32_le(2000) + zeros
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from .client import BlockEvents, Call, LedgerBackend, Signer, Subscription
from .events import EventKind
from .location import (
    AssetId,
    AssetInstance,
    GeneralIndex,
    Location,
    MultiAsset,
    PalletInstance,
    Parachain,
    RELAY_LOCATION,
    account_location,
    parachain_account_location,
    parachain_collection_location,
    parachain_location,
)
from .sovereign import SovereignKind, derive_sovereign, pallet_account, ss58_encode

logger = logging.getLogger("xnft.ledger")

DEFAULT_SS58_FORMAT = 42


class LedgerRole(Enum):
    RELAY = "relay"
    PARACHAIN = "parachain"


class OwnerQueryStyle(Enum):
    """How a ledger answers "does X own token T"."""
    OWNED_FLAG = "owned_flag"        # query(collection, account, token) -> bool
    OWNER_RECORD = "owner_record"    # query(collection, token) -> {"owner": address}


@dataclass(frozen=True)
class NativeCurrency:
    id: AssetId
    symbol: str
    decimals: int

    def amount(self, value: int) -> int:
        """Whole units -> smallest units."""
        return int(value) * 10 ** self.decimals

    def as_multiasset(self, value: int) -> MultiAsset:
        return MultiAsset.fungible(self.id, self.amount(value))


@dataclass
class NftScheme:
    """How a parachain exposes NFTs to the rest of the network.

    Call builders receive the ledger first so they can render addresses
    in its SS58 format: ``create_collection(ledger)``,
    ``mint(ledger, collection_id, owner)`` and
    ``transfer(ledger, recipient, collection_id, token_id)``.

    Ledgers whose mint event does not carry the token id read it from
    ``next_token_query`` before minting.  When ``collection_account`` is
    set, each collection is driven by a pallet sub-account: it is
    sponsored with ``collection_sponsorship`` native units on creation
    and mints go through it by proxy.
    """

    owner_query: str
    owner_query_style: OwnerQueryStyle
    create_collection: Callable[..., Call]
    collection_created: EventKind
    mint: Callable[..., Call]
    minted: EventKind
    transfer: Callable[..., Call]
    pallet_instance: Optional[int] = None
    next_token_query: Optional[str] = None
    collection_account: Optional[Callable[[int], bytes]] = None
    collection_sponsorship: int = 10


@dataclass
class DerivativeScheme:
    """Where a parachain records derivatives of foreign assets."""

    collection_query: str
    instance_query: str
    tracks_status: bool
    register: Callable[[AssetId, str], Call]
    registered: EventKind
    fungible_query: str
    register_fungible: Callable[[Location, Dict[str, Any]], Call]
    fungible_registered: EventKind
    fungible_by_location: bool = False  # key the fungible lookup by Location, not AssetId


@dataclass
class LedgerConfig:
    name: str
    role: LedgerRole = LedgerRole.PARACHAIN
    para_id: Optional[int] = None
    native_currency_id: Optional[AssetId] = None  # None -> the ledger's own location
    nft: Optional[NftScheme] = None
    derivatives: Optional[DerivativeScheme] = None
    url: Optional[str] = None
    bridge_pallet_id: Optional[str] = None  # pallet holding bridged assets in custody

    def __post_init__(self):
        if self.role is LedgerRole.PARACHAIN and self.para_id is None:
            raise ValueError(f"parachain {self.name} needs a para_id")


def _first(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0]
    return value


class Ledger:
    """A connected ledger: identity, addressing and the client capabilities."""

    def __init__(self, backend: LedgerBackend, config: LedgerConfig,
                 native_currency: NativeCurrency,
                 ss58_format: int = DEFAULT_SS58_FORMAT):
        self.backend = backend
        self.config = config
        self.native_currency = native_currency
        self.ss58_format = ss58_format
        self._connected = True

    @classmethod
    async def connect(cls, backend: LedgerBackend, config: LedgerConfig) -> "Ledger":
        props = await backend.query_state("system.properties") or {}
        symbol = str(_first(props.get("tokenSymbol", "UNIT")))
        decimals = int(_first(props.get("tokenDecimals", 12)))
        ss58_format = int(props.get("ss58Format", DEFAULT_SS58_FORMAT))

        currency_id = config.native_currency_id
        if currency_id is None:
            currency_id = AssetId.concrete(cls._self_location_of(config))

        ledger = cls(backend, config, NativeCurrency(currency_id, symbol, decimals),
                     ss58_format)
        logger.info("%s: connected (symbol=%s, decimals=%d, ss58=%d)",
                    config.name, symbol, decimals, ss58_format)
        return ledger

    async def disconnect(self) -> None:
        if self._connected:
            self._connected = False
            await self.backend.close()
            logger.info("%s: disconnected", self.name)

    # -- Identity ------------------------------------------------------------

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def para_id(self) -> Optional[int]:
        return self.config.para_id

    @property
    def is_relay(self) -> bool:
        return self.config.role is LedgerRole.RELAY

    @property
    def connected(self) -> bool:
        return self._connected

    # -- Locations -----------------------------------------------------------

    @staticmethod
    def _self_location_of(config: LedgerConfig) -> Location:
        if config.role is LedgerRole.RELAY:
            return RELAY_LOCATION
        return parachain_location(config.para_id)

    @property
    def self_location(self) -> Location:
        """This ledger as seen from a sibling parachain."""
        return self._self_location_of(self.config)

    def account_location(self, account: bytes) -> Location:
        """An account on this ledger, addressed from the sending ledger."""
        if self.is_relay:
            return account_location(account)
        return parachain_account_location(self.para_id, account)

    def sovereign_account(self, para_id: int) -> bytes:
        """Custody account of parachain ``para_id`` on this ledger."""
        kind = SovereignKind.CHILD if self.is_relay else SovereignKind.SIBLING
        return derive_sovereign(kind, para_id)

    def address(self, account: bytes) -> str:
        return ss58_encode(account, self.ss58_format)

    @property
    def bridge_pallet_account(self) -> Optional[bytes]:
        if self.config.bridge_pallet_id is None:
            return None
        return pallet_account(self.config.bridge_pallet_id)

    # -- NFT addressing --------------------------------------------------------

    @property
    def nft(self) -> NftScheme:
        if self.config.nft is None:
            raise ValueError(f"{self.name} does not expose NFTs")
        return self.config.nft

    def asset_id(self, collection_id: int) -> AssetId:
        return AssetId.concrete(parachain_collection_location(
            self.para_id, collection_id, self.nft.pallet_instance))

    @staticmethod
    def asset_instance(token_id: int) -> AssetInstance:
        return AssetInstance.of_index(token_id)

    def local_token(self, asset_id: AssetId,
                    instance: AssetInstance) -> Optional[Tuple[int, int]]:
        """Inverse of ``asset_id``/``asset_instance`` for this ledger's own NFTs."""
        if asset_id.location is None or instance.index is None:
            return None
        expected = [Parachain(self.para_id)]
        if self.nft.pallet_instance is not None:
            expected.append(PalletInstance(self.nft.pallet_instance))
        interior = asset_id.location.interior
        if asset_id.location.parents != 1 or list(interior[:-1]) != expected:
            return None
        last = interior[-1] if interior else None
        if not isinstance(last, GeneralIndex):
            return None
        return last.index, instance.index

    async def check_token_owner(self, collection_id: int, token_id: int,
                                owner: bytes) -> bool:
        scheme = self.nft
        if scheme.owner_query_style is OwnerQueryStyle.OWNED_FLAG:
            owned = await self.query_state(
                scheme.owner_query, collection_id, {"Substrate": self.address(owner)}, token_id)
            return bool(owned)
        record = await self.query_state(scheme.owner_query, collection_id, token_id)
        return bool(record) and record.get("owner") == self.address(owner)

    # -- Client capabilities ---------------------------------------------------

    async def submit(self, call: Call, signer: Signer) -> str:
        return await self.backend.submit(call, signer)

    def subscribe_inclusion(self, handle: str) -> Subscription:
        return self.backend.subscribe_inclusion(handle)

    async def query_state(self, path: str, *args: Any) -> Any:
        return await self.backend.query_state(path, *args)

    def subscribe_new_blocks(self) -> "Subscription[BlockEvents]":
        return self.backend.subscribe_new_blocks()

    def __repr__(self) -> str:
        if self.is_relay:
            return f"<Ledger {self.name} (relay)>"
        return f"<Ledger {self.name} para={self.para_id}>"
