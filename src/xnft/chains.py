"""
xnft — Ledger presets

``LedgerConfig`` values for the ledgers the harness is exercised against:

* ``relay_config()``        — the relay chain (HRMP channels, sessions),
* ``quartz_config(id)``     — a *unique*-flavoured parachain: collections
  and items via ``unique.*``, ownership flags via ``nonfungible.owned``,
  derivatives as a plain ``instance -> token`` mapping,
* ``karura_config(id)``     — an *acala*-flavoured parachain: classes via
  ``nft.*`` driven by per-class pallet accounts, ownership records via
  ``ormlNFT.tokens``, derivatives tracked as ``DerivativeStatus``.

Every preset is plain data; nothing here talks to a ledger.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .client import Call
from .events import EventKind
from .ledger import (
    DerivativeScheme,
    Ledger,
    LedgerConfig,
    LedgerRole,
    NftScheme,
    OwnerQueryStyle,
)
from .location import AssetId, GeneralKey, Location, Parachain
from .sovereign import pallet_sub_account

KARURA_NFT_PALLET_INSTANCE = 121
KARURA_NATIVE_KEY = b"\x00\x80"
KARURA_CLASS_PALLET_ID = "aca/aNFT"
KARURA_XNFT_PALLET_ID = "aca/xNFT"
QUARTZ_FOREIGN_ASSETS_PALLET_ID = "frgnasts"

ENABLE_ALL_CLASS_FEATURES = 0xF
COLLECTION_PREFIX = "xNFT"


def str_utf16(value: str) -> List[int]:
    return [ord(c) for c in value]


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------

def relay_config(url: Optional[str] = None) -> LedgerConfig:
    return LedgerConfig(name="Relay", role=LedgerRole.RELAY, url=url)


def force_open_hrmp_channel(sender: int, recipient: int,
                            max_capacity: int = 8, max_message_size: int = 512) -> Call:
    return Call("hrmp", "forceOpenHrmpChannel", (sender, recipient, max_capacity, max_message_size))


# ---------------------------------------------------------------------------
# Quartz (unique flavour)
# ---------------------------------------------------------------------------

def _quartz_create_collection(ledger: Ledger) -> Call:
    return Call("unique", "createCollectionEx", ({"mode": "NFT", "tokenPrefix": COLLECTION_PREFIX},))


def _quartz_mint(ledger: Ledger, collection_id: int, owner: bytes) -> Call:
    return Call("unique", "createItem", (collection_id, {"Substrate": ledger.address(owner)}, "NFT"))


def _quartz_transfer(ledger: Ledger, recipient: bytes, collection_id: int, token_id: int) -> Call:
    return Call("unique", "transfer",
                ({"Substrate": ledger.address(recipient)}, collection_id, token_id, 1))


def _quartz_register(asset_id: AssetId, description: str) -> Call:
    return Call("foreignAssets", "forceRegisterForeignAsset",
                ({"V3": asset_id.to_wire()}, str_utf16(description or "Foreign NFT"),
                 COLLECTION_PREFIX, "NFT"))


def _quartz_register_fungible(location: Location, metadata: Dict[str, Any]) -> Call:
    return Call("foreignAssets", "forceRegisterForeignAsset",
                ({"V3": AssetId.concrete(location).to_wire()},
                 str_utf16(metadata["name"]),
                 metadata["symbol"],
                 {"Fungible": int(metadata["decimals"])}))


def quartz_config(para_id: int, url: Optional[str] = None, name: str = "Quartz") -> LedgerConfig:
    return LedgerConfig(
        name=name,
        para_id=para_id,
        url=url,
        bridge_pallet_id=QUARTZ_FOREIGN_ASSETS_PALLET_ID,
        nft=NftScheme(
            owner_query="nonfungible.owned",
            owner_query_style=OwnerQueryStyle.OWNED_FLAG,
            create_collection=_quartz_create_collection,
            collection_created=EventKind.COLLECTION_CREATED,
            mint=_quartz_mint,
            minted=EventKind.ITEM_CREATED,
            transfer=_quartz_transfer,
        ),
        derivatives=DerivativeScheme(
            collection_query="foreignAssets.foreignAssetToCollection",
            instance_query="foreignAssets.foreignReserveAssetInstanceToTokenId",
            tracks_status=False,
            register=_quartz_register,
            registered=EventKind.COLLECTION_CREATED,
            fungible_query="foreignAssets.foreignAssetToCollection",
            register_fungible=_quartz_register_fungible,
            fungible_registered=EventKind.COLLECTION_CREATED,
        ),
    )


# ---------------------------------------------------------------------------
# Karura (acala flavour)
# ---------------------------------------------------------------------------

def karura_class_account(class_id: int) -> bytes:
    """Pallet sub-account that owns (and mints into) one NFT class."""
    return pallet_sub_account(KARURA_CLASS_PALLET_ID, class_id)


def _karura_create_collection(ledger: Ledger) -> Call:
    return Call("nft", "createClass", ("xNFT Collection", ENABLE_ALL_CLASS_FEATURES, {}))


def _karura_mint(ledger: Ledger, collection_id: int, owner: bytes) -> Call:
    mint = Call("nft", "mint", ({"Id": ledger.address(owner)}, collection_id, COLLECTION_PREFIX, {}, 1))
    class_account = ledger.address(karura_class_account(collection_id))
    return Call("proxy", "proxy", ({"Id": class_account}, "Any", mint))


def _karura_transfer(ledger: Ledger, recipient: bytes, collection_id: int, token_id: int) -> Call:
    return Call("nft", "transfer", ({"Id": ledger.address(recipient)}, [collection_id, token_id]))


def _karura_register(asset_id: AssetId, description: str) -> Call:
    return Call("xnft", "registerAsset", ({"V3": asset_id.to_wire()},))


def _karura_register_fungible(location: Location, metadata: Dict[str, Any]) -> Call:
    return Call("assetRegistry", "registerForeignAsset", (
        {"V3": location.to_wire()},
        {
            "name": metadata["name"],
            "symbol": metadata["symbol"],
            "decimals": int(metadata["decimals"]),
            "minimalBalance": int(metadata.get("minimal_balance", 1)),
        },
    ))


def karura_native_currency_id(para_id: int) -> AssetId:
    return AssetId.concrete(Location(1, (Parachain(para_id), GeneralKey(KARURA_NATIVE_KEY))))


def karura_config(para_id: int, url: Optional[str] = None, name: str = "Karura") -> LedgerConfig:
    return LedgerConfig(
        name=name,
        para_id=para_id,
        url=url,
        native_currency_id=karura_native_currency_id(para_id),
        bridge_pallet_id=KARURA_XNFT_PALLET_ID,
        nft=NftScheme(
            owner_query="ormlNFT.tokens",
            owner_query_style=OwnerQueryStyle.OWNER_RECORD,
            create_collection=_karura_create_collection,
            collection_created=EventKind.NFT_CREATED_CLASS,
            mint=_karura_mint,
            minted=EventKind.NFT_MINTED_TOKEN,
            transfer=_karura_transfer,
            pallet_instance=KARURA_NFT_PALLET_INSTANCE,
            next_token_query="ormlNFT.nextTokenId",
            collection_account=karura_class_account,
        ),
        derivatives=DerivativeScheme(
            collection_query="xnft.foreignAssetToClass",
            instance_query="xnft.foreignInstanceToDerivativeStatus",
            tracks_status=True,
            register=_karura_register,
            registered=EventKind.XNFT_ASSET_REGISTERED,
            fungible_query="assetRegistry.locationToCurrencyIds",
            register_fungible=_karura_register_fungible,
            fungible_registered=EventKind.FOREIGN_ASSET_REGISTERED,
            fungible_by_location=True,
        ),
    )
