"""
xnft devnet — Runtimes

State-transition logic for the simulated ledgers.  A runtime applies
calls on behalf of an origin, emits ``ChainEvent`` records and, for
cross-chain transfers, hands ``XcmMessage`` objects to the router.

  - **Runtime**: balances, ``sudo.sudo``, snapshots for atomic dispatch.
  - **RelayRuntime**: HRMP channels and session rotation.
  - **ParachainRuntime**: foreign currencies, NFT collections and the
    ``xTokens`` reserve-transfer rules shared by both flavours.
  - **UniqueRuntime** / **AcalaRuntime**: the two NFT pallet flavours.
    The unique flavour keeps a plain ``instance -> token`` mapping and
    burns derivatives on withdrawal; the acala flavour records a
    ``DerivativeStatus`` and stashes derivatives in its pallet account.

A failed call leaves no trace: state is snapshotted before dispatch and
restored on ``DispatchError`` (the same commit/rollback model as a
contract call).
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..chains import (
    KARURA_NFT_PALLET_INSTANCE,
    KARURA_XNFT_PALLET_ID,
    QUARTZ_FOREIGN_ASSETS_PALLET_ID,
    karura_class_account,
)
from ..client import Call
from ..events import ChainEvent, decode_dispatch_error
from ..location import (
    AccountId32,
    AssetId,
    AssetInstance,
    GeneralIndex,
    Location,
    MultiAsset,
    Parachain,
    parachain_collection_location,
    unversioned,
)
from ..sovereign import pallet_account, sibling_sovereign, ss58_decode, ss58_encode
from .messages import XcmMessage

logger = logging.getLogger("xnft.devnet.runtime")

ROOT = None  # origin of privileged dispatch

BAD_ORIGIN = {"BadOrigin": None}
DEFAULT_WEIGHT = 1_000_000


class DispatchError(Exception):
    """A call failed; ``error`` is the wire-shaped dispatch error."""

    def __init__(self, error: Any):
        super().__init__(str(decode_dispatch_error(error)))
        self.error = error

    @classmethod
    def module(cls, section: str, method: str) -> "DispatchError":
        return cls({"Module": {"section": section, "method": method}})

    @classmethod
    def other(cls, description: str) -> "DispatchError":
        return cls({"Other": description})

    @classmethod
    def xcm(cls, name: str) -> "DispatchError":
        return cls({name: None})


def xcm_execution_failed() -> DispatchError:
    return DispatchError.module("xTokens", "XcmExecutionFailed")


@dataclass
class NftCollection:
    owner: bytes
    items: Dict[int, bytes] = field(default_factory=dict)
    next_token_id: int = 0
    foreign: Optional[AssetId] = None  # reserve asset id of a derivative collection


@dataclass
class RuntimeState:
    balances: Dict[bytes, int] = field(default_factory=dict)
    foreign_balances: Dict[int, Dict[bytes, int]] = field(default_factory=dict)
    collections: Dict[int, NftCollection] = field(default_factory=dict)
    next_collection_id: int = 0
    foreign_collections: Dict[AssetId, int] = field(default_factory=dict)
    foreign_currencies: Dict[Location, int] = field(default_factory=dict)
    next_currency_id: int = 0
    derivatives: Dict[Tuple[int, AssetInstance], Tuple[str, int]] = field(default_factory=dict)
    proxies: Dict[bytes, Set[bytes]] = field(default_factory=dict)
    channels: Dict[Tuple[int, int], Dict[str, int]] = field(default_factory=dict)
    session_index: int = 0
    height: int = 0


# ══════════════════════════════════════════════════════════════════════
#  Base runtime
# ══════════════════════════════════════════════════════════════════════

class Runtime:
    """Balances, sudo and atomic dispatch."""

    flavour = "base"

    def __init__(self, name: str, properties: Dict[str, Any], sudo_key: bytes,
                 endowment: Optional[Dict[bytes, int]] = None,
                 para_id: Optional[int] = None):
        self.name = name
        self.para_id = para_id
        self.properties = dict(properties)
        self.sudo_key = sudo_key
        self.state = RuntimeState(balances=dict(endowment or {}))
        self.network = None  # set by DevnetNetwork
        self._outbox: List[XcmMessage] = []
        self._calls: Dict[str, Callable[..., List[ChainEvent]]] = {
            "balances.transferKeepAlive": self._balances_transfer,
            "sudo.sudo": self._sudo,
        }
        self._queries: Dict[str, Callable[..., Any]] = {
            "system.properties": lambda: dict(self.properties),
            "system.account": self._system_account,
        }

    # -- Helpers -------------------------------------------------------------

    @property
    def ss58_format(self) -> int:
        return int(self.properties.get("ss58Format", 42))

    def address(self, account: bytes) -> str:
        return ss58_encode(account, self.ss58_format)

    @staticmethod
    def account_of(who: Any) -> bytes:
        """Decode ``{"Id": addr}``, ``{"Substrate": addr}``, an address or raw bytes."""
        if isinstance(who, dict) and len(who) == 1:
            who = next(iter(who.values()))
        if isinstance(who, bytes):
            return who
        if not isinstance(who, str):
            raise DispatchError.other(f"invalid account {who!r}")
        try:
            return ss58_decode(who)[1]
        except ValueError:
            raise DispatchError.other(f"invalid account {who!r}")

    @staticmethod
    def event(section: str, method: str, *data: Any) -> ChainEvent:
        return ChainEvent(section, method, tuple(data))

    def free_balance(self, account: bytes) -> int:
        return self.state.balances.get(account, 0)

    def foreign_balance(self, currency_id: int, account: bytes) -> int:
        return self.state.foreign_balances.get(currency_id, {}).get(account, 0)

    def _withdraw(self, account: bytes, amount: int) -> None:
        if self.free_balance(account) < amount:
            raise DispatchError.module("balances", "InsufficientBalance")
        self.state.balances[account] -= amount

    def _deposit(self, account: bytes, amount: int) -> None:
        self.state.balances[account] = self.free_balance(account) + amount

    def _require_root(self, origin: Optional[bytes]) -> None:
        if origin is not ROOT:
            raise DispatchError(BAD_ORIGIN)

    def _require_signed(self, origin: Optional[bytes]) -> bytes:
        if origin is ROOT:
            raise DispatchError(BAD_ORIGIN)
        return origin

    # -- Dispatch ----------------------------------------------------------------

    def _snapshot(self) -> Tuple[RuntimeState, List[XcmMessage]]:
        return copy.deepcopy(self.state), list(self._outbox)

    def _rollback(self, snapshot: Tuple[RuntimeState, List[XcmMessage]]) -> None:
        self.state, self._outbox = snapshot

    def dispatch(self, call: Call, origin: Optional[bytes]) -> List[ChainEvent]:
        handler = self._calls.get(call.name)
        if handler is None:
            raise DispatchError.other(f"unknown call {call.name}")
        try:
            return handler(origin, *call.args)
        except (KeyError, ValueError, TypeError) as e:
            raise DispatchError.other(f"{call.name}: malformed arguments ({e})")

    def apply_extrinsic(self, call: Call, origin: bytes) -> Tuple[List[ChainEvent], List[XcmMessage]]:
        """Apply one signed call atomically; returns its events and outgoing messages."""
        self._outbox = []
        snapshot = self._snapshot()
        try:
            events = self.dispatch(call, origin)
        except DispatchError as e:
            self._rollback(snapshot)
            logger.debug("%s: %s failed: %s", self.name, call.name, e)
            return [self.event("system", "ExtrinsicFailed", e.error, {"weight": DEFAULT_WEIGHT})], []
        outbox, self._outbox = self._outbox, []
        events.append(self.event("system", "ExtrinsicSuccess", {"weight": DEFAULT_WEIGHT}))
        return events, outbox

    def on_initialize(self, height: int) -> List[ChainEvent]:
        self.state.height = height
        return []

    def query(self, path: str, *args: Any) -> Any:
        handler = self._queries.get(path)
        if handler is None:
            raise ValueError(f"{self.name}: unknown storage path {path}")
        return handler(*args)

    # -- Calls -------------------------------------------------------------------

    def _balances_transfer(self, origin, dest, amount) -> List[ChainEvent]:
        sender = self._require_signed(origin)
        recipient = self.account_of(dest)
        amount = int(amount)
        self._withdraw(sender, amount)
        self._deposit(recipient, amount)
        return [self.event("balances", "Transfer",
                           self.address(sender), self.address(recipient), amount)]

    def _sudo(self, origin, inner: Call) -> List[ChainEvent]:
        if origin != self.sudo_key:
            raise DispatchError.module("sudo", "RequireSudo")
        snapshot = self._snapshot()
        try:
            events = self.dispatch(inner, ROOT)
        except DispatchError as e:
            self._rollback(snapshot)
            return [self.event("sudo", "Sudid", {"Err": e.error})]
        return events + [self.event("sudo", "Sudid", {"Ok": None})]

    def _system_account(self, who) -> Dict[str, Any]:
        return {"data": {"free": self.free_balance(self.account_of(who))}}


# ══════════════════════════════════════════════════════════════════════
#  Relay
# ══════════════════════════════════════════════════════════════════════

class RelayRuntime(Runtime):
    """HRMP channel registry and session rotation."""

    flavour = "relay"

    def __init__(self, *args, session_length: int = 3, **kwargs):
        super().__init__(*args, **kwargs)
        if session_length < 1:
            raise ValueError("session_length must be at least 1")
        self.session_length = session_length
        self._calls["hrmp.forceOpenHrmpChannel"] = self._force_open_hrmp_channel
        self._queries.update({
            "session.currentIndex": lambda: self.state.session_index,
            "hrmp.hrmpChannels": self._hrmp_channel,
        })

    def on_initialize(self, height: int) -> List[ChainEvent]:
        events = super().on_initialize(height)
        if height % self.session_length == 0:
            self.state.session_index += 1
            events.append(self.event("session", "NewSession", self.state.session_index))
            logger.debug("%s: session #%d starts at block #%d",
                         self.name, self.state.session_index, height)
        return events

    def has_channel(self, sender: int, recipient: int) -> bool:
        return (sender, recipient) in self.state.channels

    def _force_open_hrmp_channel(self, origin, sender, recipient,
                                 max_capacity, max_message_size) -> List[ChainEvent]:
        self._require_root(origin)
        key = (int(sender), int(recipient))
        if key[0] == key[1]:
            raise DispatchError.module("hrmp", "OpenHrmpChannelToSelf")
        if key in self.state.channels:
            raise DispatchError.module("hrmp", "OpenHrmpChannelAlreadyExists")
        self.state.channels[key] = {
            "maxCapacity": int(max_capacity),
            "maxMessageSize": int(max_message_size),
        }
        return [self.event("hrmp", "HrmpChannelForceOpened",
                           key[0], key[1], int(max_capacity), int(max_message_size))]

    def _hrmp_channel(self, pair) -> Optional[Dict[str, int]]:
        sender, recipient = pair
        channel = self.state.channels.get((int(sender), int(recipient)))
        return dict(channel) if channel is not None else None


# ══════════════════════════════════════════════════════════════════════
#  Parachains
# ══════════════════════════════════════════════════════════════════════

class ParachainRuntime(Runtime, ABC):
    """Foreign currencies, NFT collections and reserve transfers."""

    flavour = "parachain"
    pallet_instance: Optional[int] = None
    first_id = 0

    def __init__(self, name: str, para_id: int, properties: Dict[str, Any],
                 sudo_key: bytes, native_currency_id: AssetId,
                 bridge_pallet_id: str,
                 endowment: Optional[Dict[bytes, int]] = None):
        super().__init__(name, properties, sudo_key, endowment, para_id=para_id)
        self.native_currency_id = native_currency_id
        self.bridge_account = pallet_account(bridge_pallet_id)
        self.state.next_collection_id = self.first_id
        self.state.next_currency_id = self.first_id
        self._calls["xTokens.transferMultiassetWithFee"] = self._transfer_multiasset_with_fee
        self._queries["tokens.accounts"] = self._tokens_account

    # -- Collections -------------------------------------------------------------

    def collection_location(self, collection_id: int) -> Location:
        return parachain_collection_location(self.para_id, collection_id, self.pallet_instance)

    def local_collection(self, location: Optional[Location]) -> Optional[int]:
        """Collection id named by *location* in this ledger's own layout."""
        if location is None or location.parents != 1 or not location.interior:
            return None
        last = location.interior[-1]
        if not isinstance(last, GeneralIndex):
            return None
        if location != self.collection_location(last.index):
            return None
        return last.index

    def _create_collection(self, owner: bytes, foreign: Optional[AssetId] = None) -> int:
        collection_id = self.state.next_collection_id
        self.state.next_collection_id += 1
        self.state.collections[collection_id] = NftCollection(
            owner=owner, next_token_id=self.first_id, foreign=foreign)
        return collection_id

    def _collection(self, collection_id: int, section: str, missing: str) -> NftCollection:
        collection = self.state.collections.get(int(collection_id))
        if collection is None:
            raise DispatchError.module(section, missing)
        return collection

    def _mint(self, collection_id: int, owner: bytes) -> int:
        collection = self.state.collections[collection_id]
        token_id = collection.next_token_id
        collection.next_token_id += 1
        collection.items[token_id] = owner
        return token_id

    def _nft_move(self, collection_id: int, token_id: int, to: bytes) -> List[ChainEvent]:
        items = self.state.collections[collection_id].items
        sender = items[token_id]
        items[token_id] = to
        return [self._transfer_event(collection_id, token_id, sender, to)]

    @abstractmethod
    def _transfer_event(self, collection_id: int, token_id: int,
                        sender: bytes, recipient: bytes) -> ChainEvent:
        """The NFT pallet's transfer event."""

    @abstractmethod
    def _withdraw_derivative(self, origin: bytes, collection_id: int,
                             instance: AssetInstance) -> List[ChainEvent]:
        """Send a derivative home: retire it the way this flavour does."""

    @abstractmethod
    def _deposit_derivative(self, collection_id: int, instance: AssetInstance,
                            beneficiary: bytes) -> List[ChainEvent]:
        """Hand a derivative to *beneficiary*, minting or reusing one."""

    def owner_of(self, collection_id: int, token_id: int) -> Optional[bytes]:
        collection = self.state.collections.get(collection_id)
        if collection is None:
            return None
        return collection.items.get(token_id)

    # -- Foreign currencies ------------------------------------------------------

    def _register_currency(self, location: Location) -> int:
        currency_id = self.state.next_currency_id
        self.state.next_currency_id += 1
        self.state.foreign_currencies[location] = currency_id
        self.state.foreign_balances[currency_id] = {}
        return currency_id

    def _foreign_currency(self, asset_id: AssetId) -> Optional[int]:
        if asset_id.location is None:
            return None
        return self.state.foreign_currencies.get(asset_id.location)

    def _tokens_account(self, who, currency_id) -> Dict[str, int]:
        return {"free": self.foreign_balance(int(currency_id), self.account_of(who))}

    # -- xTokens: sending side ---------------------------------------------------

    def _transfer_multiasset_with_fee(self, origin, asset, fee, dest, weight_limit) -> List[ChainEvent]:
        sender = self._require_signed(origin)
        try:
            asset = MultiAsset.from_wire(unversioned(asset))
            fee = MultiAsset.from_wire(unversioned(fee))
            dest = Location.from_wire(unversioned(dest))
        except (KeyError, ValueError, TypeError, AttributeError):
            raise DispatchError.module("xTokens", "InvalidAsset")

        dest_para, beneficiary = self._split_dest(dest)
        if dest_para == self.para_id:
            raise DispatchError.module("xTokens", "NotCrossChainTransfer")
        if asset.fun.is_fungible or not fee.fun.is_fungible or fee.fun.amount <= 0:
            raise DispatchError.module("xTokens", "InvalidAsset")
        if self.network is None or not self.network.has_channel(self.para_id, dest_para):
            raise xcm_execution_failed()

        events = self._withdraw_fee(sender, fee, dest_para)
        events += self._withdraw_nft(sender, asset, dest_para)

        message = self.network.new_message(self.para_id, dest_para, beneficiary, asset, fee)
        self._outbox.append(message)
        events.append(self.event("xTokens", "TransferredMultiAssets", self.address(sender),
                                 [asset.to_wire()], fee.to_wire(), dest.to_wire()))
        events.append(self.event("xcmpQueue", "XcmpMessageSent", message.message_hash))
        return events

    @staticmethod
    def _split_dest(dest: Location) -> Tuple[int, bytes]:
        interior = dest.interior
        if (dest.parents != 1 or len(interior) != 2
                or not isinstance(interior[0], Parachain)
                or not isinstance(interior[1], AccountId32)):
            raise DispatchError.module("xTokens", "InvalidDest")
        return interior[0].id, interior[1].id

    def _withdraw_fee(self, sender: bytes, fee: MultiAsset, dest_para: int) -> List[ChainEvent]:
        amount = fee.fun.amount
        if fee.id == self.native_currency_id:
            # Native fee leaves through the reserve: park it with the destination's sovereign.
            if self.free_balance(sender) < amount:
                raise xcm_execution_failed()
            custodian = sibling_sovereign(dest_para)
            self._withdraw(sender, amount)
            self._deposit(custodian, amount)
            return [self.event("balances", "Transfer",
                               self.address(sender), self.address(custodian), amount)]

        currency_id = self._foreign_currency(fee.id)
        if currency_id is None or fee.id.reserve_para_id() != dest_para:
            raise xcm_execution_failed()
        holdings = self.state.foreign_balances[currency_id]
        if holdings.get(sender, 0) < amount:
            raise xcm_execution_failed()
        holdings[sender] -= amount
        return [self.event("tokens", "Withdrawn", currency_id, self.address(sender), amount)]

    def _withdraw_nft(self, sender: bytes, asset: MultiAsset, dest_para: int) -> List[ChainEvent]:
        instance = asset.fun.instance
        reserve = asset.id.reserve_para_id()

        if reserve == self.para_id:
            collection_id = self.local_collection(asset.id.location)
            collection = self.state.collections.get(collection_id) if collection_id is not None else None
            # A derivative is not a local asset, whatever its location says.
            if collection is None or collection.foreign is not None:
                raise xcm_execution_failed()
            if instance.index is None or collection.items.get(instance.index) != sender:
                raise xcm_execution_failed()
            return self._nft_move(collection_id, instance.index, sibling_sovereign(dest_para))

        if reserve == dest_para:
            collection_id = self.state.foreign_collections.get(asset.id)
            if collection_id is None:
                raise xcm_execution_failed()
            return self._withdraw_derivative(sender, collection_id, instance)

        raise xcm_execution_failed()

    # -- xTokens: receiving side -------------------------------------------------

    def receive(self, message: XcmMessage) -> List[ChainEvent]:
        """Execute an inbound message; ``xcmpQueue.Success`` or ``xcmpQueue.Fail``."""
        snapshot = self._snapshot()
        try:
            events = self._deposit_fee(message)
            events += self._deposit_nft(message)
        except DispatchError as e:
            self._rollback(snapshot)
            reason = str(decode_dispatch_error(e.error))
            logger.info("%s: message %s failed: %s", self.name, message.message_hash, reason)
            return [self.event("xcmpQueue", "Fail", message.message_hash, reason, DEFAULT_WEIGHT)]
        events.append(self.event("xcmpQueue", "Success", message.message_hash, DEFAULT_WEIGHT))
        return events

    def _deposit_fee(self, message: XcmMessage) -> List[ChainEvent]:
        fee, amount = message.fee, message.fee.fun.amount
        beneficiary = message.beneficiary

        if fee.id == self.native_currency_id:
            custodian = sibling_sovereign(message.source)
            if self.free_balance(custodian) < amount:
                raise DispatchError.xcm("FailedToTransactAsset")
            self._withdraw(custodian, amount)
            self._deposit(beneficiary, amount)
            return [self.event("balances", "Transfer",
                               self.address(custodian), self.address(beneficiary), amount)]

        currency_id = self._foreign_currency(fee.id)
        if currency_id is None or fee.id.reserve_para_id() != message.source:
            raise DispatchError.xcm("AssetNotFound")
        holdings = self.state.foreign_balances[currency_id]
        holdings[beneficiary] = holdings.get(beneficiary, 0) + amount
        return [self.event("tokens", "Deposited", currency_id, self.address(beneficiary), amount)]

    def _deposit_nft(self, message: XcmMessage) -> List[ChainEvent]:
        asset = message.asset
        instance = asset.fun.instance
        reserve = asset.id.reserve_para_id()

        if reserve == self.para_id:
            collection_id = self.local_collection(asset.id.location)
            collection = self.state.collections.get(collection_id) if collection_id is not None else None
            if (collection is None or collection.foreign is not None
                    or instance.index not in collection.items):
                raise DispatchError.xcm("AssetNotFound")
            if collection.items[instance.index] != sibling_sovereign(message.source):
                raise DispatchError.xcm("FailedToTransactAsset")
            return self._nft_move(collection_id, instance.index, message.beneficiary)

        if reserve == message.source:
            collection_id = self.state.foreign_collections.get(asset.id)
            if collection_id is None:
                raise DispatchError.xcm("AssetNotFound")
            return self._deposit_derivative(collection_id, instance, message.beneficiary)

        raise DispatchError.xcm("UntrustedReserveLocation")


class UniqueRuntime(ParachainRuntime):
    """``unique.*`` collections; derivatives are burned when they leave."""

    flavour = "unique"
    first_id = 1

    def __init__(self, *args, bridge_pallet_id: str = QUARTZ_FOREIGN_ASSETS_PALLET_ID, **kwargs):
        super().__init__(*args, bridge_pallet_id=bridge_pallet_id, **kwargs)
        self._calls.update({
            "unique.createCollectionEx": self._create_collection_ex,
            "unique.createItem": self._create_item,
            "unique.transfer": self._unique_transfer,
            "foreignAssets.forceRegisterForeignAsset": self._force_register_foreign_asset,
        })
        self._queries.update({
            "nonfungible.owned": self._owned,
            "foreignAssets.foreignAssetToCollection": self._foreign_asset_to_collection,
            "foreignAssets.foreignReserveAssetInstanceToTokenId": self._instance_to_token,
        })

    def _transfer_event(self, collection_id, token_id, sender, recipient) -> ChainEvent:
        return self.event("common", "Transfer", collection_id, token_id,
                          self.address(sender), self.address(recipient), 1)

    def _withdraw_derivative(self, origin, collection_id, instance) -> List[ChainEvent]:
        key = (collection_id, instance)
        status = self.state.derivatives.get(key)
        if status is None:
            raise xcm_execution_failed()
        token_id = status[1]
        collection = self.state.collections[collection_id]
        if collection.items.get(token_id) != origin:
            raise xcm_execution_failed()
        del collection.items[token_id]
        del self.state.derivatives[key]
        return [self.event("common", "ItemDestroyed", collection_id, token_id,
                           self.address(origin), 1)]

    def _deposit_derivative(self, collection_id, instance, beneficiary) -> List[ChainEvent]:
        key = (collection_id, instance)
        if key in self.state.derivatives:
            raise DispatchError.xcm("FailedToTransactAsset")
        token_id = self._mint(collection_id, beneficiary)
        self.state.derivatives[key] = ("Active", token_id)
        return [self.event("common", "ItemCreated", collection_id, token_id,
                           self.address(beneficiary), 1)]

    # -- Calls ---------------------------------------------------------------

    def _create_collection_ex(self, origin, data) -> List[ChainEvent]:
        owner = self._require_signed(origin)
        if data.get("mode", "NFT") != "NFT":
            raise DispatchError.module("common", "UnsupportedOperation")
        collection_id = self._create_collection(owner)
        return [self.event("common", "CollectionCreated", collection_id, 0, self.address(owner))]

    def _create_item(self, origin, collection_id, owner, mode) -> List[ChainEvent]:
        sender = self._require_signed(origin)
        collection = self._collection(collection_id, "common", "CollectionNotFound")
        if collection.owner != sender:
            raise DispatchError.module("common", "NoPermission")
        recipient = self.account_of(owner)
        token_id = self._mint(int(collection_id), recipient)
        return [self.event("common", "ItemCreated", int(collection_id), token_id,
                           self.address(recipient), 1)]

    def _unique_transfer(self, origin, recipient, collection_id, token_id, amount) -> List[ChainEvent]:
        sender = self._require_signed(origin)
        collection = self._collection(collection_id, "common", "CollectionNotFound")
        if int(token_id) not in collection.items:
            raise DispatchError.module("common", "TokenNotFound")
        if collection.items[int(token_id)] != sender:
            raise DispatchError.module("common", "NoPermission")
        return self._nft_move(int(collection_id), int(token_id), self.account_of(recipient))

    def _force_register_foreign_asset(self, origin, asset, name, prefix, mode) -> List[ChainEvent]:
        self._require_root(origin)
        asset_id = AssetId.from_wire(unversioned(asset))
        if asset_id.location is None or asset_id.reserve_para_id() == self.para_id:
            raise DispatchError.module("foreignAssets", "BadForeignAsset")
        if (asset_id in self.state.foreign_collections
                or asset_id.location in self.state.foreign_currencies):
            raise DispatchError.module("foreignAssets", "ForeignAssetAlreadyRegistered")

        if mode == "NFT":
            collection_id = self._create_collection(self.bridge_account, foreign=asset_id)
            self.state.foreign_collections[asset_id] = collection_id
            mode_code = 0
        else:
            # Fungible foreign assets share the collection id space.
            collection_id = self.state.next_collection_id
            self.state.next_collection_id += 1
            self.state.foreign_currencies[asset_id.location] = collection_id
            self.state.foreign_balances[collection_id] = {}
            mode_code = 1
        return [self.event("common", "CollectionCreated", collection_id, mode_code,
                           self.address(self.bridge_account))]

    # -- Queries -------------------------------------------------------------

    def _owned(self, collection_id, who, token_id) -> bool:
        owner = self.owner_of(int(collection_id), int(token_id))
        return owner is not None and owner == self.account_of(who)

    def _foreign_asset_to_collection(self, asset) -> Optional[int]:
        asset_id = AssetId.from_wire(asset)
        if asset_id in self.state.foreign_collections:
            return self.state.foreign_collections[asset_id]
        return self._foreign_currency(asset_id)

    def _instance_to_token(self, collection_id, instance) -> Optional[int]:
        status = self.state.derivatives.get((int(collection_id), AssetInstance.from_wire(instance)))
        return status[1] if status is not None else None


class AcalaRuntime(ParachainRuntime):
    """``nft.*`` classes behind pallet accounts; derivatives are stashed when they leave."""

    flavour = "acala"
    pallet_instance = KARURA_NFT_PALLET_INSTANCE
    first_id = 0

    def __init__(self, *args, bridge_pallet_id: str = KARURA_XNFT_PALLET_ID, **kwargs):
        super().__init__(*args, bridge_pallet_id=bridge_pallet_id, **kwargs)
        self._calls.update({
            "nft.createClass": self._create_class,
            "nft.mint": self._nft_mint,
            "nft.transfer": self._nft_transfer,
            "proxy.proxy": self._proxy,
            "xnft.registerAsset": self._register_asset,
            "assetRegistry.registerForeignAsset": self._register_foreign_currency,
        })
        self._queries.update({
            "ormlNFT.tokens": self._tokens,
            "ormlNFT.nextTokenId": self._next_token_id,
            "ormlNFT.classes": self._classes,
            "xnft.foreignAssetToClass": self._foreign_asset_to_class,
            "xnft.foreignInstanceToDerivativeStatus": self._derivative_status,
            "assetRegistry.locationToCurrencyIds": self._location_to_currency,
        })

    def _transfer_event(self, collection_id, token_id, sender, recipient) -> ChainEvent:
        return self.event("nft", "TransferredToken", self.address(sender),
                          self.address(recipient), collection_id, token_id)

    def _withdraw_derivative(self, origin, collection_id, instance) -> List[ChainEvent]:
        key = (collection_id, instance)
        status = self.state.derivatives.get(key)
        if status is None or status[0] != "Active":
            raise xcm_execution_failed()
        token_id = status[1]
        if self.state.collections[collection_id].items.get(token_id) != origin:
            raise xcm_execution_failed()
        self.state.derivatives[key] = ("Stashed", token_id)
        return self._nft_move(collection_id, token_id, self.bridge_account)

    def _deposit_derivative(self, collection_id, instance, beneficiary) -> List[ChainEvent]:
        key = (collection_id, instance)
        status = self.state.derivatives.get(key)
        if status is None:
            token_id = self._mint(collection_id, beneficiary)
            self.state.derivatives[key] = ("Active", token_id)
            return [self.event("nft", "MintedToken", self.address(self.bridge_account),
                               self.address(beneficiary), collection_id, 1)]
        if status[0] == "Stashed":
            self.state.derivatives[key] = ("Active", status[1])
            return self._nft_move(collection_id, status[1], beneficiary)
        raise DispatchError.xcm("FailedToTransactAsset")

    # -- Calls ---------------------------------------------------------------

    def _create_class(self, origin, metadata, properties, attributes) -> List[ChainEvent]:
        creator = self._require_signed(origin)
        class_id = self.state.next_collection_id
        class_account = karura_class_account(class_id)
        self._create_collection(class_account)
        self.state.proxies.setdefault(class_account, set()).add(creator)
        return [self.event("nft", "CreatedClass", self.address(creator), class_id)]

    def _nft_mint(self, origin, to, class_id, metadata, attributes, quantity) -> List[ChainEvent]:
        sender = self._require_signed(origin)
        collection = self._collection(class_id, "nft", "ClassIdNotFound")
        if collection.owner != sender:
            raise DispatchError.module("nft", "NoPermission")
        if int(quantity) < 1:
            raise DispatchError.module("nft", "InvalidQuantity")
        recipient = self.account_of(to)
        for _ in range(int(quantity)):
            self._mint(int(class_id), recipient)
        return [self.event("nft", "MintedToken", self.address(sender),
                           self.address(recipient), int(class_id), int(quantity))]

    def _nft_transfer(self, origin, to, token) -> List[ChainEvent]:
        sender = self._require_signed(origin)
        class_id, token_id = (int(x) for x in token)
        collection = self._collection(class_id, "nft", "ClassIdNotFound")
        if token_id not in collection.items:
            raise DispatchError.module("ormlNFT", "TokenNotFound")
        if collection.items[token_id] != sender:
            raise DispatchError.module("nft", "NoPermission")
        return self._nft_move(class_id, token_id, self.account_of(to))

    def _proxy(self, origin, real, proxy_type, inner: Call) -> List[ChainEvent]:
        delegate = self._require_signed(origin)
        real_account = self.account_of(real)
        if delegate not in self.state.proxies.get(real_account, set()):
            raise DispatchError.module("proxy", "NotProxy")
        events = self.dispatch(inner, real_account)
        return events + [self.event("proxy", "ProxyExecuted", {"Ok": None})]

    def _register_asset(self, origin, asset) -> List[ChainEvent]:
        self._require_root(origin)
        asset_id = AssetId.from_wire(unversioned(asset))
        if asset_id.location is None:
            raise DispatchError.module("xnft", "BadAssetId")
        if asset_id.reserve_para_id() == self.para_id:
            raise DispatchError.module("xnft", "AttemptToRegisterLocalAsset")
        if asset_id in self.state.foreign_collections:
            raise DispatchError.module("xnft", "AssetAlreadyRegistered")
        class_id = self._create_collection(self.bridge_account, foreign=asset_id)
        self.state.foreign_collections[asset_id] = class_id
        return [self.event("xnft", "AssetRegistered", asset_id.to_wire(), class_id)]

    def _register_foreign_currency(self, origin, location, metadata) -> List[ChainEvent]:
        self._require_root(origin)
        location = Location.from_wire(unversioned(location))
        if location in self.state.foreign_currencies:
            raise DispatchError.module("assetRegistry", "MultiLocationExisted")
        currency_id = self._register_currency(location)
        return [self.event("assetRegistry", "ForeignAssetRegistered",
                           currency_id, location.to_wire(), dict(metadata))]

    # -- Queries -------------------------------------------------------------

    def _tokens(self, class_id, token_id) -> Optional[Dict[str, Any]]:
        owner = self.owner_of(int(class_id), int(token_id))
        if owner is None:
            return None
        return {"metadata": "xNFT", "owner": self.address(owner), "data": {}}

    def _next_token_id(self, class_id) -> int:
        collection = self.state.collections.get(int(class_id))
        return collection.next_token_id if collection is not None else self.first_id

    def _classes(self, class_id) -> Optional[Dict[str, Any]]:
        collection = self.state.collections.get(int(class_id))
        if collection is None:
            return None
        return {"owner": self.address(collection.owner), "totalIssuance": len(collection.items)}

    def _foreign_asset_to_class(self, asset) -> Optional[int]:
        return self.state.foreign_collections.get(AssetId.from_wire(asset))

    def _derivative_status(self, class_id, instance) -> Any:
        status = self.state.derivatives.get((int(class_id), AssetInstance.from_wire(instance)))
        if status is None:
            return "NotExists"
        return {status[0].lower(): status[1]}

    def _location_to_currency(self, location) -> Optional[Dict[str, int]]:
        currency_id = self.state.foreign_currencies.get(Location.from_wire(location))
        return {"ForeignAsset": currency_id} if currency_id is not None else None
