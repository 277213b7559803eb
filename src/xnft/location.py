"""
xnft — Location Model

Hierarchical addresses used to name accounts, parachains, assets and NFT
collections uniformly, whichever ledger is "local":

  - **Junction** variants: ``Parachain``, ``PalletInstance``,
    ``GeneralIndex``, ``GeneralKey``, ``AccountId32``.
  - **Location**: ``{parents, interior}`` where ``parents`` counts hops
    towards a common ancestor before descending ``interior``.
  - **AssetId** (``Concrete`` / ``Abstract``), **AssetInstance**,
    **Fungibility** and **MultiAsset** built on top of locations.

Every type is an immutable value with structural equality and a
``to_wire()`` / ``from_wire()`` pair producing the JSON-like shape the
ledgers accept::

    {"parents": 1, "interior": {"X2": [{"Parachain": 2095},
                                       {"GeneralIndex": 7}]}}
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

MAX_JUNCTIONS = 8
ACCOUNT_ID_LENGTH = 32
GENERAL_KEY_MAX_LENGTH = 32

ARRAY_INSTANCE_SIZES = (4, 8, 16, 32)


def _to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def _from_hex(value: Union[str, bytes]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes.fromhex(value.removeprefix("0x"))


# ---------------------------------------------------------------------------
# Junctions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Parachain:
    id: int

    def to_wire(self) -> Dict[str, Any]:
        return {"Parachain": self.id}


@dataclass(frozen=True)
class PalletInstance:
    index: int

    def to_wire(self) -> Dict[str, Any]:
        return {"PalletInstance": self.index}


@dataclass(frozen=True)
class GeneralIndex:
    index: int

    def to_wire(self) -> Dict[str, Any]:
        return {"GeneralIndex": self.index}


@dataclass(frozen=True)
class GeneralKey:
    """Opaque key; encoded as a fixed 32-byte array plus its used length."""

    data: bytes

    def __post_init__(self):
        if len(self.data) > GENERAL_KEY_MAX_LENGTH:
            raise ValueError(
                f"GeneralKey is limited to {GENERAL_KEY_MAX_LENGTH} bytes, "
                f"got {len(self.data)}"
            )

    def to_wire(self) -> Dict[str, Any]:
        padded = self.data.ljust(GENERAL_KEY_MAX_LENGTH, b"\x00")
        return {"GeneralKey": {"length": len(self.data), "data": _to_hex(padded)}}


@dataclass(frozen=True)
class AccountId32:
    id: bytes
    network: Optional[str] = None

    def __post_init__(self):
        if len(self.id) != ACCOUNT_ID_LENGTH:
            raise ValueError(
                f"AccountId32 must be {ACCOUNT_ID_LENGTH} bytes, got {len(self.id)}"
            )

    def to_wire(self) -> Dict[str, Any]:
        return {"AccountId32": {"network": self.network, "id": _to_hex(self.id)}}


Junction = Union[Parachain, PalletInstance, GeneralIndex, GeneralKey, AccountId32]


def junction_from_wire(data: Dict[str, Any]) -> Junction:
    """Decode a tagged junction record."""
    if not isinstance(data, dict) or len(data) != 1:
        raise ValueError(f"junction must be a single-key record, got {data!r}")
    tag, value = next(iter(data.items()))
    if tag == "Parachain":
        return Parachain(int(value))
    if tag == "PalletInstance":
        return PalletInstance(int(value))
    if tag == "GeneralIndex":
        return GeneralIndex(int(value))
    if tag == "GeneralKey":
        raw = _from_hex(value["data"])
        return GeneralKey(raw[: int(value["length"])])
    if tag == "AccountId32":
        return AccountId32(id=_from_hex(value["id"]), network=value.get("network"))
    raise ValueError(f"unknown junction variant: {tag}")


# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Location:
    """A relative address: ``parents`` hops up, then ``interior`` down."""

    parents: int = 0
    interior: Tuple[Junction, ...] = ()

    def __post_init__(self):
        if self.parents < 0:
            raise ValueError(f"parents must be non-negative, got {self.parents}")
        # Accept lists from callers but store an immutable tuple.
        object.__setattr__(self, "interior", tuple(self.interior))
        if len(self.interior) > MAX_JUNCTIONS:
            raise ValueError(
                f"a location holds at most {MAX_JUNCTIONS} junctions, "
                f"got {len(self.interior)}"
            )

    @property
    def is_here(self) -> bool:
        return not self.interior

    def parachain_id(self) -> Optional[int]:
        """Id of the first ``Parachain`` junction, if any."""
        for junction in self.interior:
            if isinstance(junction, Parachain):
                return junction.id
        return None

    def pushed(self, junction: Junction) -> "Location":
        return Location(self.parents, self.interior + (junction,))

    def to_wire(self) -> Dict[str, Any]:
        if not self.interior:
            interior: Any = "Here"
        elif len(self.interior) == 1:
            interior = {"X1": self.interior[0].to_wire()}
        else:
            interior = {f"X{len(self.interior)}": [j.to_wire() for j in self.interior]}
        return {"parents": self.parents, "interior": interior}

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "Location":
        interior = data.get("interior", "Here")
        if interior == "Here":
            return cls(int(data["parents"]), ())
        (tag, value), = interior.items()
        count = int(tag[1:])
        items = [value] if count == 1 and isinstance(value, dict) else list(value)
        if len(items) != count:
            raise ValueError(f"{tag} expects {count} junctions, got {len(items)}")
        return cls(int(data["parents"]), tuple(junction_from_wire(j) for j in items))

    def __str__(self) -> str:
        inner = ", ".join(repr(j) for j in self.interior) or "Here"
        return f"Location(parents={self.parents}, {inner})"


# -- Canonical constructors -------------------------------------------------

def account_location(account: bytes, network: Optional[str] = None) -> Location:
    """A bare account on the local ledger."""
    return Location(0, (AccountId32(account, network),))


def parachain_location(para_id: int) -> Location:
    """A sibling parachain seen from another parachain (or from the relay)."""
    return Location(1, (Parachain(para_id),))


def parachain_account_location(para_id: int, account: bytes,
                               network: Optional[str] = None) -> Location:
    return Location(1, (Parachain(para_id), AccountId32(account, network)))


def parachain_collection_location(para_id: int, collection_id: int,
                                  pallet_instance: Optional[int] = None) -> Location:
    """An NFT collection on a parachain.

    Ledgers exposing NFTs through a sub-pallet namespace put a
    ``PalletInstance`` between the parachain and the collection index.
    """
    if pallet_instance is None:
        return Location(1, (Parachain(para_id), GeneralIndex(collection_id)))
    return Location(1, (Parachain(para_id), PalletInstance(pallet_instance),
                        GeneralIndex(collection_id)))


RELAY_LOCATION = Location(1, ())


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AssetId:
    """Canonical identity of a currency or an NFT collection.

    Exactly one of ``location`` (``Concrete``) or ``abstract`` is set.
    """

    location: Optional[Location] = None
    abstract: Optional[str] = None

    def __post_init__(self):
        if (self.location is None) == (self.abstract is None):
            raise ValueError("AssetId is either Concrete or Abstract")

    @classmethod
    def concrete(cls, location: Location) -> "AssetId":
        return cls(location=location)

    @classmethod
    def of_abstract(cls, name: str) -> "AssetId":
        return cls(abstract=name)

    @property
    def is_concrete(self) -> bool:
        return self.location is not None

    def reserve_para_id(self) -> Optional[int]:
        """The parachain holding the reserve of this asset, if concrete."""
        return self.location.parachain_id() if self.location is not None else None

    def to_wire(self) -> Dict[str, Any]:
        if self.location is not None:
            return {"Concrete": self.location.to_wire()}
        return {"Abstract": self.abstract}

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "AssetId":
        if "Concrete" in data:
            return cls(location=Location.from_wire(data["Concrete"]))
        if "Abstract" in data:
            return cls(abstract=data["Abstract"])
        raise ValueError(f"unknown AssetId variant: {data!r}")


@dataclass(frozen=True)
class AssetInstance:
    """One unit within a non-fungible collection.

    ``Undefined`` when both fields are empty, ``Index(n)`` when ``index``
    is set, ``ArrayN`` when ``data`` holds 4, 8, 16 or 32 bytes.
    """

    index: Optional[int] = None
    data: Optional[bytes] = None

    def __post_init__(self):
        if self.index is not None and self.data is not None:
            raise ValueError("AssetInstance is Index or Array, not both")
        if self.data is not None and len(self.data) not in ARRAY_INSTANCE_SIZES:
            raise ValueError(f"array instances are 4/8/16/32 bytes, got {len(self.data)}")

    @classmethod
    def undefined(cls) -> "AssetInstance":
        return cls()

    @classmethod
    def of_index(cls, n: int) -> "AssetInstance":
        return cls(index=n)

    @classmethod
    def of_array(cls, data: bytes) -> "AssetInstance":
        return cls(data=data)

    def to_wire(self) -> Any:
        if self.index is not None:
            return {"Index": self.index}
        if self.data is not None:
            return {f"Array{len(self.data)}": _to_hex(self.data)}
        return "Undefined"

    @classmethod
    def from_wire(cls, data: Any) -> "AssetInstance":
        if data == "Undefined":
            return cls()
        (tag, value), = data.items()
        if tag == "Index":
            return cls(index=int(value))
        if tag.startswith("Array"):
            return cls(data=_from_hex(value))
        raise ValueError(f"unknown AssetInstance variant: {tag}")


@dataclass(frozen=True)
class Fungibility:
    amount: Optional[int] = None
    instance: Optional[AssetInstance] = None

    @property
    def is_fungible(self) -> bool:
        return self.amount is not None

    def to_wire(self) -> Dict[str, Any]:
        if self.amount is not None:
            return {"Fungible": self.amount}
        return {"NonFungible": (self.instance or AssetInstance()).to_wire()}

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "Fungibility":
        if "Fungible" in data:
            return cls(amount=int(data["Fungible"]))
        return cls(instance=AssetInstance.from_wire(data["NonFungible"]))


@dataclass(frozen=True)
class MultiAsset:
    id: AssetId
    fun: Fungibility

    @classmethod
    def fungible(cls, asset_id: AssetId, amount: int) -> "MultiAsset":
        return cls(asset_id, Fungibility(amount=amount))

    @classmethod
    def non_fungible(cls, asset_id: AssetId, instance: AssetInstance) -> "MultiAsset":
        return cls(asset_id, Fungibility(instance=instance))

    def to_wire(self) -> Dict[str, Any]:
        return {"id": self.id.to_wire(), "fun": self.fun.to_wire()}

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "MultiAsset":
        return cls(AssetId.from_wire(data["id"]), Fungibility.from_wire(data["fun"]))


XCM_VERSION = "V3"


def versioned(value: Any) -> Dict[str, Any]:
    """Wrap a wire value (or a model object) in the current XCM version tag."""
    if hasattr(value, "to_wire"):
        value = value.to_wire()
    return {XCM_VERSION: value}


def unversioned(data: Dict[str, Any]) -> Any:
    if XCM_VERSION not in data:
        raise ValueError(f"expected a {XCM_VERSION}-tagged value, got {sorted(data)}")
    return data[XCM_VERSION]
