"""
xnft — Event kinds and typed decoders

Ledgers report what happened in a block as a list of events, each a
``(section, method, data)`` record.  Instead of resolving event names at
runtime through nested attribute lookups, the harness works with a
closed set of supported kinds:

  - **ChainEvent**: the raw record as delivered by a ledger client.
  - **EventKind**: enumeration of every ``(section, method)`` pair the
    harness understands.
  - **DECODERS**: typed decoder map from ``EventKind`` to a payload
    dataclass (``MessageSent``, ``CollectionCreated``, ...).
  - **EventFilter**: composable matcher combining an event kind with
    data-field predicates, used to build correlator predicates.

Usage::

    >>> kind = EventKind.XCMP_MESSAGE_SENT
    >>> [decode(e).message_hash for e in events if kind.matches(e)]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class ChainEvent:
    """A single event as emitted by a ledger."""

    section: str
    method: str
    data: Tuple[Any, ...] = ()
    raw: Any = None

    @property
    def name(self) -> str:
        return f"{self.section}.{self.method}"

    @property
    def kind(self) -> Optional["EventKind"]:
        return EventKind.lookup(self.section, self.method)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ChainEvent":
        return cls(d["section"], d["method"], tuple(d.get("data", ())), d.get("raw"))

    def to_dict(self) -> Dict[str, Any]:
        return {"section": self.section, "method": self.method, "data": list(self.data)}


class EventKind(Enum):
    """Every ``(section, method)`` pair the harness knows how to decode."""

    EXTRINSIC_SUCCESS = ("system", "ExtrinsicSuccess")
    EXTRINSIC_FAILED = ("system", "ExtrinsicFailed")
    SUDO_SUDID = ("sudo", "Sudid")
    XCMP_MESSAGE_SENT = ("xcmpQueue", "XcmpMessageSent")
    XCMP_SUCCESS = ("xcmpQueue", "Success")
    XCMP_FAIL = ("xcmpQueue", "Fail")
    COLLECTION_CREATED = ("common", "CollectionCreated")
    ITEM_CREATED = ("common", "ItemCreated")
    ITEM_DESTROYED = ("common", "ItemDestroyed")
    TRANSFER = ("common", "Transfer")
    NFT_CREATED_CLASS = ("nft", "CreatedClass")
    NFT_MINTED_TOKEN = ("nft", "MintedToken")
    NFT_TRANSFERRED_TOKEN = ("nft", "TransferredToken")
    XNFT_ASSET_REGISTERED = ("xnft", "AssetRegistered")
    FOREIGN_ASSET_REGISTERED = ("assetRegistry", "ForeignAssetRegistered")
    NEW_SESSION = ("session", "NewSession")
    HRMP_CHANNEL_FORCE_OPENED = ("hrmp", "HrmpChannelForceOpened")
    BALANCES_TRANSFER = ("balances", "Transfer")

    @property
    def section(self) -> str:
        return self.value[0]

    @property
    def method(self) -> str:
        return self.value[1]

    @property
    def event_name(self) -> str:
        return f"{self.section}.{self.method}"

    def matches(self, event: ChainEvent) -> bool:
        return event.section == self.section and event.method == self.method

    @classmethod
    def lookup(cls, section: str, method: str) -> Optional["EventKind"]:
        return _BY_PAIR.get((section, method))

    @classmethod
    def parse(cls, name: str) -> "EventKind":
        """Resolve ``"section.method"`` to a kind."""
        section, _, method = name.partition(".")
        kind = cls.lookup(section, method)
        if kind is None:
            raise ValueError(f"unsupported event kind: {name}")
        return kind


_BY_PAIR: Dict[Tuple[str, str], EventKind] = {k.value: k for k in EventKind}


def event_predicate(kind: EventKind) -> Callable[[str, str], bool]:
    """``(section, method) -> bool`` matcher for one event kind."""
    def matches(section: str, method: str) -> bool:
        return (section, method) == kind.value
    return matches


# ---------------------------------------------------------------------------
# Dispatch errors
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DispatchFailure:
    """A decoded dispatch error.

    Module errors carry ``section``/``method``; anything else is kept as
    a raw human-readable description.
    """

    section: Optional[str] = None
    method: Optional[str] = None
    description: str = ""

    @property
    def is_module(self) -> bool:
        return self.section is not None

    def __str__(self) -> str:
        if self.is_module:
            return f"{self.section}.{self.method}"
        return self.description


def decode_dispatch_error(error: Any) -> DispatchFailure:
    if isinstance(error, dict):
        module = error.get("Module") or error.get("module")
        if isinstance(module, dict) and "section" in module:
            return DispatchFailure(section=module["section"], method=module["method"])
        if len(error) == 1:
            tag, value = next(iter(error.items()))
            if value is None:
                return DispatchFailure(description=str(tag))
            return DispatchFailure(description=f"{tag}: {value}")
    return DispatchFailure(description=str(error))


# ---------------------------------------------------------------------------
# Typed payloads
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExtrinsicFailed:
    error: DispatchFailure


@dataclass(frozen=True)
class SudoResult:
    error: Optional[DispatchFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class MessageSent:
    message_hash: str


@dataclass(frozen=True)
class MessageProcessed:
    message_hash: str
    weight: int = 0


@dataclass(frozen=True)
class MessageFailed:
    message_hash: str
    error: str
    weight: int = 0


@dataclass(frozen=True)
class CollectionCreated:
    collection_id: int
    owner: str = ""


@dataclass(frozen=True)
class ItemCreated:
    collection_id: int
    token_id: int
    owner: str = ""


@dataclass(frozen=True)
class ItemDestroyed:
    collection_id: int
    token_id: int
    owner: str = ""


@dataclass(frozen=True)
class TokensMinted:
    collection_id: int
    owner: str
    quantity: int = 1


@dataclass(frozen=True)
class ItemTransferred:
    collection_id: int
    token_id: int
    sender: str
    recipient: str


@dataclass(frozen=True)
class AssetRegistered:
    asset_id: Dict[str, Any]
    collection_id: int


@dataclass(frozen=True)
class NewSession:
    session_index: int


@dataclass(frozen=True)
class ChannelOpened:
    sender: int
    recipient: int


@dataclass(frozen=True)
class BalanceTransfer:
    sender: str
    recipient: str
    amount: int


def _sudid(d: Sequence[Any]) -> SudoResult:
    result = d[0] if d else {"Ok": None}
    if isinstance(result, dict) and "Err" in result:
        return SudoResult(error=decode_dispatch_error(result["Err"]))
    return SudoResult()


DECODERS: Dict[EventKind, Callable[[Sequence[Any]], Any]] = {
    EventKind.EXTRINSIC_FAILED: lambda d: ExtrinsicFailed(decode_dispatch_error(d[0])),
    EventKind.SUDO_SUDID: _sudid,
    EventKind.XCMP_MESSAGE_SENT: lambda d: MessageSent(str(d[0])),
    EventKind.XCMP_SUCCESS: lambda d: MessageProcessed(str(d[0]), int(d[1]) if len(d) > 1 else 0),
    EventKind.XCMP_FAIL: lambda d: MessageFailed(str(d[0]), str(d[1]), int(d[2]) if len(d) > 2 else 0),
    EventKind.COLLECTION_CREATED: lambda d: CollectionCreated(int(d[0]), str(d[2]) if len(d) > 2 else ""),
    EventKind.ITEM_CREATED: lambda d: ItemCreated(int(d[0]), int(d[1]), str(d[2]) if len(d) > 2 else ""),
    EventKind.ITEM_DESTROYED: lambda d: ItemDestroyed(int(d[0]), int(d[1]), str(d[2]) if len(d) > 2 else ""),
    EventKind.TRANSFER: lambda d: ItemTransferred(int(d[0]), int(d[1]), str(d[2]), str(d[3])),
    EventKind.NFT_CREATED_CLASS: lambda d: CollectionCreated(int(d[1]), str(d[0])),
    EventKind.NFT_MINTED_TOKEN: lambda d: TokensMinted(int(d[2]), str(d[1]), int(d[3])),
    EventKind.NFT_TRANSFERRED_TOKEN: lambda d: ItemTransferred(int(d[2]), int(d[3]), str(d[0]), str(d[1])),
    EventKind.XNFT_ASSET_REGISTERED: lambda d: AssetRegistered(d[0], int(d[1])),
    EventKind.FOREIGN_ASSET_REGISTERED: lambda d: AssetRegistered(d[1], int(d[0])),
    EventKind.NEW_SESSION: lambda d: NewSession(int(d[0])),
    EventKind.HRMP_CHANNEL_FORCE_OPENED: lambda d: ChannelOpened(int(d[0]), int(d[1])),
    EventKind.BALANCES_TRANSFER: lambda d: BalanceTransfer(str(d[0]), str(d[1]), int(d[2])),
}


def decode(event: ChainEvent) -> Any:
    """Decode *event* into its typed payload."""
    kind = event.kind
    if kind is None or kind not in DECODERS:
        raise ValueError(f"no decoder for event {event.name}")
    return DECODERS[kind](event.data)


# ---------------------------------------------------------------------------
# EventFilter — composable matcher
# ---------------------------------------------------------------------------

@dataclass
class EventFilter:
    """Matches events of one kind whose decoded payload passes every check.

    ``where`` maps payload attribute names to expected values;
    ``checks`` holds free-form predicates over the decoded payload.
    """

    kind: EventKind
    where: Dict[str, Any] = field(default_factory=dict)
    checks: List[Callable[[Any], bool]] = field(default_factory=list)

    def matches(self, event: ChainEvent) -> bool:
        if not self.kind.matches(event):
            return False
        if not self.where and not self.checks:
            return True
        payload = decode(event)
        for attr, expected in self.where.items():
            if getattr(payload, attr, None) != expected:
                return False
        return all(check(payload) for check in self.checks)

    def select(self, events: Sequence[ChainEvent]) -> List[ChainEvent]:
        return [e for e in events if self.matches(e)]

    def describe(self) -> str:
        conds = [f"{k} == {v}" for k, v in self.where.items()]
        if self.checks:
            conds.append(f"{len(self.checks)} custom check(s)")
        if not conds:
            return self.kind.event_name
        return f"{self.kind.event_name} with " + " and ".join(conds)
