"""
xnft — Ledger client boundary

The only surface through which the harness talks to a ledger.  Concrete
backends (a websocket node connection, the in-process devnet, a test
double) implement ``LedgerBackend``; everything above this module sees
nothing else.

Capabilities:

* ``submit(call, signer)``        → opaque handle
* ``subscribe_inclusion(handle)`` → stream of ``TxStatus``
* ``query_state(path, *args)``    → JSON-like value
* ``subscribe_new_blocks()``      → stream of ``BlockEvents``

Streams are ``Subscription`` objects: async iterators that must be
released with ``unsubscribe()`` (or by leaving ``async with``).  A
``SubscriptionHub`` on the backend side fans items out to live
subscriptions and counts them, so leaked subscriptions are observable.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from .events import ChainEvent

logger = logging.getLogger("xnft.client")

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Wire-level records
# ---------------------------------------------------------------------------

@dataclass
class Call:
    """An opaque, submittable unit.  Only the backend interprets it."""

    section: str
    method: str
    args: Tuple[Any, ...] = ()

    @property
    def name(self) -> str:
        return f"{self.section}.{self.method}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section": self.section,
            "method": self.method,
            "args": [a.to_dict() if isinstance(a, Call) else a for a in self.args],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Call":
        """Inverse of ``to_dict``; nested calls (``sudo``, ``proxy``) are rebuilt."""
        return cls(d["section"], d["method"],
                   tuple(cls.from_dict(a) if _is_call_dict(a) else a for a in d.get("args", ())))


_CALL_KEYS = frozenset(("section", "method", "args"))


def _is_call_dict(value: Any) -> bool:
    return isinstance(value, dict) and set(value) == _CALL_KEYS


def sudo(call: Call) -> Call:
    """Wrap *call* for dispatch with root privileges."""
    return Call("sudo", "sudo", (call,))


@dataclass(frozen=True)
class BlockEvents:
    """Everything a ledger emitted in one block."""

    height: int
    events: Tuple[ChainEvent, ...] = ()
    block_hash: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "height": self.height,
            "events": [e.to_dict() for e in self.events],
            "block_hash": self.block_hash,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BlockEvents":
        return cls(int(d["height"]),
                   tuple(ChainEvent.from_dict(e) for e in d.get("events", ())),
                   d.get("block_hash", ""))


TX_READY = "ready"
TX_IN_BLOCK = "in_block"
TX_DROPPED = "dropped"
TX_INVALID = "invalid"


@dataclass(frozen=True)
class TxStatus:
    """One inclusion notification for a submitted transaction.

    ``events`` are the events emitted by this transaction only, present
    once ``status`` is ``in_block``.
    """

    status: str
    block_height: Optional[int] = None
    block_hash: str = ""
    events: Tuple[ChainEvent, ...] = ()
    reason: str = ""

    @property
    def is_in_block(self) -> bool:
        return self.status == TX_IN_BLOCK

    @property
    def is_terminal_failure(self) -> bool:
        return self.status in (TX_DROPPED, TX_INVALID)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "block_height": self.block_height,
            "block_hash": self.block_hash,
            "events": [e.to_dict() for e in self.events],
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TxStatus":
        return cls(d["status"], d.get("block_height"), d.get("block_hash", ""),
                   tuple(ChainEvent.from_dict(e) for e in d.get("events", ())),
                   d.get("reason", ""))


class Signer(ABC):
    """Whatever signs transactions.

    In-process backends only read ``account_id``; remote backends send
    ``sign(payload)`` along with the call.
    """

    name: str
    account_id: bytes

    def sign(self, payload: bytes) -> bytes:
        raise NotImplementedError(f"{type(self).__name__} cannot sign payloads")


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------

_END = object()


class Subscription(Generic[T]):
    """A stream of items pushed by a backend.

    Iterate with ``async for``; the stream ends when the producer calls
    ``end()`` or the consumer calls ``unsubscribe()``.
    """

    def __init__(self, sub_id: str, params: Optional[Dict[str, Any]] = None,
                 on_close: Optional[Callable[["Subscription"], None]] = None):
        self.sub_id = sub_id
        self.params: Dict[str, Any] = params or {}
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, item: T) -> None:
        if not self._closed:
            self._queue.put_nowait(item)

    def end(self) -> None:
        """Producer side: no more items will follow."""
        if not self._closed:
            self._queue.put_nowait(_END)

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_END)
        if self._on_close is not None:
            self._on_close(self)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END or self._closed:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Subscription {self.sub_id} {state}>"


class SubscriptionHub:
    """Tracks live subscriptions and pushes notifications to them."""

    def __init__(self, prefix: str = ""):
        self._prefix = prefix
        self._subs: Dict[str, Subscription] = {}
        self._counter = 0

    def add(self, params: Optional[Dict[str, Any]] = None) -> Subscription:
        self._counter += 1
        sub_id = f"{self._prefix}0x{self._counter:016x}"
        sub = Subscription(sub_id, params, on_close=self._discard)
        self._subs[sub_id] = sub
        return sub

    def _discard(self, sub: Subscription) -> None:
        self._subs.pop(sub.sub_id, None)

    def remove(self, sub_id: str) -> bool:
        sub = self._subs.get(sub_id)
        if sub is None:
            return False
        sub.unsubscribe()
        return True

    def notify(self, item: Any,
               match: Optional[Callable[[Subscription], bool]] = None) -> int:
        """Push *item* to every (matching) subscription; returns the fan-out."""
        delivered = 0
        for sub in list(self._subs.values()):
            if match is not None and not match(sub):
                continue
            sub.push(item)
            delivered += 1
        return delivered

    def end_all(self) -> None:
        """End every stream (backend shutting down)."""
        for sub in list(self._subs.values()):
            sub.end()
        self._subs.clear()

    def live(self) -> List[Subscription]:
        return list(self._subs.values())

    @property
    def count(self) -> int:
        return len(self._subs)


# ---------------------------------------------------------------------------
# Backend interface
# ---------------------------------------------------------------------------

class LedgerBackend(ABC):
    """Capabilities a ledger connection must provide to the harness."""

    @abstractmethod
    async def submit(self, call: Call, signer: Signer) -> str:
        """Sign and broadcast *call*; return a handle for inclusion tracking."""

    @abstractmethod
    def subscribe_inclusion(self, handle: str) -> Subscription:
        """Stream of ``TxStatus`` for a previously submitted transaction.

        A backend must replay the latest status when the transaction was
        already included before the subscription was opened.
        """

    @abstractmethod
    async def query_state(self, path: str, *args: Any) -> Any:
        """Point lookup, e.g. ``query_state("xnft.foreignAssetToClass", asset_id)``."""

    @abstractmethod
    def subscribe_new_blocks(self) -> Subscription:
        """Stream of ``BlockEvents`` for blocks produced after the call."""

    async def close(self) -> None:
        """Release the connection.  Default: nothing to do."""
