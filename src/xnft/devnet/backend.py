"""
xnft devnet — In-process ledger backend

``DevnetLedger`` implements ``LedgerBackend`` on top of a ``Runtime``.
Submitted calls wait in a pending pool until the next block; producing a
block runs, in order:

  1. ``on_initialize`` hooks (session rotation on the relay),
  2. delivery of inbound messages that are due at this height,
  3. pending extrinsics, forwarding their outgoing messages to the router,

and then notifies inclusion and block subscribers.  Inclusion streams
replay the latest known status, so a subscriber that arrives after the
block was produced still sees ``in_block``.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..client import (
    TX_IN_BLOCK,
    TX_INVALID,
    TX_READY,
    BlockEvents,
    Call,
    LedgerBackend,
    Signer,
    Subscription,
    SubscriptionHub,
    TxStatus,
)
from ..location import ACCOUNT_ID_LENGTH
from .runtime import Runtime

logger = logging.getLogger("xnft.devnet.backend")


class DevnetLedger(LedgerBackend):
    """One simulated ledger: a runtime, a pending pool and two notification hubs."""

    def __init__(self, runtime: Runtime, network=None):
        self.runtime = runtime
        self.network = network
        self.height = 0
        self.blocks: List[BlockEvents] = []
        self._pending: List[Tuple[str, Call, bytes]] = []
        self._statuses: Dict[str, TxStatus] = {}
        self._inclusion = SubscriptionHub(prefix="tx-")
        self._new_blocks = SubscriptionHub(prefix="blocks-")
        self._tx_counter = 0
        self._closed = False

    @property
    def name(self) -> str:
        return self.runtime.name

    @property
    def para_id(self) -> Optional[int]:
        return self.runtime.para_id

    @property
    def subscription_count(self) -> int:
        """Live inclusion and block subscriptions (leak detector)."""
        return self._inclusion.count + self._new_blocks.count

    # -- LedgerBackend -------------------------------------------------------

    async def submit(self, call: Call, signer: Signer) -> str:
        self._tx_counter += 1
        handle = f"{self.name.lower()}-0x{self._tx_counter:08x}"
        account = getattr(signer, "account_id", b"")

        if self._closed:
            status = TxStatus(TX_INVALID, reason="ledger connection is closed")
        elif len(account) != ACCOUNT_ID_LENGTH:
            status = TxStatus(TX_INVALID, reason="invalid signer account")
        elif self.runtime.free_balance(account) == 0:
            status = TxStatus(TX_INVALID, reason="Inability to pay some fees (e.g. account balance too low)")
        else:
            self._pending.append((handle, call, account))
            status = TxStatus(TX_READY)

        self._statuses[handle] = status
        logger.debug("%s: %s %s -> %s", self.name, handle, call.name, status.status)
        return handle

    def subscribe_inclusion(self, handle: str) -> Subscription:
        sub = self._inclusion.add({"handle": handle})
        latest = self._statuses.get(handle)
        if latest is None:
            sub.push(TxStatus(TX_INVALID, reason=f"unknown transaction {handle}"))
        else:
            sub.push(latest)
        return sub

    async def query_state(self, path: str, *args: Any) -> Any:
        return self.runtime.query(path, *args)

    def subscribe_new_blocks(self) -> Subscription:
        return self._new_blocks.add()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._inclusion.end_all()
        self._new_blocks.end_all()

    # -- Block production ------------------------------------------------------

    def produce_block(self) -> BlockEvents:
        """Seal one block from the pending pool and due inbound messages."""
        self.height += 1
        events = list(self.runtime.on_initialize(self.height))

        if self.network is not None and self.para_id is not None:
            for message in self.network.take_due(self.para_id, self.height):
                events.extend(self.runtime.receive(message))

        pending, self._pending = self._pending, []
        included = []
        for handle, call, origin in pending:
            tx_events, outbox = self.runtime.apply_extrinsic(call, origin)
            events.extend(tx_events)
            for message in outbox:
                self.network.send(message)
            included.append((handle, tx_events))

        block_hash = self._block_hash(events)
        block = BlockEvents(self.height, tuple(events), block_hash)
        self.blocks.append(block)

        for handle, tx_events in included:
            status = TxStatus(TX_IN_BLOCK, self.height, block_hash, tuple(tx_events))
            self._statuses[handle] = status
            self._inclusion.notify(status, match=lambda s, h=handle: s.params.get("handle") == h)
        self._new_blocks.notify(block)

        if events:
            logger.debug("%s: block #%d with %d event(s)", self.name, self.height, len(events))
        return block

    def _block_hash(self, events) -> str:
        parent = self.blocks[-1].block_hash if self.blocks else ""
        seed = f"{self.name}:{self.height}:{parent}:{[e.name for e in events]}"
        return "0x" + hashlib.blake2b(seed.encode(), digest_size=32).hexdigest()

    def __repr__(self) -> str:
        return f"<DevnetLedger {self.name} #{self.height} pending={len(self._pending)}>"
