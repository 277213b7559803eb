"""
xnft devnet — Network

A relay plus any number of parachains, all in one process, with a
router carrying cross-chain messages between them.  Messages are
delivered ``delivery_delay`` destination blocks after they were sent,
and only over HRMP channels opened on the relay.

Two ways to drive block production:

* **auto**: ``await net.start()`` (or ``async with net``) produces a
  block on every ledger each ``block_time`` seconds,
* **manual**: ``net.produce_block()`` or ``await net.run_until(aw)``,
  which interleaves block production with the awaited coroutine so that
  tests are deterministic.

Usage::

    async with DevnetNetwork.standard(HarnessConfig()) as net:
        ledgers = await net.connect()
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, Awaitable, Dict, List, Optional, Tuple

from ..chains import karura_config, quartz_config, relay_config
from ..config import HarnessConfig
from ..ledger import Ledger, LedgerConfig
from ..location import AssetId, MultiAsset, parachain_location
from .backend import DevnetLedger
from .keyring import DEV_ACCOUNTS, dev_account
from .messages import XcmMessage, message_hash
from .runtime import AcalaRuntime, ParachainRuntime, RelayRuntime, UniqueRuntime

logger = logging.getLogger("xnft.devnet.network")

ENDOWMENT_UNITS = 10_000

RELAY_PROPERTIES = {"tokenSymbol": ["ROC"], "tokenDecimals": [12], "ss58Format": 42}
QUARTZ_PROPERTIES = {"tokenSymbol": ["QTZ"], "tokenDecimals": [18], "ss58Format": 255}
KARURA_PROPERTIES = {"tokenSymbol": ["KAR"], "tokenDecimals": [12], "ss58Format": 8}

FLAVOURS = {
    "unique": (UniqueRuntime, quartz_config),
    "acala": (AcalaRuntime, karura_config),
}


def _endowment(properties: Dict[str, Any]) -> Dict[bytes, int]:
    decimals = int(properties["tokenDecimals"][0])
    return {dev_account(f"//{name}").account_id: ENDOWMENT_UNITS * 10 ** decimals
            for name in DEV_ACCOUNTS}


class DevnetNetwork:
    """Relay, parachains and the message router between them."""

    def __init__(self, block_time: float = 0.01, delivery_delay: int = 2,
                 session_length: int = 3):
        if delivery_delay < 1:
            raise ValueError("delivery_delay must be at least 1 block")
        self.block_time = block_time
        self.delivery_delay = delivery_delay
        self.sudo_key = dev_account("//Alice").account_id

        self.relay = DevnetLedger(
            RelayRuntime("Relay", RELAY_PROPERTIES, self.sudo_key,
                         _endowment(RELAY_PROPERTIES), session_length=session_length),
            network=self,
        )
        self.relay.runtime.network = self
        self.parachains: Dict[int, DevnetLedger] = {}
        self._configs: Dict[str, LedgerConfig] = {"Relay": relay_config()}

        self._in_flight: List[Tuple[int, XcmMessage]] = []
        self.message_log: List[XcmMessage] = []
        self._nonce = 0
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def standard(cls, config: Optional[HarnessConfig] = None) -> "DevnetNetwork":
        """Relay + Quartz (unique flavour) + Karura (acala flavour)."""
        config = config or HarnessConfig()
        net = cls(block_time=config.block_time, delivery_delay=config.delivery_delay,
                  session_length=config.session_length)
        net.add_parachain("Quartz", config.quartz_id, "unique", QUARTZ_PROPERTIES)
        net.add_parachain("Karura", config.karura_id, "acala", KARURA_PROPERTIES)
        return net

    def add_parachain(self, name: str, para_id: int, flavour: str,
                      properties: Dict[str, Any]) -> DevnetLedger:
        if para_id in self.parachains:
            raise ValueError(f"parachain {para_id} is already registered")
        try:
            runtime_cls, preset = FLAVOURS[flavour]
        except KeyError:
            raise ValueError(f"unknown parachain flavour {flavour!r} (expected one of {sorted(FLAVOURS)})")

        config = preset(para_id, name=name)
        native = config.native_currency_id or AssetId.concrete(parachain_location(para_id))
        runtime: ParachainRuntime = runtime_cls(
            name, para_id, properties, self.sudo_key, native,
            endowment=_endowment(properties),
        )
        runtime.network = self
        ledger = DevnetLedger(runtime, network=self)
        self.parachains[para_id] = ledger
        self._configs[name] = config
        logger.info("devnet: added %s (%s flavour, para %d)", name, flavour, para_id)
        return ledger

    @property
    def ledgers(self) -> List[DevnetLedger]:
        return [self.relay] + list(self.parachains.values())

    def ledger(self, name: str) -> DevnetLedger:
        for backend in self.ledgers:
            if backend.name == name:
                return backend
        raise KeyError(name)

    async def connect(self) -> Dict[str, Ledger]:
        """``Ledger`` handles for every ledger, keyed by name."""
        return {backend.name: await Ledger.connect(backend, self._configs[backend.name])
                for backend in self.ledgers}

    # -- Router ----------------------------------------------------------------

    def has_channel(self, sender: int, recipient: int) -> bool:
        return self.relay.runtime.has_channel(sender, recipient)

    def new_message(self, source: int, destination: int, beneficiary: bytes,
                    asset: MultiAsset, fee: MultiAsset) -> XcmMessage:
        self._nonce += 1
        payload = {
            "source": source,
            "destination": destination,
            "beneficiary": beneficiary.hex(),
            "asset": asset.to_wire(),
            "fee": fee.to_wire(),
        }
        sent_at = self.parachains[source].height if source in self.parachains else 0
        return XcmMessage(message_hash(payload, self._nonce), source, destination,
                          beneficiary, asset, fee, sent_at)

    def send(self, message: XcmMessage) -> None:
        destination = self.parachains.get(message.destination)
        if destination is None:
            logger.warning("devnet: dropping message %s to unknown parachain %d",
                           message.message_hash, message.destination)
            return
        deliver_at = destination.height + self.delivery_delay
        self._in_flight.append((deliver_at, message))
        self.message_log.append(message)
        logger.debug("devnet: message %s %d -> %d due at #%d",
                     message.message_hash, message.source, message.destination, deliver_at)

    def take_due(self, para_id: int, height: int) -> List[XcmMessage]:
        due = [m for at, m in self._in_flight if m.destination == para_id and at <= height]
        self._in_flight = [(at, m) for at, m in self._in_flight
                           if not (m.destination == para_id and at <= height)]
        return due

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # -- Block production -------------------------------------------------------

    def produce_block(self) -> None:
        for backend in self.ledgers:
            backend.produce_block()

    async def run_until(self, aw: Awaitable, max_blocks: int = 100, settle: int = 10) -> Any:
        """Produce blocks until *aw* completes; return its result."""
        task = asyncio.ensure_future(aw)
        try:
            for _ in range(max_blocks + 1):
                for _ in range(settle):
                    await asyncio.sleep(0)
                    if task.done():
                        return task.result()
                self.produce_block()
            raise TimeoutError(f"devnet: awaited call did not finish within {max_blocks} block(s)")
        finally:
            if not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.ensure_future(self._block_loop())
        logger.info("devnet: producing blocks every %.3fs", self.block_time)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        for backend in self.ledgers:
            await backend.close()
        logger.info("devnet: stopped")

    async def _block_loop(self) -> None:
        while True:
            await asyncio.sleep(self.block_time)
            self.produce_block()

    async def __aenter__(self) -> "DevnetNetwork":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
