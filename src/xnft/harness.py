"""
xnft — Bridge Harness

Orchestration on top of the core modules: bring a set of ledgers to a
state where NFTs can cross between them, and run the end-to-end
scenarios that check the bridge's custody rules.

Setup steps (each idempotent, so a harness can be re-run against the
same network):

  - ``wait_for_parachains_start``: the relay has rotated at least one
    session,
  - ``force_open_hrmp_duplex``: message channels in both directions,
  - ``register_fungible_currency``: each side knows the other's native
    currency, which pays delivery fees.

Scenarios:

  - ``round_trip``: an NFT goes from its reserve ledger to a remote
    ledger and comes back to a different owner,
  - ``derivative_local_transfer``: the derivative changes hands on the
    remote ledger through the remote's own NFT API,
  - ``reserve_spoofing``: the remote ledger tries to send the derivative
    as if it were the reserve; the remote must refuse the send or the
    reserve must refuse the message.

Fees are paid in the native currency of the NFT's reserve ledger, in
both directions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .chains import force_open_hrmp_channel
from .client import Call, Signer, sudo
from .config import HarnessConfig
from .correlator import wait_for_event
from .errors import BridgeDeliveryFailed, SubmissionRejected
from .events import EventKind
from .executor import TransactionExecutor, TransactionResult
from .ledger import Ledger
from .location import MultiAsset
from .nft import Collection, Token
from .protocol import CrossChainTransfer, TransferReport, TransferState
from .registry import DerivativeRegistry

logger = logging.getLogger("xnft.harness")

SESSION_WAIT_BLOCKS = 12
OUTBOUND_FEE_UNITS = 10
RETURN_FEE_UNITS = 1
SPOOFING_REJECTION = "xTokens.XcmExecutionFailed"


@dataclass
class ScenarioResult:
    """Outcome of one harness scenario."""

    name: str
    passed: bool
    detail: str = ""
    reports: List[TransferReport] = field(default_factory=list)
    tokens: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "detail": self.detail,
            "reports": [r.to_dict() for r in self.reports],
            "tokens": dict(self.tokens),
        }


class BridgeHarness:
    """A relay and its parachains, plus the steps that exercise the bridge."""

    def __init__(self, relay: Ledger, parachains: Sequence[Ledger],
                 config: Optional[HarnessConfig] = None):
        if not relay.is_relay:
            raise ValueError(f"{relay.name} is not a relay ledger")
        self.relay = relay
        self.parachains: Dict[str, Ledger] = {p.name: p for p in parachains}
        self.config = config or HarnessConfig()

    @classmethod
    def from_ledgers(cls, ledgers: Dict[str, Ledger],
                     config: Optional[HarnessConfig] = None) -> "BridgeHarness":
        relays = [l for l in ledgers.values() if l.is_relay]
        if len(relays) != 1:
            raise ValueError(f"expected exactly one relay ledger, got {len(relays)}")
        return cls(relays[0], [l for l in ledgers.values() if not l.is_relay], config)

    def __getitem__(self, name: str) -> Ledger:
        if name == self.relay.name:
            return self.relay
        return self.parachains[name]

    async def disconnect(self) -> None:
        for ledger in list(self.parachains.values()) + [self.relay]:
            await ledger.disconnect()

    # -- Relay -----------------------------------------------------------------

    async def wait_for_parachains_start(self) -> int:
        """Block until the relay has rotated at least one session."""
        index = int(await self.relay.query_state("session.currentIndex") or 0)
        if index == 0:
            logger.info("%s: waiting for the first session change", self.relay.name)
            events = await wait_for_event(self.relay, EventKind.NEW_SESSION, SESSION_WAIT_BLOCKS)
            index = int(events[0].data[0])
        logger.info("%s: parachains are running (session #%d)", self.relay.name, index)
        return index

    async def force_open_hrmp_simplex(self, signer: Signer, sender: int, recipient: int) -> bool:
        """Open ``sender -> recipient``; ``False`` when it was already open."""
        existing = await self.relay.query_state("hrmp.hrmpChannels", [sender, recipient])
        if existing:
            logger.info("%s: HRMP channel %d -> %d is already open",
                        self.relay.name, sender, recipient)
            return False
        result = await TransactionExecutor(self.relay).execute(
            signer, sudo(force_open_hrmp_channel(sender, recipient)))
        result.first(EventKind.HRMP_CHANNEL_FORCE_OPENED)
        logger.info("%s: opened HRMP channel %d -> %d", self.relay.name, sender, recipient)
        return True

    async def force_open_hrmp_duplex(self, signer: Signer, a: int, b: int) -> None:
        await self.force_open_hrmp_simplex(signer, a, b)
        await self.force_open_hrmp_simplex(signer, b, a)

    async def setup(self, signer: Signer) -> None:
        """Sessions running, channels open and fee currencies registered between every pair."""
        await self.wait_for_parachains_start()
        names = sorted(self.parachains)
        for i, a in enumerate(names):
            for b in names[i + 1:]:
                left, right = self.parachains[a], self.parachains[b]
                await self.force_open_hrmp_duplex(signer, left.para_id, right.para_id)
                await self.register_fungible_currency(signer, left, right)
                await self.register_fungible_currency(signer, right, left)

    # -- Collections and tokens ------------------------------------------------

    async def create_collection(self, signer: Signer, ledger: Ledger) -> Collection:
        scheme = ledger.nft
        executor = TransactionExecutor(ledger)
        result = await executor.execute(signer, scheme.create_collection(ledger))
        collection = Collection(ledger, result.first(scheme.collection_created).collection_id)
        logger.info("created NFT collection %s", collection)

        if scheme.collection_account is not None:
            account = scheme.collection_account(collection.collection_id)
            amount = ledger.native_currency.amount(scheme.collection_sponsorship)
            await executor.execute(signer, Call("balances", "transferKeepAlive",
                                                ({"Id": ledger.address(account)}, amount)))
            logger.info("\t... sponsored the collection account %s", ledger.address(account))
        return collection

    async def mint_token(self, signer: Signer, collection: Collection, owner: bytes) -> Token:
        ledger = collection.ledger
        scheme = ledger.nft
        expected: Optional[int] = None
        if scheme.next_token_query is not None:
            expected = int(await ledger.query_state(scheme.next_token_query, collection.collection_id))

        result = await TransactionExecutor(ledger).execute(
            signer, scheme.mint(ledger, collection.collection_id, owner))
        minted = result.first(scheme.minted)
        token_id = expected if expected is not None else minted.token_id

        token = collection.token(token_id)
        logger.info("minted NFT %s for %s", token, ledger.address(owner))
        return token

    async def transfer_locally(self, signer: Signer, token: Token,
                               recipient: bytes) -> TransactionResult:
        """Move *token* within its own ledger using that ledger's NFT API."""
        ledger = token.ledger
        result = await TransactionExecutor(ledger).execute(
            signer, ledger.nft.transfer(ledger, recipient, token.collection_id, token.token_id))
        await token.check_owner(recipient)
        logger.info("%s sent %s to %s", signer.name, token, ledger.address(recipient))
        return result

    # -- Registration ------------------------------------------------------------

    async def register_collection(self, signer: Signer, destination: Ledger,
                                  collection: Collection, description: str = "") -> Collection:
        """Derivative collection on *destination* backed by *collection*."""
        collection_id = await DerivativeRegistry(destination).register_foreign_asset(
            signer, collection.asset_id, description or f"{collection.ledger.name} NFT")
        derivative = Collection(destination, collection_id)
        logger.info("registered %s backed by %s", derivative, collection)
        return derivative

    async def register_fungible_currency(self, signer: Signer, destination: Ledger,
                                         origin: Ledger) -> int:
        """Make *origin*'s native currency known to *destination*."""
        currency = origin.native_currency
        metadata = {
            "name": origin.name,
            "symbol": currency.symbol,
            "decimals": currency.decimals,
            "minimal_balance": currency.amount(1),
        }
        return await DerivativeRegistry(destination).register_fungible_foreign_asset(
            signer, currency.id.location, metadata)

    # -- Transfers ---------------------------------------------------------------

    def fee(self, token: Token, units: int) -> MultiAsset:
        return token.ledger.native_currency.as_multiasset(units)

    async def transfer(self, signer: Signer, token: Token, source: Ledger,
                       destination: Ledger, beneficiary: bytes,
                       fee: Optional[MultiAsset] = None) -> TransferReport:
        fee = fee or self.fee(token, OUTBOUND_FEE_UNITS)
        return await CrossChainTransfer(source, self.config.delivery_max_blocks).transfer(
            signer, token, fee, destination, beneficiary)

    # -- Scenarios -----------------------------------------------------------------

    async def _bridged_token(self, admin: Signer, reserve: Ledger, remote: Ledger,
                             holder: Signer):
        collection = await self.create_collection(admin, reserve)
        derivative_collection = await self.register_collection(admin, remote, collection)
        token = await self.mint_token(admin, collection, holder.account_id)
        report = await self.transfer(holder, token, reserve, remote, holder.account_id)
        return token, derivative_collection, report

    async def round_trip(self, admin: Signer, reserve: Ledger, remote: Ledger,
                         holder: Signer) -> ScenarioResult:
        """Reserve -> remote (to *holder*) -> reserve (to *admin*)."""
        name = f"transfer {reserve.name} NFT to {remote.name} and back"
        logger.info("=== %s ===", name)

        token, _, outbound = await self._bridged_token(admin, reserve, remote, holder)
        inbound = await self.transfer(holder, token, remote, reserve, admin.account_id,
                                      fee=self.fee(token, RETURN_FEE_UNITS))
        logger.info("%s owns the returned %s", admin.name, token)

        return ScenarioResult(
            name, passed=outbound.succeeded and inbound.succeeded,
            detail=f"{token} returned to {admin.name}",
            reports=[outbound, inbound],
            tokens={"original": str(token), "derivative": str(outbound.delivered)},
        )

    async def derivative_local_transfer(self, admin: Signer, reserve: Ledger, remote: Ledger,
                                        holder: Signer) -> ScenarioResult:
        """The derivative changes hands on *remote* without crossing back."""
        name = f"transfer derivative of {reserve.name} NFT within {remote.name}"
        logger.info("=== %s ===", name)

        token, _, outbound = await self._bridged_token(admin, reserve, remote, holder)
        derivative = outbound.delivered
        await self.transfer_locally(holder, derivative, admin.account_id)

        return ScenarioResult(
            name, passed=await derivative.is_owned_by(admin.account_id),
            detail=f"{holder.name} sent {derivative} to {admin.name}",
            reports=[outbound],
            tokens={"original": str(token), "derivative": str(derivative)},
        )

    async def reserve_spoofing(self, admin: Signer, reserve: Ledger, remote: Ledger,
                               holder: Signer) -> ScenarioResult:
        """*remote* must not act as the reserve for a derivative it holds.

        The derivative's owner signs, so a rejection comes from the reserve
        check and not from ownership.  The bridge holds if *remote* refuses
        the send or *reserve* refuses the message.
        """
        name = f"{remote.name} cannot act as the reserve for a {reserve.name} NFT"
        logger.info("=== %s ===", name)

        token, _, outbound = await self._bridged_token(admin, reserve, remote, holder)
        derivative = outbound.delivered
        tokens = {"original": str(token), "derivative": str(derivative)}

        spoof = CrossChainTransfer(remote, self.config.delivery_max_blocks)
        try:
            await spoof.transfer(holder, derivative, remote.native_currency.as_multiasset(OUTBOUND_FEE_UNITS),
                                 reserve, holder.account_id)
        except SubmissionRejected as e:
            rejected = SPOOFING_REJECTION in e.reasons
            logger.info("%s rejected the spoofed transfer: %s", remote.name, e.message)
            return ScenarioResult(name, passed=rejected, detail=e.message,
                                  reports=[outbound, spoof.last_report], tokens=tokens)
        except BridgeDeliveryFailed as e:
            rejected = spoof.last_report.state is TransferState.DELIVERY_REJECTED
            logger.info("%s rejected the spoofed message: %s", reserve.name, e.message)
            return ScenarioResult(name, passed=rejected, detail=e.message,
                                  reports=[outbound, spoof.last_report], tokens=tokens)

        logger.warning("%s accepted a transfer of %s as if it were the reserve",
                       remote.name, derivative)
        return ScenarioResult(
            name, passed=False, detail="spoofed transfer was accepted",
            reports=[outbound, spoof.last_report], tokens=tokens,
        )

    async def run_scenarios(self, admin: Signer, holder: Signer,
                            pairs: Optional[Sequence[Sequence[str]]] = None) -> List[ScenarioResult]:
        """Every scenario for every (reserve, remote) pair."""
        if pairs is None:
            names = sorted(self.parachains)
            pairs = [(a, b) for a in names for b in names if a != b]
        results: List[ScenarioResult] = []
        for reserve_name, remote_name in pairs:
            reserve, remote = self[reserve_name], self[remote_name]
            for scenario in (self.round_trip, self.derivative_local_transfer, self.reserve_spoofing):
                results.append(await scenario(admin, reserve, remote, holder))
        return results
