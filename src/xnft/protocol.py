"""
xnft — Cross-Chain Transfer Protocol

Moves one NFT from a source ledger to an account on a destination ledger
and proves the move happened correctly:

  1. build ``xTokens.transferMultiassetWithFee(asset, fee, dest, Unlimited)``
     where the fee is a separate fungible asset and ``dest`` is the
     beneficiary's location as seen from the source,
  2. execute it on the source and read the message hash from
     ``xcmpQueue.XcmpMessageSent``,
  3. wait on the destination for ``xcmpQueue.Success`` / ``Fail`` with
     the same hash,
  4. verify custody:

     * going out, the destination's derivative is owned by the
       beneficiary and, when the source is the reserve, the original is
       held by the destination's sovereign account on the source;
     * coming home, the original is owned by the beneficiary again and
       the source no longer holds an ``Active`` derivative.

Each transfer records its progress in a ``TransferReport`` whose state
moves along a fixed lifecycle::

    BUILT -> SUBMITTED -> INCLUDED_OK -> MESSAGE_SENT
          -> DELIVERY_CONFIRMED | DELIVERY_TIMED_OUT | DELIVERY_REJECTED

``SUBMITTED -> DELIVERY_REJECTED`` covers a source-side failure.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .client import Call, Signer
from .correlator import DELIVERY_MAX_BLOCKS, message_outcome
from .errors import (
    BridgeDeliveryFailed,
    EventTimeoutError,
    InvalidTransition,
    OwnershipMismatch,
    SubmissionRejected,
)
from .events import EventKind, MessageFailed
from .executor import TransactionExecutor
from .ledger import Ledger
from .location import Location, MultiAsset, versioned
from .nft import Collection, Token
from .registry import DerivativeRegistry

logger = logging.getLogger("xnft.protocol")

__all__ = [
    "Collection",
    "Token",
    "TransferState",
    "TransferReport",
    "CrossChainTransfer",
    "transfer_call",
]

WEIGHT_LIMIT_UNLIMITED = "Unlimited"


class TransferState(Enum):
    BUILT = "built"
    SUBMITTED = "submitted"
    INCLUDED_OK = "included_ok"
    MESSAGE_SENT = "message_sent"
    DELIVERY_CONFIRMED = "delivery_confirmed"
    DELIVERY_TIMED_OUT = "delivery_timed_out"
    DELIVERY_REJECTED = "delivery_rejected"

    @property
    def is_final(self) -> bool:
        return not _TRANSITIONS[self]


_TRANSITIONS: Dict[TransferState, Tuple[TransferState, ...]] = {
    TransferState.BUILT: (TransferState.SUBMITTED,),
    TransferState.SUBMITTED: (TransferState.INCLUDED_OK, TransferState.DELIVERY_REJECTED),
    TransferState.INCLUDED_OK: (TransferState.MESSAGE_SENT,),
    TransferState.MESSAGE_SENT: (
        TransferState.DELIVERY_CONFIRMED,
        TransferState.DELIVERY_TIMED_OUT,
        TransferState.DELIVERY_REJECTED,
    ),
    TransferState.DELIVERY_CONFIRMED: (),
    TransferState.DELIVERY_TIMED_OUT: (),
    TransferState.DELIVERY_REJECTED: (),
}


@dataclass
class TransferReport:
    """Lifecycle record of one cross-chain transfer."""

    token: Token
    source: str
    destination: str
    beneficiary: str
    state: TransferState = TransferState.BUILT
    history: List[Tuple[TransferState, float]] = field(default_factory=list)
    message_hash: Optional[str] = None
    source_block: Optional[int] = None
    delivered: Optional[Token] = None
    error: Optional[str] = None

    def __post_init__(self):
        if not self.history:
            self.history.append((self.state, time.time()))

    def advance(self, target: TransferState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(self.state.value, target.value)
        self.state = target
        self.history.append((target, time.time()))

    @property
    def states(self) -> List[TransferState]:
        return [s for s, _ in self.history]

    @property
    def succeeded(self) -> bool:
        return self.state is TransferState.DELIVERY_CONFIRMED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": str(self.token),
            "source": self.source,
            "destination": self.destination,
            "beneficiary": self.beneficiary,
            "state": self.state.value,
            "history": [s.value for s in self.states],
            "message_hash": self.message_hash,
            "source_block": self.source_block,
            "delivered": str(self.delivered) if self.delivered else None,
            "error": self.error,
        }


def transfer_call(asset: MultiAsset, fee: MultiAsset, dest: Location) -> Call:
    """``xTokens.transferMultiassetWithFee`` with an unlimited weight limit."""
    return Call("xTokens", "transferMultiassetWithFee",
                (versioned(asset), versioned(fee), versioned(dest), WEIGHT_LIMIT_UNLIMITED))


class CrossChainTransfer:
    """Sends NFTs from one ledger and confirms them on another."""

    def __init__(self, source: Ledger, delivery_max_blocks: int = DELIVERY_MAX_BLOCKS,
                 verify_custody: bool = True):
        self.source = source
        self.delivery_max_blocks = delivery_max_blocks
        self.verify_custody = verify_custody
        self.executor = TransactionExecutor(source)
        self.last_report: Optional[TransferReport] = None

    async def transfer(self, signer: Signer, token: Token, fee: MultiAsset,
                       destination: Ledger, beneficiary: bytes) -> TransferReport:
        """Move *token* to *beneficiary* on *destination*.

        *token* is always named by its reserve identity: when a derivative
        is sent home, pass the original token, not the local derivative.
        """
        report = TransferReport(token, self.source.name, destination.name,
                                destination.address(beneficiary))
        self.last_report = report
        call = transfer_call(token.as_multiasset(), fee,
                             destination.account_location(beneficiary))

        report.advance(TransferState.SUBMITTED)
        # watch the destination from before submission: the message may be
        # processed there in the same round as its inclusion on the source
        async with destination.subscribe_new_blocks() as blocks:
            try:
                result = await self.executor.execute(signer, call)
            except SubmissionRejected as e:
                report.advance(TransferState.DELIVERY_REJECTED)
                report.error = e.message
                raise
            report.advance(TransferState.INCLUDED_OK)
            report.source_block = result.block_height

            message_hash = result.first(EventKind.XCMP_MESSAGE_SENT).message_hash
            report.message_hash = message_hash
            report.advance(TransferState.MESSAGE_SENT)
            logger.info("%s is sent: %s -> %s/Account(%s)",
                        token, self.source.name, destination.name, report.beneficiary)
            logger.info("\t... message hash: %s", message_hash)

            try:
                outcome = await message_outcome(destination, message_hash,
                                                self.delivery_max_blocks, blocks=blocks)
            except EventTimeoutError as e:
                report.advance(TransferState.DELIVERY_TIMED_OUT)
                report.error = e.message
                logger.warning("%s: message %s was not observed within %d block(s)",
                               destination.name, message_hash, self.delivery_max_blocks)
                raise BridgeDeliveryFailed(message_hash, "delivery timed out", destination.name)

        if isinstance(outcome, MessageFailed):
            report.advance(TransferState.DELIVERY_REJECTED)
            report.error = outcome.error
            logger.warning("%s: message %s was rejected: %s",
                           destination.name, message_hash, outcome.error)
            raise BridgeDeliveryFailed(message_hash, outcome.error, destination.name)

        report.advance(TransferState.DELIVERY_CONFIRMED)
        logger.info("%s: message %s is processed", destination.name, message_hash)

        if self.verify_custody:
            report.delivered = await self._check_custody(token, destination, beneficiary)
        return report

    async def _check_custody(self, token: Token, destination: Ledger,
                             beneficiary: bytes) -> Token:
        if token.ledger is destination:
            await token.check_owner(beneficiary)
            await self._check_retired(token)
            logger.info("%s: the owner of %s is correct (%s)",
                        destination.name, token, destination.address(beneficiary))
            return token

        derivative = await DerivativeRegistry(destination).derivative_of(token)
        await derivative.check_owner(beneficiary)
        logger.info("%s: the owner of %s is correct (%s)",
                    destination.name, derivative, destination.address(beneficiary))

        if token.ledger is self.source:
            custodian = self.source.sovereign_account(destination.para_id)
            await token.check_owner(custodian)
            logger.info("%s: %s is held by the sovereign account of %s",
                        self.source.name, token, destination.name)
        return derivative

    async def _check_retired(self, token: Token) -> None:
        """The source must not keep an ``Active`` derivative of a returned token."""
        registry = DerivativeRegistry(self.source)
        collection_id = await registry.collection_of(token.asset_id)
        if collection_id is None:
            return
        status = await registry.status_of(collection_id, token.asset_instance)
        if status.is_active:
            derivative = Token(self.source, collection_id, status.token_id)
            raise OwnershipMismatch(str(derivative), "nobody (retired derivative)",
                                    actual_owner=str(status))
