"""
xnft — Transaction Executor

Turns "submit a call" into "a confirmed, decoded outcome":

  1. submit the call through the ledger client,
  2. follow the transaction's own inclusion notifications until the
     first ``in_block`` status (being broadcast is not enough),
  3. scan the transaction's events for failure markers
     (``system.ExtrinsicFailed``, ``sudo.Sudid`` with an error result),
  4. return a ``TransactionResult`` or raise ``SubmissionRejected``.

The inclusion subscription is released on every exit path, including
cancellation of the awaiting task.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Tuple

from .client import Call, Signer, TxStatus
from .errors import EventNotFound, SubmissionRejected
from .events import ChainEvent, EventKind, decode
from .ledger import Ledger

logger = logging.getLogger("xnft.executor")


@dataclass(frozen=True)
class TransactionResult:
    """Outcome of an included, successful transaction."""

    ledger: str
    call: str
    block_height: int
    events: Tuple[ChainEvent, ...]
    block_hash: str = ""

    def extract_events(self, kind: EventKind) -> List[ChainEvent]:
        """Events of *kind* emitted by this transaction.

        Raises ``EventNotFound`` when the transaction emitted none.
        """
        found = [e for e in self.events if kind.matches(e)]
        if not found:
            raise EventNotFound(kind.event_name)
        return found

    def decode_events(self, kind: EventKind) -> List[Any]:
        return [decode(e) for e in self.extract_events(kind)]

    def first(self, kind: EventKind) -> Any:
        return self.decode_events(kind)[0]

    def has_event(self, kind: EventKind) -> bool:
        return any(kind.matches(e) for e in self.events)


def failure_reasons(events: Tuple[ChainEvent, ...]) -> List[str]:
    """Human-readable reasons for every failure marker in *events*."""
    reasons: List[str] = []
    for event in events:
        if EventKind.EXTRINSIC_FAILED.matches(event):
            reasons.append(str(decode(event).error))
        elif EventKind.SUDO_SUDID.matches(event):
            result = decode(event)
            if not result.ok:
                reasons.append(str(result.error))
    return reasons


class TransactionExecutor:
    """Submits calls on one ledger and waits for their inclusion."""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger

    async def execute(self, signer: Signer, call: Call) -> TransactionResult:
        handle = await self.ledger.submit(call, signer)
        logger.debug("%s: submitted %s as %s (by %s)",
                     self.ledger.name, call.name, handle, signer.name)

        status = await self._wait_in_block(handle)

        reasons = failure_reasons(status.events)
        if reasons:
            logger.info("%s: %s failed in block #%s: %s",
                        self.ledger.name, call.name, status.block_height,
                        "; ".join(reasons))
            raise SubmissionRejected(reasons)

        logger.debug("%s: %s included in block #%s",
                     self.ledger.name, call.name, status.block_height)
        return TransactionResult(
            ledger=self.ledger.name,
            call=call.name,
            block_height=status.block_height,
            events=tuple(status.events),
            block_hash=status.block_hash,
        )

    async def _wait_in_block(self, handle: str) -> TxStatus:
        async with self.ledger.subscribe_inclusion(handle) as sub:
            async for status in sub:
                if status.is_in_block:
                    return status
                if status.is_terminal_failure:
                    raise SubmissionRejected([status.reason or status.status])
        raise SubmissionRejected([f"inclusion stream for {handle} ended"])


async def send_and_wait(ledger: Ledger, signer: Signer, call: Call) -> TransactionResult:
    """One-shot helper: ``TransactionExecutor(ledger).execute(signer, call)``."""
    return await TransactionExecutor(ledger).execute(signer, call)
