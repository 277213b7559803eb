"""
xnft — Event Correlator

Bounded block polling: watch a ledger's new blocks until some block
contains events satisfying a predicate, or give up after a fixed number
of blocks.  This is how the harness learns that a cross-chain message
sent on one ledger was processed on another.

Rules:

* only strictly increasing heights count; a repeated or lower height
  (re-delivered notification, fork noise) is ignored and does not use
  up an attempt,
* the wait returns on the first block where the predicate yields a
  non-empty result,
* after exactly ``max_blocks`` distinct heights without a match an
  ``EventTimeoutError`` is raised,
* a subscription opened by the wait is released on every exit path;
  one handed in by the caller stays open.

Usage::

    outcome = await message_outcome(karura, message_hash, max_blocks=12)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Sequence, TypeVar, Union

from .client import Subscription
from .errors import EventTimeoutError, SubscriptionClosed
from .events import ChainEvent, EventFilter, EventKind, decode
from .ledger import Ledger

logger = logging.getLogger("xnft.correlator")

T = TypeVar("T")

DEFAULT_MAX_BLOCKS = 5
DELIVERY_MAX_BLOCKS = 12

Predicate = Callable[[Sequence[ChainEvent]], Sequence[T]]


async def wait_for(ledger: Ledger, predicate: Predicate,
                   max_blocks: int = DEFAULT_MAX_BLOCKS,
                   criteria: Optional[str] = None,
                   blocks: Optional[Subscription] = None) -> List[Any]:
    """Wait until a new block of *ledger* satisfies *predicate*.

    *predicate* receives the block's events and returns the matches;
    an empty result means "keep waiting".

    Pass *blocks* to watch a subscription the caller opened earlier, so
    that blocks produced before the wait started are not missed.  The
    caller keeps ownership of it and releases it.
    """
    if max_blocks < 1:
        raise ValueError(f"max_blocks must be at least 1, got {max_blocks}")
    criteria = criteria or getattr(predicate, "__name__", "custom predicate")

    if blocks is not None:
        return await _watch(ledger, blocks, predicate, max_blocks, criteria)
    async with ledger.subscribe_new_blocks() as own:
        return await _watch(ledger, own, predicate, max_blocks, criteria)


async def _watch(ledger: Ledger, blocks: Subscription, predicate: Predicate,
                 max_blocks: int, criteria: str) -> List[Any]:
    attempts = 0
    last_height: Optional[int] = None

    async for block in blocks:
        if last_height is not None and block.height <= last_height:
            logger.debug("%s: ignoring block #%d (already at #%d)",
                         ledger.name, block.height, last_height)
            continue
        last_height = block.height
        attempts += 1

        found = list(predicate(block.events))
        if found:
            logger.debug("%s: %s found in block #%d (attempt %d/%d)",
                         ledger.name, criteria, block.height, attempts, max_blocks)
            return found

        logger.debug("%s: %s not in block #%d (attempt %d/%d)",
                     ledger.name, criteria, block.height, attempts, max_blocks)
        if attempts >= max_blocks:
            raise EventTimeoutError(criteria, max_blocks)

    raise SubscriptionClosed(
        f"{ledger.name}: block stream ended while waiting for {criteria}"
    )


def _as_filter(kind: Union[EventKind, EventFilter]) -> EventFilter:
    if isinstance(kind, EventFilter):
        return kind
    return EventFilter(kind)


async def wait_for_event(ledger: Ledger, kind: Union[EventKind, EventFilter],
                         max_blocks: int = DEFAULT_MAX_BLOCKS,
                         blocks: Optional[Subscription] = None) -> List[ChainEvent]:
    """Wait for events of one kind (optionally narrowed by an ``EventFilter``)."""
    flt = _as_filter(kind)
    return await wait_for(ledger, flt.select, max_blocks, criteria=flt.describe(), blocks=blocks)


async def message_outcome(ledger: Ledger, message_hash: str,
                          max_blocks: int = DELIVERY_MAX_BLOCKS,
                          blocks: Optional[Subscription] = None) -> Any:
    """Wait for the destination's verdict on one message.

    Returns the decoded ``MessageProcessed`` or ``MessageFailed`` payload,
    whichever the ledger emits first for *message_hash*.
    """
    processed = EventFilter(EventKind.XCMP_SUCCESS, where={"message_hash": message_hash})
    failed = EventFilter(EventKind.XCMP_FAIL, where={"message_hash": message_hash})

    def verdict(events: Sequence[ChainEvent]) -> List[ChainEvent]:
        return [e for e in events if processed.matches(e) or failed.matches(e)]

    criteria = (f"{EventKind.XCMP_SUCCESS.event_name} | {EventKind.XCMP_FAIL.event_name}"
                f" with message_hash == {message_hash}")
    found = await wait_for(ledger, verdict, max_blocks, criteria=criteria, blocks=blocks)
    return decode(found[0])
