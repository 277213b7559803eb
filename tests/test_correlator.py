"""
Tests for the bounded block-polling correlator.

Blocks are pushed by hand through a minimal in-test backend so that
heights (including repeats) are fully controlled.
"""

import asyncio

import pytest

from xnft.chains import quartz_config
from xnft.client import BlockEvents, LedgerBackend, SubscriptionHub
from xnft.correlator import message_outcome, wait_for, wait_for_event
from xnft.errors import EventTimeoutError, SubscriptionClosed
from xnft.events import ChainEvent, EventFilter, EventKind, MessageFailed, MessageProcessed
from xnft.ledger import Ledger


class ManualBackend(LedgerBackend):
    def __init__(self):
        self.blocks = SubscriptionHub(prefix="blocks-")

    async def submit(self, call, signer):
        raise NotImplementedError

    def subscribe_inclusion(self, handle):
        raise NotImplementedError

    async def query_state(self, path, *args):
        if path == "system.properties":
            return {"tokenSymbol": ["QTZ"], "tokenDecimals": [18], "ss58Format": 255}
        return None

    def subscribe_new_blocks(self):
        return self.blocks.add()

    def push(self, height, *events):
        self.blocks.notify(BlockEvents(height, tuple(events)))


@pytest.fixture
def backend():
    return ManualBackend()


async def _ledger(backend):
    return await Ledger.connect(backend, quartz_config(2095))


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


def success(h):
    return ChainEvent("xcmpQueue", "Success", (h, 10))


def fail(h, reason):
    return ChainEvent("xcmpQueue", "Fail", (h, reason, 10))


class TestWaitFor:
    @pytest.mark.asyncio
    async def test_returns_first_match(self, backend):
        ledger = await _ledger(backend)
        task = asyncio.ensure_future(wait_for_event(ledger, EventKind.XCMP_SUCCESS, 5))
        await _settle()
        backend.push(1)
        backend.push(2, success("0x1"))
        await _settle()
        found = task.result()
        assert [e.data[0] for e in found] == ["0x1"]
        assert backend.blocks.count == 0

    @pytest.mark.asyncio
    async def test_times_out_after_exactly_n_heights(self, backend):
        ledger = await _ledger(backend)
        task = asyncio.ensure_future(wait_for_event(ledger, EventKind.XCMP_SUCCESS, 3))
        await _settle()
        backend.push(1)
        backend.push(2)
        await _settle()
        assert not task.done()
        backend.push(3)
        await _settle()
        with pytest.raises(EventTimeoutError) as exc:
            task.result()
        assert exc.value.max_blocks == 3
        assert "xcmpQueue.Success" in exc.value.criteria
        assert isinstance(exc.value, TimeoutError)
        assert backend.blocks.count == 0

    @pytest.mark.asyncio
    async def test_repeated_heights_do_not_count(self, backend):
        ledger = await _ledger(backend)
        task = asyncio.ensure_future(wait_for_event(ledger, EventKind.XCMP_SUCCESS, 2))
        await _settle()
        backend.push(5)
        backend.push(5)
        backend.push(4)
        await _settle()
        assert not task.done()
        backend.push(6)
        await _settle()
        with pytest.raises(EventTimeoutError):
            task.result()

    @pytest.mark.asyncio
    async def test_match_in_repeated_height_is_ignored(self, backend):
        ledger = await _ledger(backend)
        task = asyncio.ensure_future(wait_for_event(ledger, EventKind.XCMP_SUCCESS, 3))
        await _settle()
        backend.push(7)
        backend.push(7, success("0x1"))
        backend.push(8, success("0x2"))
        await _settle()
        assert task.result()[0].data[0] == "0x2"

    @pytest.mark.asyncio
    async def test_max_blocks_must_be_positive(self, backend):
        ledger = await _ledger(backend)
        with pytest.raises(ValueError):
            await wait_for(ledger, lambda events: events, max_blocks=0)
        assert backend.blocks.count == 0

    @pytest.mark.asyncio
    async def test_cancellation_releases_subscription(self, backend):
        ledger = await _ledger(backend)
        task = asyncio.ensure_future(wait_for_event(ledger, EventKind.XCMP_SUCCESS, 5))
        await _settle()
        assert backend.blocks.count == 1
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert backend.blocks.count == 0

    @pytest.mark.asyncio
    async def test_closed_stream(self, backend):
        ledger = await _ledger(backend)
        task = asyncio.ensure_future(wait_for_event(ledger, EventKind.XCMP_SUCCESS, 5))
        await _settle()
        backend.blocks.end_all()
        await _settle()
        with pytest.raises(SubscriptionClosed):
            task.result()

    @pytest.mark.asyncio
    async def test_filter_narrows_matches(self, backend):
        ledger = await _ledger(backend)
        flt = EventFilter(EventKind.XCMP_SUCCESS, where={"message_hash": "0x2"})
        task = asyncio.ensure_future(wait_for_event(ledger, flt, 5))
        await _settle()
        backend.push(1, success("0x1"))
        await _settle()
        assert not task.done()
        backend.push(2, success("0x1"), success("0x2"))
        await _settle()
        assert [e.data[0] for e in task.result()] == ["0x2"]


class TestMessageOutcome:
    @pytest.mark.asyncio
    async def test_processed(self, backend):
        ledger = await _ledger(backend)
        task = asyncio.ensure_future(message_outcome(ledger, "0xaa", 4))
        await _settle()
        backend.push(1, success("0xbb"))
        backend.push(2, success("0xaa"))
        await _settle()
        assert task.result() == MessageProcessed("0xaa", 10)

    @pytest.mark.asyncio
    async def test_failed(self, backend):
        ledger = await _ledger(backend)
        task = asyncio.ensure_future(message_outcome(ledger, "0xaa", 4))
        await _settle()
        backend.push(1, fail("0xaa", "AssetNotFound"))
        await _settle()
        outcome = task.result()
        assert isinstance(outcome, MessageFailed)
        assert outcome.error == "AssetNotFound"

    @pytest.mark.asyncio
    async def test_default_window_is_generous(self, backend):
        ledger = await _ledger(backend)
        task = asyncio.ensure_future(message_outcome(ledger, "0xaa"))
        await _settle()
        for height in range(1, 12):
            backend.push(height)
        await _settle()
        assert not task.done()
        backend.push(12)
        await _settle()
        with pytest.raises(EventTimeoutError) as exc:
            task.result()
        assert exc.value.max_blocks == 12
