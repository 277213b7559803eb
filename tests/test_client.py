"""
Tests for the ledger client boundary: calls, subscriptions and the
subscription hub.
"""

import asyncio

import pytest

from xnft.client import (
    TX_DROPPED,
    TX_IN_BLOCK,
    TX_READY,
    Call,
    SubscriptionHub,
    TxStatus,
    sudo,
)


class TestCall:
    def test_name_and_sudo(self):
        inner = Call("xnft", "registerAsset", ({"V3": {}},))
        wrapped = sudo(inner)
        assert wrapped.name == "sudo.sudo"
        assert wrapped.to_dict() == {
            "section": "sudo",
            "method": "sudo",
            "args": [{"section": "xnft", "method": "registerAsset", "args": [{"V3": {}}]}],
        }

    def test_tx_status_flags(self):
        assert TxStatus(TX_IN_BLOCK, 3).is_in_block
        assert TxStatus(TX_DROPPED).is_terminal_failure
        assert not TxStatus(TX_READY).is_terminal_failure


class TestSubscriptionHub:
    @pytest.mark.asyncio
    async def test_notify_fans_out(self):
        hub = SubscriptionHub(prefix="blocks-")
        a, b = hub.add(), hub.add()
        assert a.sub_id != b.sub_id
        assert a.sub_id.startswith("blocks-0x")
        assert hub.notify("block-1") == 2
        assert await a.__anext__() == "block-1"
        assert await b.__anext__() == "block-1"

    @pytest.mark.asyncio
    async def test_notify_with_match(self):
        hub = SubscriptionHub()
        tx1 = hub.add({"handle": "tx1"})
        hub.add({"handle": "tx2"})
        assert hub.notify("status", match=lambda s: s.params["handle"] == "tx1") == 1
        assert await tx1.__anext__() == "status"

    @pytest.mark.asyncio
    async def test_unsubscribe_removes_from_hub(self):
        hub = SubscriptionHub()
        sub = hub.add()
        assert hub.count == 1
        async with sub:
            pass
        assert sub.closed
        assert hub.count == 0
        assert hub.notify("x") == 0

    @pytest.mark.asyncio
    async def test_end_all_finishes_streams(self):
        hub = SubscriptionHub()
        sub = hub.add()
        sub.push(1)
        hub.end_all()
        assert [item async for item in sub] == [1]
        assert hub.count == 0

    def test_remove(self):
        hub = SubscriptionHub()
        sub = hub.add()
        assert hub.remove(sub.sub_id)
        assert not hub.remove(sub.sub_id)
        assert sub.closed

    @pytest.mark.asyncio
    async def test_cancelled_reader_releases_subscription(self):
        hub = SubscriptionHub()

        async def reader():
            async with hub.add() as sub:
                async for _ in sub:
                    pass

        task = asyncio.ensure_future(reader())
        await asyncio.sleep(0)
        assert hub.count == 1
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert hub.count == 0

    @pytest.mark.asyncio
    async def test_closed_subscription_ignores_pushes(self):
        hub = SubscriptionHub()
        sub = hub.add()
        sub.unsubscribe()
        sub.push("late")
        assert [item async for item in sub] == []
