"""
Tests for the bridge harness: setup steps and the end-to-end scenarios.
"""

import pytest

from xnft.harness import BridgeHarness, ScenarioResult, SPOOFING_REJECTION
from xnft.protocol import TransferState


class TestSetup:
    @pytest.mark.asyncio
    async def test_setup_opens_channels_and_registers_fees(self, net, bridged):
        harness = await bridged()
        relay = net.relay.runtime
        assert relay.has_channel(2095, 2000)
        assert relay.has_channel(2000, 2095)
        assert relay.query("session.currentIndex") >= 1
        assert len(net.ledger("Karura").runtime.state.foreign_currencies) == 1
        assert len(net.ledger("Quartz").runtime.state.foreign_currencies) == 1
        assert harness["Relay"] is harness.relay

    @pytest.mark.asyncio
    async def test_setup_is_idempotent(self, net, bridged, alice):
        harness = await bridged()
        height = net.relay.height
        assert not await net.run_until(harness.force_open_hrmp_simplex(alice, 2095, 2000))
        await net.run_until(harness.setup(alice), max_blocks=50)
        # nothing was submitted, so no block had to be waited for
        assert net.relay.height == height
        assert len(net.relay.runtime.state.channels) == 2

    @pytest.mark.asyncio
    async def test_from_ledgers_needs_one_relay(self, net):
        ledgers = await net.connect()
        del ledgers["Relay"]
        with pytest.raises(ValueError):
            BridgeHarness.from_ledgers(ledgers)
        with pytest.raises(ValueError):
            BridgeHarness(ledgers["Quartz"], [ledgers["Karura"]])

    @pytest.mark.asyncio
    async def test_collection_account_is_sponsored(self, net, bridged, alice):
        harness = await bridged()
        karura = harness["Karura"]
        collection = await net.run_until(harness.create_collection(alice, karura))
        account = karura.nft.collection_account(collection.collection_id)
        assert net.ledger("Karura").runtime.free_balance(account) == karura.native_currency.amount(10)

    @pytest.mark.asyncio
    async def test_local_transfer(self, net, bridged, alice, bob):
        harness = await bridged()
        quartz = harness["Quartz"]

        async def scenario():
            collection = await harness.create_collection(alice, quartz)
            token = await harness.mint_token(alice, collection, alice.account_id)
            await harness.transfer_locally(alice, token, bob.account_id)
            return token

        token = await net.run_until(scenario())
        assert await token.is_owned_by(bob.account_id)
        assert not await token.is_owned_by(alice.account_id)


class TestScenarios:
    @pytest.mark.asyncio
    async def test_every_scenario_passes(self, net, bridged, alice, bob):
        harness = await bridged()
        results = await net.run_until(harness.run_scenarios(alice, bob), max_blocks=600)

        assert len(results) == 6
        assert all(r.passed for r in results), [r.to_dict() for r in results if not r.passed]
        names = [r.name for r in results]
        assert names[0] == "transfer Karura NFT to Quartz and back"
        assert names[3] == "transfer Quartz NFT to Karura and back"

    @pytest.mark.asyncio
    async def test_spoofing_report(self, net, bridged, alice, bob):
        harness = await bridged()
        result = await net.run_until(
            harness.reserve_spoofing(alice, harness["Quartz"], harness["Karura"], bob), max_blocks=200)

        assert result.passed
        assert SPOOFING_REJECTION in result.detail
        outbound, spoof = result.reports
        assert outbound.succeeded
        assert spoof.state is TransferState.DELIVERY_REJECTED
        assert result.tokens["derivative"].startswith("Karura/")

    @pytest.mark.asyncio
    async def test_spoof_is_sent_by_the_derivative_owner(self, net, bridged, alice, bob, monkeypatch):
        harness = await bridged()
        runtime = net.ledger("Karura").runtime
        senders = []
        withdraw = runtime._withdraw_nft

        def recording(sender, asset, dest_para):
            senders.append(sender)
            return withdraw(sender, asset, dest_para)

        monkeypatch.setattr(runtime, "_withdraw_nft", recording)
        result = await net.run_until(
            harness.reserve_spoofing(alice, harness["Quartz"], harness["Karura"], bob), max_blocks=200)

        assert result.passed
        # the only send from Karura is the spoof, and bob owns the derivative
        assert senders == [bob.account_id]
        outbound, spoof = result.reports
        assert await outbound.delivered.is_owned_by(bob.account_id)
        assert spoof.beneficiary == harness["Quartz"].address(bob.account_id)

    @pytest.mark.asyncio
    async def test_spoof_refused_by_the_reserve(self, net, bridged, alice, bob, monkeypatch):
        harness = await bridged()
        runtime = net.ledger("Karura").runtime

        def lenient(sender, asset, dest_para):
            # send the derivative as if Karura were its reserve
            collection_id = runtime.local_collection(asset.id.location)
            return runtime._nft_move(collection_id, asset.fun.instance.index, runtime.bridge_account)

        monkeypatch.setattr(runtime, "_withdraw_nft", lenient)
        result = await net.run_until(
            harness.reserve_spoofing(alice, harness["Quartz"], harness["Karura"], bob), max_blocks=200)

        assert result.passed
        outbound, spoof = result.reports
        assert outbound.succeeded
        assert spoof.state is TransferState.DELIVERY_REJECTED
        assert TransferState.MESSAGE_SENT in spoof.states
        assert spoof.message_hash in result.detail

    @pytest.mark.asyncio
    async def test_derivative_local_transfer(self, net, bridged, alice, bob):
        harness = await bridged()
        result = await net.run_until(
            harness.derivative_local_transfer(alice, harness["Karura"], harness["Quartz"], bob),
            max_blocks=200)
        assert result.passed
        assert result.tokens == {"original": "Karura/Collection(0)/Token(0)",
                                 "derivative": "Quartz/Collection(2)/Token(1)"}

    def test_result_to_dict(self):
        result = ScenarioResult("x", passed=False, detail="boom")
        assert result.to_dict() == {"name": "x", "passed": False, "detail": "boom",
                                    "reports": [], "tokens": {}}
