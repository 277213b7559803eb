"""
Tests for the cross-chain transfer protocol: the report lifecycle and
end-to-end transfers between the devnet parachains.
"""

import pytest

from xnft.config import HarnessConfig
from xnft.devnet import DevnetNetwork
from xnft.errors import BridgeDeliveryFailed, InvalidTransition, SubmissionRejected
from xnft.harness import BridgeHarness
from xnft.nft import Token
from xnft.protocol import CrossChainTransfer, TransferReport, TransferState, transfer_call
from xnft.registry import DerivativeRegistry, DerivativeStatus

S = TransferState

CONFIRMED = [S.BUILT, S.SUBMITTED, S.INCLUDED_OK, S.MESSAGE_SENT, S.DELIVERY_CONFIRMED]


async def _minted(harness, admin, owner, reserve, remote=None):
    """A fresh collection on *reserve* (registered on *remote* if given) and one token."""
    collection = await harness.create_collection(admin, reserve)
    if remote is not None:
        await harness.register_collection(admin, remote, collection)
    return await harness.mint_token(admin, collection, owner.account_id)


# ── Lifecycle ──────────────────────────────────────────────────────────

class TestTransferReport:
    @pytest.mark.asyncio
    async def test_happy_path(self, net, bob):
        quartz = (await net.connect())["Quartz"]
        report = TransferReport(Token(quartz, 1, 1), "Quartz", "Karura", "bob")
        for state in CONFIRMED[1:]:
            report.advance(state)
        assert report.states == CONFIRMED
        assert report.succeeded
        assert report.state.is_final

        d = report.to_dict()
        assert d["token"] == "Quartz/Collection(1)/Token(1)"
        assert d["state"] == "delivery_confirmed"
        assert d["history"][0] == "built"

    @pytest.mark.asyncio
    async def test_illegal_transition(self, net):
        quartz = (await net.connect())["Quartz"]
        report = TransferReport(Token(quartz, 1, 1), "Quartz", "Karura", "bob")
        with pytest.raises(InvalidTransition) as exc:
            report.advance(S.MESSAGE_SENT)
        assert exc.value.current == "built"
        assert exc.value.target == "message_sent"
        assert report.states == [S.BUILT]

    def test_final_states(self):
        assert {s for s in S if s.is_final} == {
            S.DELIVERY_CONFIRMED, S.DELIVERY_TIMED_OUT, S.DELIVERY_REJECTED}

    @pytest.mark.asyncio
    async def test_transfer_call_shape(self, net, bob):
        ledgers = await net.connect()
        quartz, karura = ledgers["Quartz"], ledgers["Karura"]
        token = Token(quartz, 3, 7)
        fee = quartz.native_currency.as_multiasset(10)
        call = transfer_call(token.as_multiasset(), fee, karura.account_location(bob.account_id))

        assert call.name == "xTokens.transferMultiassetWithFee"
        asset, fee_arg, dest, weight = call.args
        assert asset == {"V3": token.as_multiasset().to_wire()}
        assert fee_arg["V3"]["fun"] == {"Fungible": 10 * 10 ** 18}
        assert dest["V3"]["parents"] == 1
        assert weight == "Unlimited"


# ── Transfers ──────────────────────────────────────────────────────────

class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_quartz_nft_to_karura_and_back(self, net, bridged, alice, bob):
        harness = await bridged()
        quartz, karura = harness["Quartz"], harness["Karura"]

        async def scenario():
            token = await _minted(harness, alice, bob, quartz, karura)
            out = await harness.transfer(bob, token, quartz, karura, bob.account_id)
            custody = await token.is_owned_by(quartz.sovereign_account(karura.para_id))
            back = await harness.transfer(bob, token, karura, quartz, alice.account_id,
                                          fee=harness.fee(token, 1))
            return token, out, custody, back

        token, out, custody, back = await net.run_until(scenario(), max_blocks=200)

        assert token == Token(quartz, 2, 1)
        assert out.states == CONFIRMED
        assert out.delivered == Token(karura, 0, 0)
        assert custody
        assert back.states == CONFIRMED
        assert back.delivered == token
        assert await token.is_owned_by(alice.account_id)

        # the derivative is parked in the xnft pallet account, not destroyed
        status = await DerivativeRegistry(karura).status_of(0, token.asset_instance)
        assert status == DerivativeStatus.stashed(0)
        assert await Token(karura, 0, 0).is_owned_by(karura.bridge_pallet_account)

    @pytest.mark.asyncio
    async def test_karura_nft_to_quartz_and_back(self, net, bridged, alice, bob):
        harness = await bridged()
        quartz, karura = harness["Quartz"], harness["Karura"]

        async def scenario():
            token = await _minted(harness, alice, bob, karura, quartz)
            out = await harness.transfer(bob, token, karura, quartz, bob.account_id)
            back = await harness.transfer(bob, token, quartz, karura, alice.account_id,
                                          fee=harness.fee(token, 1))
            return token, out, back

        token, out, back = await net.run_until(scenario(), max_blocks=200)

        assert token == Token(karura, 0, 0)
        assert out.delivered == Token(quartz, 2, 1)
        assert back.succeeded
        assert await token.is_owned_by(alice.account_id)

        # the derivative was burned on the way out
        status = await DerivativeRegistry(quartz).status_of(2, token.asset_instance)
        assert not status.exists
        assert not await Token(quartz, 2, 1).is_owned_by(bob.account_id)

    @pytest.mark.asyncio
    async def test_second_visit_reuses_stashed_derivative(self, net, bridged, alice, bob):
        harness = await bridged()
        quartz, karura = harness["Quartz"], harness["Karura"]

        async def scenario():
            token = await _minted(harness, alice, bob, quartz, karura)
            await harness.transfer(bob, token, quartz, karura, bob.account_id)
            await harness.transfer(bob, token, karura, quartz, bob.account_id,
                                   fee=harness.fee(token, 1))
            return await harness.transfer(bob, token, quartz, karura, alice.account_id)

        again = await net.run_until(scenario(), max_blocks=300)
        assert again.delivered == Token(karura, 0, 0)
        assert await again.delivered.is_owned_by(alice.account_id)

    @pytest.mark.asyncio
    async def test_delivery_in_the_inclusion_round(self, alice, bob):
        # Karura processes the message in the same round Quartz includes it
        config = HarnessConfig(block_time=0.001, session_length=3, delivery_delay=1)
        net = DevnetNetwork.standard(config)
        harness = BridgeHarness.from_ledgers(await net.connect(), config)
        quartz, karura = harness["Quartz"], harness["Karura"]
        await net.run_until(harness.setup(alice), max_blocks=50)

        async def scenario():
            token = await _minted(harness, alice, bob, quartz, karura)
            out = await harness.transfer(bob, token, quartz, karura, bob.account_id)
            back = await harness.transfer(bob, token, karura, quartz, alice.account_id,
                                          fee=harness.fee(token, 1))
            return token, out, back

        token, out, back = await net.run_until(scenario(), max_blocks=200)

        assert out.states == CONFIRMED
        assert back.states == CONFIRMED
        assert await token.is_owned_by(alice.account_id)
        assert net.in_flight == 0
        assert karura.backend.subscription_count == 0


class TestFailures:
    @pytest.mark.asyncio
    async def test_unregistered_collection_is_rejected(self, net, bridged, alice, bob):
        harness = await bridged()
        quartz, karura = harness["Quartz"], harness["Karura"]
        token = await net.run_until(_minted(harness, alice, bob, quartz))

        transfer = CrossChainTransfer(quartz)
        with pytest.raises(BridgeDeliveryFailed) as exc:
            await net.run_until(transfer.transfer(
                bob, token, harness.fee(token, 10), karura, bob.account_id))

        assert exc.value.reason == "AssetNotFound"
        assert exc.value.destination == "Karura"
        report = transfer.last_report
        assert report.states == CONFIRMED[:-1] + [S.DELIVERY_REJECTED]
        assert report.error == "AssetNotFound"
        assert report.message_hash == exc.value.message_hash

    @pytest.mark.asyncio
    async def test_delivery_timeout(self, alice, bob):
        config = HarnessConfig(block_time=0.001, session_length=3,
                               delivery_delay=30, delivery_max_blocks=3)
        net = DevnetNetwork.standard(config)
        harness = BridgeHarness.from_ledgers(await net.connect(), config)
        quartz, karura = harness["Quartz"], harness["Karura"]
        await net.run_until(harness.setup(alice), max_blocks=50)
        token = await net.run_until(_minted(harness, alice, bob, quartz, karura))

        transfer = CrossChainTransfer(quartz, config.delivery_max_blocks)
        with pytest.raises(BridgeDeliveryFailed) as exc:
            await net.run_until(transfer.transfer(
                bob, token, harness.fee(token, 10), karura, bob.account_id))

        assert exc.value.reason == "delivery timed out"
        assert transfer.last_report.state is S.DELIVERY_TIMED_OUT
        assert net.in_flight == 1

    @pytest.mark.asyncio
    async def test_no_channel(self, net, alice):
        ledgers = await net.connect()
        quartz, karura = ledgers["Quartz"], ledgers["Karura"]
        harness = BridgeHarness.from_ledgers(ledgers)
        token = await net.run_until(_minted(harness, alice, alice, quartz))

        transfer = CrossChainTransfer(quartz)
        with pytest.raises(SubmissionRejected) as exc:
            await net.run_until(transfer.transfer(
                alice, token, harness.fee(token, 10), karura, alice.account_id))
        assert exc.value.reasons == ["xTokens.XcmExecutionFailed"]
        assert await token.is_owned_by(alice.account_id)

    @pytest.mark.asyncio
    async def test_derivative_cannot_be_sent_as_reserve(self, net, bridged, alice, bob):
        harness = await bridged()
        quartz, karura = harness["Quartz"], harness["Karura"]

        async def scenario():
            token = await _minted(harness, alice, bob, quartz, karura)
            return await harness.transfer(bob, token, quartz, karura, bob.account_id)

        out = await net.run_until(scenario(), max_blocks=200)
        derivative = out.delivered

        spoof = CrossChainTransfer(karura)
        with pytest.raises(SubmissionRejected) as exc:
            await net.run_until(spoof.transfer(
                bob, derivative, karura.native_currency.as_multiasset(10), quartz, bob.account_id))

        assert exc.value.reasons == ["xTokens.XcmExecutionFailed"]
        assert spoof.last_report.states == [S.BUILT, S.SUBMITTED, S.DELIVERY_REJECTED]
        assert await derivative.is_owned_by(bob.account_id)
