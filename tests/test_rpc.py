"""
Tests for the JSON-RPC transport: a devnet served over WebSockets and
driven through RpcLedgerBackend.
"""

import asyncio
import json
from contextlib import asynccontextmanager

import aiohttp
import pytest

from xnft.chains import quartz_config
from xnft.client import BlockEvents, Call, Signer, TxStatus, sudo
from xnft.config import HarnessConfig
from xnft.devnet import DevnetNetwork, verify_signature
from xnft.errors import SubmissionRejected, SubscriptionClosed
from xnft.events import EventKind
from xnft.executor import TransactionExecutor
from xnft.harness import BridgeHarness
from xnft.ledger import Ledger
from xnft.rpc import (
    LedgerRPCServer,
    RPCError,
    RPCErrorCode,
    RpcLedgerBackend,
    connect_remote,
    serve_ledgers,
    signing_payload,
)


@pytest.fixture
def rpc_config():
    # slower blocks than the in-process tests: every subscription costs a round trip
    return HarnessConfig(block_time=0.02, delivery_delay=2, session_length=3)


@pytest.fixture
def served(rpc_config):
    """Async context: the standard devnet producing blocks, every ledger on a free port."""

    @asynccontextmanager
    async def _serve():
        async with DevnetNetwork.standard(rpc_config) as net:
            servers = await serve_ledgers({b.name: b for b in net.ledgers}, port=0)
            try:
                yield net, servers
            finally:
                for server in servers.values():
                    await server.stop()

    return _serve


async def _eventually(condition, timeout=2.0):
    loop = asyncio.get_event_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.01)
    return True


class _Impostor(Signer):
    """Claims one account but signs with another key."""

    def __init__(self, claimed, key):
        self.name = "impostor"
        self.account_id = claimed.account_id
        self._key = key

    def sign(self, payload):
        return self._key.sign(payload)


class TestSigning:
    def test_dev_account_signatures_verify(self, alice, bob):
        signature = alice.sign(b"payload")
        assert verify_signature(alice.account_id, b"payload", signature)
        assert not verify_signature(bob.account_id, b"payload", signature)
        assert not verify_signature(alice.account_id, b"other", signature)
        assert not verify_signature(alice.account_id, b"payload", b"\x00" * 3)

    def test_payload_survives_json_transport(self):
        call = sudo(Call("balances", "transferKeepAlive", ({"Id": "5Grw"}, 10 ** 22)))
        over_the_wire = json.loads(json.dumps(call.to_dict()))
        assert signing_payload(over_the_wire, "0xab") == signing_payload(call.to_dict(), "0xab")
        assert Call.from_dict(over_the_wire) == call

    def test_status_and_block_dicts(self):
        status = TxStatus("in_block", 4, "0x01")
        assert TxStatus.from_dict(json.loads(json.dumps(status.to_dict()))) == status
        block = BlockEvents(3, (), "0x02")
        assert BlockEvents.from_dict(block.to_dict()) == block


class TestServer:
    @pytest.mark.asyncio
    async def test_health_and_http_calls(self, served):
        async with served() as (net, servers):
            server = servers["Quartz"]
            base = f"http://{server.host}:{server.port}"
            async with aiohttp.ClientSession() as session:
                async with session.get(f"{base}/health") as resp:
                    health = await resp.json()
                assert health["status"] == "ok"
                assert health["ledger"] == "Quartz"

                async def post(method, params):
                    body = {"jsonrpc": "2.0", "id": 7, "method": method, "params": params}
                    async with session.post(f"{base}/", json=body) as resp:
                        return await resp.json()

                props = await post("state_query", ["system.properties", []])
                assert props["result"]["tokenSymbol"] == ["QTZ"]
                assert props["id"] == 7

                missing = await post("chain_getBlock", [])
                assert missing["error"]["code"] == RPCErrorCode.METHOD_NOT_FOUND

                needs_ws = await post("chain_subscribeNewBlocks", [])
                assert needs_ws["error"]["code"] == RPCErrorCode.INVALID_REQUEST

                unknown_path = await post("state_query", ["nope.nothing", []])
                assert unknown_path["error"]["code"] == RPCErrorCode.INVALID_PARAMS
                assert "unknown storage path" in unknown_path["error"]["message"]

    @pytest.mark.asyncio
    async def test_free_port_binding(self, rpc_config):
        net = DevnetNetwork.standard(rpc_config)
        servers = await serve_ledgers({"Relay": net.relay}, port=0)
        try:
            assert servers["Relay"].port != 0
            assert servers["Relay"].url.endswith("/ws")
        finally:
            await servers["Relay"].stop()
        assert not servers["Relay"].is_running


class TestRequestValidation:
    @pytest.fixture
    def server(self, net):
        return LedgerRPCServer(net.ledger("Quartz"), "Quartz", port=0)

    @pytest.mark.asyncio
    async def test_envelope_errors(self, server):
        assert (await server._process_request([]))["error"]["code"] == RPCErrorCode.INVALID_REQUEST
        wrong_version = await server._process_request({"jsonrpc": "1.0", "id": 1, "method": "state_query"})
        assert wrong_version["error"]["code"] == RPCErrorCode.INVALID_REQUEST
        assert wrong_version["id"] == 1
        no_method = await server._process_request({"jsonrpc": "2.0", "id": 2})
        assert no_method["error"]["code"] == RPCErrorCode.INVALID_REQUEST
        dict_params = await server._process_request(
            {"jsonrpc": "2.0", "id": 3, "method": "state_query", "params": {"path": "x"}})
        assert dict_params["error"]["code"] == RPCErrorCode.INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_submit_parameter_errors(self, server, alice):
        async def submit(*params):
            body = {"jsonrpc": "2.0", "id": 9, "method": "author_submitExtrinsic", "params": list(params)}
            return (await server._process_request(body))["error"]

        assert "missing required parameter: signer" in (await submit({}))["message"]
        signer = "0x" + alice.account_id.hex()
        assert (await submit({}, signer, "zz"))["message"] == "signature must be 0x-prefixed hex"
        bad = await submit({"section": "x", "method": "y", "args": []}, signer, "0x00")
        assert bad["code"] == RPCErrorCode.TX_REJECTED

    @pytest.mark.asyncio
    async def test_signed_call_reaches_the_ledger(self, net, server, alice):
        call = Call("balances", "transferKeepAlive", ("0x" + "11" * 32, 1)).to_dict()
        signer = "0x" + alice.account_id.hex()
        signature = "0x" + alice.sign(signing_payload(call, signer)).hex()
        response = await server._process_request(
            {"jsonrpc": "2.0", "id": 4, "method": "author_submitExtrinsic",
             "params": [call, signer, signature]})
        handle = response["result"]
        assert handle.startswith("quartz-0x")
        assert net.ledger("Quartz")._statuses[handle].status == "ready"

    def test_rpc_error_to_dict(self):
        assert RPCError(RPCErrorCode.TX_REJECTED, "no").to_dict() == {"code": -32001, "message": "no"}
        assert RPCError(-32000, "x", {"a": 1}).to_dict()["data"] == {"a": 1}


class TestRemoteBackend:
    @pytest.mark.asyncio
    async def test_submit_signed_extrinsic(self, served, rpc_config, alice):
        async with served() as (net, servers):
            backend = await RpcLedgerBackend.open(servers["Quartz"].url)
            ledger = await Ledger.connect(backend, quartz_config(rpc_config.quartz_id, backend.url))
            try:
                assert ledger.native_currency.symbol == "QTZ"
                result = await asyncio.wait_for(
                    TransactionExecutor(ledger).execute(alice, ledger.nft.create_collection(ledger)), 10)
                assert result.has_event(EventKind.COLLECTION_CREATED)
                assert net.ledger("Quartz").runtime.state.collections
            finally:
                await ledger.disconnect()

    @pytest.mark.asyncio
    async def test_bad_signature_is_rejected(self, served, rpc_config, alice, bob):
        async with served() as (net, servers):
            backend = await RpcLedgerBackend.open(servers["Relay"].url)
            try:
                call = Call("balances", "transferKeepAlive", ("0x" + bob.account_id.hex(), 1))
                with pytest.raises(SubmissionRejected) as exc:
                    await backend.submit(call, _Impostor(alice, bob))
                assert exc.value.reasons == ["bad signature"]
                assert net.relay._pending == []
            finally:
                await backend.close()

    @pytest.mark.asyncio
    async def test_unsubscribe_releases_both_sides(self, served):
        async with served() as (net, servers):
            server = servers["Karura"]
            backend = await RpcLedgerBackend.open(server.url)
            try:
                blocks = backend.subscribe_new_blocks()
                first = await asyncio.wait_for(blocks.__anext__(), 5)
                assert isinstance(first, BlockEvents)
                assert server.subscription_count == 1
                assert net.ledger("Karura").subscription_count == 1

                blocks.unsubscribe()
                assert backend.subscription_count == 0
                assert await _eventually(lambda: server.subscription_count == 0)
                assert await _eventually(lambda: net.ledger("Karura").subscription_count == 0)
                assert await _eventually(lambda: not backend._tasks)
            finally:
                await backend.close()

    @pytest.mark.asyncio
    async def test_close_settles_background_requests(self, served):
        async with served() as (net, servers):
            backend = await RpcLedgerBackend.open(servers["Relay"].url)
            backend.subscribe_new_blocks()
            assert len(backend._tasks) == 1
            await backend.close()
            assert not backend._tasks

    @pytest.mark.asyncio
    async def test_stream_ends_when_server_stops(self, served):
        async with served() as (net, servers):
            server = servers["Quartz"]
            backend = await RpcLedgerBackend.open(server.url)
            try:
                blocks = backend.subscribe_new_blocks()
                await asyncio.wait_for(blocks.__anext__(), 5)
                await server.stop()

                async def drain():
                    async for _ in blocks:
                        pass

                await asyncio.wait_for(drain(), 5)
                with pytest.raises(SubscriptionClosed):
                    await backend.query_state("system.properties")
            finally:
                await backend.close()

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        with pytest.raises(RPCError) as exc:
            await RpcLedgerBackend.open("ws://127.0.0.1:1/ws", timeout=2)
        assert exc.value.code == RPCErrorCode.LEDGER_ERROR

    @pytest.mark.asyncio
    async def test_connect_remote_needs_relay(self):
        with pytest.raises(ValueError):
            await connect_remote(HarnessConfig())


class TestScenariosOverRpc:
    @pytest.mark.asyncio
    async def test_every_scenario_passes(self, served, rpc_config, alice, bob):
        async with served() as (net, servers):
            config = HarnessConfig(
                relay_url=servers["Relay"].url,
                quartz_url=servers["Quartz"].url,
                karura_url=servers["Karura"].url,
                block_time=rpc_config.block_time,
            )
            ledgers = await connect_remote(config)
            assert sorted(ledgers) == ["Karura", "Quartz", "Relay"]
            harness = BridgeHarness.from_ledgers(ledgers, config)
            try:
                await asyncio.wait_for(harness.setup(alice), 30)
                results = await asyncio.wait_for(harness.run_scenarios(alice, bob), 120)
            finally:
                await harness.disconnect()

            assert all(r.passed for r in results), [r.to_dict() for r in results if not r.passed]
            assert len(results) == 6
            assert await _eventually(
                lambda: all(server.subscription_count == 0 for server in servers.values()))
