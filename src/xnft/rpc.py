"""
xnft — JSON-RPC transport

Carries the ledger client boundary over a WebSocket so the harness can
drive ledgers living in another process (``xnft devnet`` serves the
in-process devnet this way, ``xnft run`` connects to it).

One endpoint per ledger, JSON-RPC 2.0:

  state_query(path, args)                          -> JSON value
  author_submitExtrinsic(call, signer, signature)  -> handle
  author_subscribeInclusion(handle)                -> subscription id
  chain_subscribeNewBlocks()                       -> subscription id
  chain_unsubscribe(subscription id)               -> bool

Pushes arrive as ``xnft_subscription`` notifications carrying
``TxStatus`` / ``BlockEvents`` dicts; ``xnft_subscriptionEnded`` tells
the client that the ledger closed the stream.  Extrinsics are signed
over the canonical JSON of ``{"call": ..., "signer": ...}`` and the
server checks the Ed25519 signature before the call reaches the ledger.
"""

from __future__ import annotations

import asyncio
import json
import logging
import traceback
from contextlib import suppress
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import aiohttp
from aiohttp import WSMsgType, web

from .chains import karura_config, quartz_config, relay_config
from .client import (
    BlockEvents,
    Call,
    LedgerBackend,
    Signer,
    Subscription,
    TxStatus,
)
from .config import HarnessConfig
from .devnet.keyring import verify_signature
from .errors import SubmissionRejected, SubscriptionClosed, XnftError
from .ledger import Ledger

logger = logging.getLogger("xnft.rpc")

NOTIFY_METHOD = "xnft_subscription"
NOTIFY_END_METHOD = "xnft_subscriptionEnded"


# ---------------------------------------------------------------------------
# JSON-RPC 2.0 error codes
# ---------------------------------------------------------------------------

class RPCErrorCode(IntEnum):
    """Standard JSON-RPC 2.0 error codes + ledger-specific extensions."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # -32000 to -32099 reserved for server errors
    LEDGER_ERROR = -32000
    TX_REJECTED = -32001


class RPCError(XnftError):
    """An error that maps directly to a JSON-RPC error response."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = int(code)
        self.data = data

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            d["data"] = self.data
        return d


def signing_payload(call: Dict[str, Any], signer: str) -> bytes:
    """Bytes a submitter signs: canonical JSON of the call and the signer's hex id."""
    return json.dumps({"call": call, "signer": signer},
                      sort_keys=True, separators=(",", ":")).encode("utf-8")


# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------

def _require_param(params: List[Any], index: int, name: str) -> Any:
    if index < len(params):
        return params[index]
    raise RPCError(RPCErrorCode.INVALID_PARAMS, f"missing required parameter: {name}")


def _optional_param(params: List[Any], index: int, default: Any = None) -> Any:
    return params[index] if index < len(params) else default


def _parse_hex(value: Any, name: str) -> bytes:
    if isinstance(value, str) and value.startswith("0x"):
        try:
            return bytes.fromhex(value[2:])
        except ValueError:
            pass
    raise RPCError(RPCErrorCode.INVALID_PARAMS, f"{name} must be 0x-prefixed hex")


def _success_response(req_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "result": result, "id": req_id}


def _error_response(req_id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    err: Dict[str, Any] = {"code": int(code), "message": message}
    if data is not None:
        err["data"] = data
    return {"jsonrpc": "2.0", "error": err, "id": req_id}


def _notification(method: str, sub_id: str, result: Any = None) -> Dict[str, Any]:
    params: Dict[str, Any] = {"subscription": sub_id}
    if method == NOTIFY_METHOD:
        params["result"] = result
    return {"jsonrpc": "2.0", "method": method, "params": params}


@dataclass
class RemoteSigner(Signer):
    """The submitter of a verified extrinsic, as seen by the served ledger."""

    name: str
    account_id: bytes


# ---------------------------------------------------------------------------
# Server side
# ---------------------------------------------------------------------------

@dataclass
class _Forward:
    """One backend subscription relayed to one WebSocket client."""

    sub_id: str
    sub: Subscription
    ws: Any
    task: Optional[asyncio.Task] = None

    def close(self) -> None:
        self.sub.unsubscribe()
        if self.task is not None:
            self.task.cancel()


class LedgerRPCServer:
    """
    JSON-RPC 2.0 server for one ``LedgerBackend``.

    WebSocket at ``/ws`` (calls + subscriptions), plain calls over HTTP
    POST at ``/``, and ``/health``.  ``port=0`` binds a free port; the
    bound one is available from ``port`` / ``url`` after ``start()``.

    Usage::

        server = LedgerRPCServer(net.ledger("Quartz"), "Quartz", port=9944)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(self, backend: LedgerBackend, name: str,
                 host: str = "127.0.0.1", port: int = 9944):
        self.backend = backend
        self.name = name
        self.host = host
        self.port = port

        self._methods: Dict[str, Callable[[List[Any]], Any]] = {
            "state_query": self._state_query,
            "author_submitExtrinsic": self._submit_extrinsic,
        }
        self._ws_methods: Dict[str, Callable[[List[Any], Any], Any]] = {
            "author_subscribeInclusion": self._subscribe_inclusion,
            "chain_subscribeNewBlocks": self._subscribe_new_blocks,
            "chain_unsubscribe": self._unsubscribe,
        }
        self._forwards: Dict[str, _Forward] = {}
        self._sockets: Set[web.WebSocketResponse] = set()
        self._counter = 0
        self._runner: Optional[web.AppRunner] = None
        self._running = False

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}/ws"

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def subscription_count(self) -> int:
        return len(self._forwards)

    # ------------------------------------------------------------------
    # Server lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        app = web.Application()
        app.router.add_post("/", self._handle_http)
        app.router.add_get("/ws", self._handle_ws)
        app.router.add_get("/health", self._handle_health)

        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        if self.port == 0:
            self.port = self._runner.addresses[0][1]
        self._running = True
        logger.info("%s: JSON-RPC listening on %s", self.name, self.url)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        for forward in list(self._forwards.values()):
            forward.close()
        self._forwards.clear()
        for ws in list(self._sockets):
            await ws.close(code=aiohttp.WSCloseCode.GOING_AWAY, message=b"server shutdown")
        if self._runner is not None:
            await self._runner.cleanup()
        self._runner = None
        logger.info("%s: JSON-RPC server stopped", self.name)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_health(self, request):
        return web.json_response({"status": "ok", "ledger": self.name,
                                  "subscriptions": len(self._forwards)})

    async def _handle_http(self, request):
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return web.json_response(_error_response(None, RPCErrorCode.PARSE_ERROR, "Invalid JSON"))
        return web.json_response(await self._process_request(body))

    async def _handle_ws(self, request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self._sockets.add(ws)
        logger.debug("%s: WebSocket client connected: %s", self.name, request.remote)

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        body = json.loads(msg.data)
                    except json.JSONDecodeError:
                        await ws.send_json(_error_response(None, RPCErrorCode.PARSE_ERROR, "Invalid JSON"))
                        continue
                    await ws.send_json(await self._process_request(body, ws))
                    # a subscription id reaches the client before its first push
                    self._start_forwards(ws)
                elif msg.type in (WSMsgType.ERROR, WSMsgType.CLOSE):
                    break
        finally:
            self._sockets.discard(ws)
            removed = self._drop_socket(ws)
            if removed:
                logger.debug("%s: cleaned up %d subscription(s) for disconnected client",
                             self.name, removed)
        return ws

    async def _process_request(self, body: Any, ws: Any = None) -> Dict[str, Any]:
        if not isinstance(body, dict):
            return _error_response(None, RPCErrorCode.INVALID_REQUEST, "Request must be an object")

        req_id = body.get("id")
        method = body.get("method")
        params = body.get("params", [])

        if body.get("jsonrpc") != "2.0":
            return _error_response(req_id, RPCErrorCode.INVALID_REQUEST, "jsonrpc must be '2.0'")
        if not method or not isinstance(method, str):
            return _error_response(req_id, RPCErrorCode.INVALID_REQUEST, "missing or invalid method")
        if not isinstance(params, list):
            return _error_response(req_id, RPCErrorCode.INVALID_PARAMS, "params must be a list")

        try:
            if method in self._ws_methods:
                if ws is None:
                    raise RPCError(RPCErrorCode.INVALID_REQUEST, f"{method} needs a WebSocket connection")
                result = self._ws_methods[method](params, ws)
            elif method in self._methods:
                result = await self._methods[method](params)
            else:
                raise RPCError(RPCErrorCode.METHOD_NOT_FOUND, f"method not found: {method}")
        except RPCError as e:
            return _error_response(req_id, e.code, e.message, e.data)
        except (KeyError, ValueError, TypeError) as e:
            return _error_response(req_id, RPCErrorCode.INVALID_PARAMS, str(e))
        except Exception as e:
            logger.error("%s: RPC handler error [%s]: %s\n%s",
                         self.name, method, e, traceback.format_exc())
            return _error_response(req_id, RPCErrorCode.INTERNAL_ERROR, str(e))
        return _success_response(req_id, result)

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    async def _state_query(self, params: List[Any]) -> Any:
        path = _require_param(params, 0, "path")
        args = _optional_param(params, 1, [])
        if not isinstance(path, str) or not isinstance(args, list):
            raise RPCError(RPCErrorCode.INVALID_PARAMS, "expected [path, [args...]]")
        return await self.backend.query_state(path, *args)

    async def _submit_extrinsic(self, params: List[Any]) -> str:
        call_dict = _require_param(params, 0, "call")
        signer_hex = _require_param(params, 1, "signer")
        signature = _parse_hex(_require_param(params, 2, "signature"), "signature")
        account = _parse_hex(signer_hex, "signer")

        if not isinstance(call_dict, dict):
            raise RPCError(RPCErrorCode.INVALID_PARAMS, "call must be an object")
        if not verify_signature(account, signing_payload(call_dict, signer_hex), signature):
            raise RPCError(RPCErrorCode.TX_REJECTED, "bad signature")

        call = Call.from_dict(call_dict)
        return await self.backend.submit(call, RemoteSigner(signer_hex, account))

    def _subscribe_inclusion(self, params: List[Any], ws: Any) -> str:
        handle = _require_param(params, 0, "handle")
        return self._register(self.backend.subscribe_inclusion(handle), ws)

    def _subscribe_new_blocks(self, params: List[Any], ws: Any) -> str:
        return self._register(self.backend.subscribe_new_blocks(), ws)

    def _unsubscribe(self, params: List[Any], ws: Any) -> bool:
        sub_id = _require_param(params, 0, "subscription_id")
        forward = self._forwards.get(sub_id)
        if forward is None or forward.ws is not ws:
            return False
        del self._forwards[sub_id]
        forward.close()
        return True

    # ------------------------------------------------------------------
    # Subscription forwarding
    # ------------------------------------------------------------------

    def _register(self, sub: Subscription, ws: Any) -> str:
        self._counter += 1
        sub_id = f"0x{self._counter:016x}"
        self._forwards[sub_id] = _Forward(sub_id, sub, ws)
        return sub_id

    def _start_forwards(self, ws: Any) -> None:
        for forward in self._forwards.values():
            if forward.ws is ws and forward.task is None:
                forward.task = asyncio.ensure_future(self._pump(forward))

    async def _pump(self, forward: _Forward) -> None:
        try:
            async for item in forward.sub:
                await forward.ws.send_json(_notification(NOTIFY_METHOD, forward.sub_id, item.to_dict()))
            if not forward.sub.closed:
                # the backend ended the stream, not the client
                await forward.ws.send_json(_notification(NOTIFY_END_METHOD, forward.sub_id))
        except ConnectionError as e:
            logger.debug("%s: dropping subscription %s: %s", self.name, forward.sub_id, e)
        finally:
            self._forwards.pop(forward.sub_id, None)
            forward.sub.unsubscribe()

    def _drop_socket(self, ws: Any) -> int:
        stale = [f for f in self._forwards.values() if f.ws is ws]
        for forward in stale:
            del self._forwards[forward.sub_id]
            forward.close()
        return len(stale)


async def serve_ledgers(backends: Dict[str, LedgerBackend], host: str = "127.0.0.1",
                        port: int = 9944) -> Dict[str, LedgerRPCServer]:
    """Start one server per ledger on consecutive ports (``port=0``: any free ports)."""
    servers: Dict[str, LedgerRPCServer] = {}
    try:
        for offset, (name, backend) in enumerate(backends.items()):
            server = LedgerRPCServer(backend, name, host, port + offset if port else 0)
            await server.start()
            servers[name] = server
    except OSError:
        for server in servers.values():
            await server.stop()
        raise
    return servers


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------

class RpcLedgerBackend(LedgerBackend):
    """``LedgerBackend`` over a JSON-RPC WebSocket connection.

    Subscriptions are returned immediately; the subscribe request is sent
    in the background and pushes are routed once the server's id is known.
    Unsubscribing locally cancels the remote subscription.
    """

    def __init__(self, url: str, session: aiohttp.ClientSession,
                 ws: aiohttp.ClientWebSocketResponse):
        self.url = url
        self._session = session
        self._ws = ws
        self._next_id = 0
        self._pending: Dict[int, Tuple[asyncio.Future, Optional[Callable[[Any], None]]]] = {}
        self._routes: Dict[str, Tuple[Subscription, Callable[[Dict[str, Any]], Any]]] = {}
        self._remote_ids: Dict[str, str] = {}
        self._sub_counter = 0
        self._closed = False
        self._tasks: Set[asyncio.Task] = set()
        self._reader = asyncio.ensure_future(self._read_loop())

    @classmethod
    async def open(cls, url: str, timeout: float = 10.0) -> "RpcLedgerBackend":
        session = aiohttp.ClientSession()
        try:
            ws = await asyncio.wait_for(session.ws_connect(url), timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            await session.close()
            raise RPCError(RPCErrorCode.LEDGER_ERROR, f"cannot connect to {url}: {e}")
        logger.info("connected to %s", url)
        return cls(url, session, ws)

    @property
    def subscription_count(self) -> int:
        return len(self._routes)

    # -- LedgerBackend -------------------------------------------------------

    async def submit(self, call: Call, signer: Signer) -> str:
        call_dict = call.to_dict()
        signer_hex = "0x" + signer.account_id.hex()
        signature = signer.sign(signing_payload(call_dict, signer_hex))
        try:
            return await self._request("author_submitExtrinsic",
                                       call_dict, signer_hex, "0x" + signature.hex())
        except RPCError as e:
            if e.code == RPCErrorCode.TX_REJECTED:
                raise SubmissionRejected([e.message])
            raise

    def subscribe_inclusion(self, handle: str) -> Subscription:
        return self._subscribe(TxStatus.from_dict, "author_subscribeInclusion", handle)

    async def query_state(self, path: str, *args: Any) -> Any:
        return await self._request("state_query", path, list(args))

    def subscribe_new_blocks(self) -> Subscription:
        return self._subscribe(BlockEvents.from_dict, "chain_subscribeNewBlocks")

    async def close(self) -> None:
        if self._session.closed:
            return
        self._shutdown(f"connection to {self.url} closed by the client")
        await self._ws.close()
        await self._session.close()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if not self._reader.done():
            self._reader.cancel()
            with suppress(asyncio.CancelledError):
                await self._reader
        logger.info("disconnected from %s", self.url)

    # -- Requests --------------------------------------------------------------

    async def _request(self, method: str, *params: Any,
                       on_result: Optional[Callable[[Any], None]] = None) -> Any:
        if self._closed:
            raise SubscriptionClosed(f"connection to {self.url} is closed")
        self._next_id += 1
        req_id = self._next_id
        future = asyncio.get_event_loop().create_future()
        self._pending[req_id] = (future, on_result)
        try:
            await self._ws.send_json({"jsonrpc": "2.0", "id": req_id,
                                      "method": method, "params": list(params)})
            return await future
        finally:
            self._pending.pop(req_id, None)

    def _subscribe(self, decode: Callable[[Dict[str, Any]], Any],
                   method: str, *params: Any) -> Subscription:
        self._sub_counter += 1
        local = Subscription(f"rpc-0x{self._sub_counter:016x}", {"method": method},
                             on_close=self._release)
        if self._closed:
            local.end()
            return local

        def bind(remote_id: str) -> None:
            if local.closed:
                self._spawn(self._unsubscribe_remote(remote_id))
                return
            self._remote_ids[local.sub_id] = remote_id
            self._routes[remote_id] = (local, decode)

        self._spawn(self._open_stream(method, params, local, bind))
        return local

    def _spawn(self, coro) -> None:
        # the loop only keeps weak references to tasks
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _open_stream(self, method: str, params: Tuple[Any, ...],
                           local: Subscription, bind: Callable[[Any], None]) -> None:
        try:
            await self._request(method, *params, on_result=bind)
        except (RPCError, SubscriptionClosed, ConnectionError) as e:
            logger.warning("%s: %s failed: %s", self.url, method, e)
            local.end()

    def _release(self, local: Subscription) -> None:
        remote_id = self._remote_ids.pop(local.sub_id, None)
        if remote_id is None:
            return
        self._routes.pop(remote_id, None)
        if not self._closed:
            self._spawn(self._unsubscribe_remote(remote_id))

    async def _unsubscribe_remote(self, remote_id: str) -> None:
        try:
            await self._request("chain_unsubscribe", remote_id)
        except (RPCError, SubscriptionClosed, ConnectionError) as e:
            logger.debug("%s: unsubscribe %s failed: %s", self.url, remote_id, e)

    # -- Incoming messages -----------------------------------------------------

    async def _read_loop(self) -> None:
        try:
            async for msg in self._ws:
                if msg.type == WSMsgType.TEXT:
                    self._dispatch(json.loads(msg.data))
                elif msg.type == WSMsgType.ERROR:
                    break
        finally:
            self._shutdown(f"connection to {self.url} closed")

    def _dispatch(self, body: Dict[str, Any]) -> None:
        req_id = body.get("id")
        if req_id is not None:
            pending = self._pending.get(req_id)
            if pending is None:
                return
            future, on_result = pending
            if future.done():
                return
            if "error" in body:
                err = body["error"]
                future.set_exception(RPCError(err.get("code", RPCErrorCode.INTERNAL_ERROR),
                                              err.get("message", ""), err.get("data")))
                return
            if on_result is not None:
                on_result(body.get("result"))
            future.set_result(body.get("result"))
            return

        params = body.get("params") or {}
        route = self._routes.get(params.get("subscription"))
        if route is None:
            logger.debug("%s: notification for unknown subscription %s",
                         self.url, params.get("subscription"))
            return
        local, decode = route
        if body.get("method") == NOTIFY_METHOD:
            local.push(decode(params["result"]))
        elif body.get("method") == NOTIFY_END_METHOD:
            del self._routes[params["subscription"]]
            self._remote_ids.pop(local.sub_id, None)
            local.end()

    def _shutdown(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        for future, _ in self._pending.values():
            if not future.done():
                future.set_exception(SubscriptionClosed(reason))
        for local, _ in self._routes.values():
            local.end()
        self._routes.clear()
        self._remote_ids.clear()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<RpcLedgerBackend {self.url} {state}>"


async def connect_remote(config: HarnessConfig) -> Dict[str, Ledger]:
    """Connect to every ledger whose URL is set in *config* (the relay is required)."""
    if not config.relay_url:
        raise ValueError("RELAY_URL is not set")
    presets = [
        relay_config(config.relay_url),
        quartz_config(config.quartz_id, config.quartz_url),
        karura_config(config.karura_id, config.karura_url),
    ]
    ledgers: Dict[str, Ledger] = {}
    try:
        for preset in presets:
            if not preset.url:
                continue
            backend = await RpcLedgerBackend.open(preset.url)
            try:
                ledgers[preset.name] = await Ledger.connect(backend, preset)
            except XnftError:
                await backend.close()
                raise
    except XnftError:
        for ledger in ledgers.values():
            await ledger.disconnect()
        raise
    return ledgers
