import asyncio
import json
import logging

import httpx
import pytest
from eth_abi import encode

from eth_ico_admin.contracts import ContractArtifact, ContractBinding
from eth_ico_admin.errors import NetworkSyncError, RpcError, TransactionFailedError
from eth_ico_admin.ledger_client import HttpTransport, IpcTransport, LedgerClient, make_transport
from eth_ico_admin.schemas import ContractRole
from support import BYTECODE, ICO_ABI, SENDER, TOKEN_ABI

CONTRACT = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
TX_HASH = "0x" + "ab" * 32


def make_ledger(results):
    """LedgerClient over an httpx MockTransport; ``results`` maps method -> result (or list of results)."""
    requests = []

    def handler(request):
        payload = json.loads(request.content)
        requests.append(payload)
        result = results[payload["method"]]
        if isinstance(result, list):
            result = result.pop(0)
        if isinstance(result, dict) and "error" in result:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "error": result["error"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    transport = HttpTransport("http://node:8545", client=client)
    return LedgerClient(transport, SENDER, 4000000, 20 * 10 ** 9, poll_interval=0), requests


def ico_binding():
    return ContractBinding(ContractRole.pre_ico, ContractArtifact("SNPCPreICO", ICO_ABI, BYTECODE), CONTRACT)


def test_make_transport():
    assert isinstance(make_transport("http://127.0.0.1:8545"), HttpTransport)
    ipc = make_transport("ipc:///var/run/geth.ipc")
    assert isinstance(ipc, IpcTransport)
    assert ipc.path == "/var/run/geth.ipc"
    with pytest.raises(ValueError, match="Unknown web3 endpoint"):
        make_transport("ws://127.0.0.1:8546")


@pytest.mark.asyncio
async def test_call_decodes_result():
    ledger, requests = make_ledger({"eth_call": "0x" + encode(["uint8"], [2]).hex()})
    async with ledger:
        assert await ledger.call(ico_binding(), "state") == 2

    params = requests[0]["params"]
    assert params[0]["to"] == CONTRACT
    assert params[0]["from"] == SENDER
    assert params[1] == "latest"


@pytest.mark.asyncio
async def test_rpc_error():
    ledger, _ = make_ledger({"eth_call": {"error": {"code": -32000, "message": "execution reverted"}}})
    async with ledger:
        with pytest.raises(RpcError, match="RPC eth_call failed: execution reverted"):
            await ledger.call(ico_binding(), "state")


@pytest.mark.asyncio
async def test_transact_waits_for_receipt():
    receipt = {"status": "0x1", "blockNumber": "0x10"}
    ledger, requests = make_ledger({
        "eth_sendTransaction": TX_HASH,
        "eth_getTransactionReceipt": [None, None, receipt],
    })
    async with ledger:
        assert await ledger.transact(ico_binding(), "start", 1700000000) == receipt

    tx = requests[0]["params"][0]
    assert tx["to"] == CONTRACT
    assert tx["gas"] == hex(4000000)
    assert tx["gasPrice"] == hex(20 * 10 ** 9)
    assert [r["method"] for r in requests].count("eth_getTransactionReceipt") == 3


@pytest.mark.asyncio
async def test_transact_reverted():
    ledger, _ = make_ledger({
        "eth_sendTransaction": TX_HASH,
        "eth_getTransactionReceipt": {"status": "0x0", "blockNumber": "0x10"},
    })
    async with ledger:
        with pytest.raises(TransactionFailedError, match="reverted"):
            await ledger.transact(ico_binding(), "terminate")


@pytest.mark.asyncio
async def test_deploy_returns_contract_address():
    token = ContractBinding(ContractRole.token, ContractArtifact("SNPCToken", TOKEN_ABI, BYTECODE))
    ledger, requests = make_ledger({
        "eth_sendTransaction": TX_HASH,
        "eth_getTransactionReceipt": {"status": "0x1", "contractAddress": CONTRACT},
    })
    async with ledger:
        assert await ledger.deploy(token, 1000, 10, 20, 30, 40) == CONTRACT

    tx = requests[0]["params"][0]
    assert "to" not in tx
    assert tx["data"].startswith(BYTECODE)


@pytest.mark.asyncio
async def test_deploy_without_contract_address():
    token = ContractBinding(ContractRole.token, ContractArtifact("SNPCToken", TOKEN_ABI, BYTECODE))
    ledger, _ = make_ledger({
        "eth_sendTransaction": TX_HASH,
        "eth_getTransactionReceipt": {"status": "0x1", "contractAddress": None},
    })
    async with ledger:
        with pytest.raises(TransactionFailedError, match="no contract address"):
            await ledger.deploy(token, 1000, 10, 20, 30, 40)


@pytest.mark.asyncio
async def test_check_network():
    ledger, _ = make_ledger({"eth_syncing": [False, {"startingBlock": "0x0", "currentBlock": "0x1"}]})
    async with ledger:
        await ledger.check_network()
        with pytest.raises(NetworkSyncError, match="pending synchronization"):
            await ledger.check_network()


@pytest.mark.asyncio
async def test_describe_node(caplog):
    ledger, _ = make_ledger({"web3_clientVersion": "Geth/v1.8.2", "net_version": "3"})
    with caplog.at_level(logging.INFO):
        async with ledger:
            await ledger.describe_node()
    assert "Geth/v1.8.2" in caplog.text
    assert "ROPSTEN" in caplog.text


@pytest.mark.asyncio
async def test_sign_returns_bytes():
    ledger, requests = make_ledger({"eth_sign": "0x" + "11" * 65})
    async with ledger:
        assert await ledger.sign(SENDER, b"\x22" * 32) == b"\x11" * 65
    assert requests[0]["params"] == [SENDER, "0x" + "22" * 32]


async def serve_ipc(path, reply, split_at):
    """Unix socket node that answers every request with ``reply`` sent in two writes."""

    async def handle(reader, writer):
        await reader.read(65536)
        writer.write(reply[:split_at])
        await writer.drain()
        await asyncio.sleep(0.05)
        writer.write(reply[split_at:])
        await writer.drain()
        writer.close()

    return await asyncio.start_unix_server(handle, path=str(path))


@pytest.mark.asyncio
async def test_ipc_reply_split_inside_multibyte_character(tmp_path):
    reply = json.dumps(
        {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "revert: café"}},
        ensure_ascii=False,
    ).encode("utf-8")
    split_at = reply.index("é".encode("utf-8")) + 1
    path = tmp_path / "node.ipc"
    server = await serve_ipc(path, reply, split_at)

    try:
        ledger = LedgerClient(IpcTransport(str(path)), SENDER, 4000000, 20 * 10 ** 9)
        async with ledger:
            with pytest.raises(RpcError, match="revert: café"):
                await ledger.request("eth_call")
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_ipc_result(tmp_path):
    reply = json.dumps({"jsonrpc": "2.0", "id": 1, "result": "Geth/v1.8.2"}).encode("utf-8")
    path = tmp_path / "node.ipc"
    server = await serve_ipc(path, reply, 10)

    try:
        ledger = LedgerClient(IpcTransport(str(path)), SENDER, 4000000, 20 * 10 ** 9)
        async with ledger:
            assert await ledger.node_version() == "Geth/v1.8.2"
    finally:
        server.close()
        await server.wait_closed()
