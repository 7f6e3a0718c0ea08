"""
Ledger Client - JSON-RPC access to an Ethereum node

This module wraps the connection to the blockchain node used by the admin CLI.
It exposes read-only ``call`` and state-changing ``transact`` / ``deploy``
operations against contract bindings, plus the handful of node queries the
orchestrator needs (version, network, sync status, message signing).

Transports:
- http:// and https:// endpoints use an ``httpx.AsyncClient``
- ipc:// endpoints talk newline-free JSON over a unix domain socket

Transactions are sent with ``eth_sendTransaction`` from the configured default
account (which must be unlocked on the node) and are always awaited until a
receipt is available. There is no timeout on receipt polling: a transaction
that never gets mined blocks the command.
"""
import asyncio
import codecs
import itertools
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from eth_ico_admin.errors import NetworkSyncError, RpcError, TransactionFailedError

logger = logging.getLogger(__name__)

NETWORK_NAMES = {
    "1": "MAINNET",
    "2": "MORDEN",
    "3": "ROPSTEN",
}


class HttpTransport:
    """Posts JSON-RPC payloads to an HTTP endpoint."""

    def __init__(self, endpoint: str, client: Optional[httpx.AsyncClient] = None):
        self.endpoint = endpoint
        self._client = client
        self._owns_client = client is None

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self._client is None:
            await self.open()
        response = await self._client.post(self.endpoint, json=payload)
        response.raise_for_status()
        return response.json()


class IpcTransport:
    """Exchanges JSON-RPC payloads over a unix domain socket (geth/parity IPC)."""

    def __init__(self, path: str):
        self.path = path
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._decoder = json.JSONDecoder()

    async def open(self) -> None:
        if self._writer is None:
            self._reader, self._writer = await asyncio.open_unix_connection(self.path)

    async def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            await self._writer.wait_closed()
            self._reader = self._writer = None

    async def send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        await self.open()
        self._writer.write(json.dumps(payload).encode("utf-8"))
        await self._writer.drain()

        # a multi-byte character may be split across reads
        text = codecs.getincrementaldecoder("utf-8")()
        buffer = ""
        while True:
            chunk = await self._reader.read(65536)
            if not chunk:
                raise ConnectionError(f"IPC connection closed by {self.path}")
            buffer += text.decode(chunk)
            try:
                message, _ = self._decoder.raw_decode(buffer.lstrip())
                return message
            except json.JSONDecodeError:
                continue


def make_transport(endpoint: str):
    """Pick the transport for an endpoint URL."""
    endpoint = endpoint.strip()
    if endpoint.startswith("ipc://"):
        logger.info(f"Using IPC provider for {endpoint}")
        return IpcTransport(endpoint[len("ipc://"):])
    if endpoint.startswith("http"):
        logger.info(f"Using HTTP provider for: {endpoint}")
        return HttpTransport(endpoint)
    raise ValueError(f"Unknown web3 endpoint: '{endpoint}'")


class LedgerClient:
    """
    Async JSON-RPC client bound to a default sender and gas settings.

    Use as an async context manager so the underlying connection is closed:

        async with LedgerClient(transport, sender, gas, gas_price) as ledger:
            state = await ledger.call(binding, "state")
    """

    def __init__(self, transport, sender: str, gas: int, gas_price: int, poll_interval: float = 1.0):
        self.transport = transport
        self.sender = sender
        self.gas = gas
        self.gas_price = gas_price
        self.poll_interval = poll_interval
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "LedgerClient":
        await self.transport.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.transport.close()

    # --- Raw RPC ---

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        logger.debug(f"RPC -> {method} {params}")
        data = await self.transport.send(payload)
        if data.get("error"):
            raise RpcError(method, data["error"])
        return data.get("result")

    # --- Node queries ---

    async def node_version(self) -> str:
        return await self.request("web3_clientVersion")

    async def network_id(self) -> str:
        return str(await self.request("net_version"))

    async def is_syncing(self) -> bool:
        return bool(await self.request("eth_syncing"))

    async def describe_node(self) -> None:
        """Logs node version and the network it is connected to."""
        node = await self.node_version()
        logger.info(f"web3 node: {node}")
        net_id = await self.network_id()
        logger.info(f"w3 connected to >>>> {NETWORK_NAMES.get(net_id, 'UNKNOWN')} <<<< (network id {net_id})")

    async def check_network(self) -> None:
        """Fail if the node is still synchronizing."""
        if await self.is_syncing():
            raise NetworkSyncError("Ethereum network client in pending synchronization, try again later")

    # --- Contract access ---

    def _tx_defaults(self) -> Dict[str, str]:
        return {"from": self.sender, "gas": hex(self.gas), "gasPrice": hex(self.gas_price)}

    async def call(self, binding, function: str, *args) -> Any:
        """Read-only call of ``function`` on a deployed binding."""
        data = binding.encode_call(function, args)
        raw = await self.request("eth_call", [{"from": self.sender, "to": binding.address, "data": data}, "latest"])
        return binding.decode_result(function, raw)

    async def transact(self, binding, function: str, *args) -> Dict[str, Any]:
        """Send a transaction calling ``function`` and wait for its receipt."""
        tx = self._tx_defaults()
        tx["to"] = binding.address
        tx["data"] = binding.encode_call(function, args)
        tx_hash = await self.request("eth_sendTransaction", [tx])
        logger.info(f"{binding.name}.{function} sent, tx: {tx_hash}")
        return await self.wait_for_receipt(tx_hash)

    async def deploy(self, binding, *args) -> str:
        """Deploy the binding's bytecode with constructor ``args``; returns the new address."""
        tx = self._tx_defaults()
        tx["data"] = binding.encode_constructor(args)
        tx_hash = await self.request("eth_sendTransaction", [tx])
        logger.info(f"{binding.name} deployment sent, tx: {tx_hash}")
        receipt = await self.wait_for_receipt(tx_hash)
        address = receipt.get("contractAddress")
        if not address:
            raise TransactionFailedError(f"{binding.name} deployment receipt has no contract address (tx {tx_hash})")
        return address

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """Poll until the transaction is mined; raise if it was reverted."""
        while True:
            receipt = await self.request("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                break
            await asyncio.sleep(self.poll_interval)

        status = receipt.get("status")
        if status is not None and int(status, 16) == 0:
            logger.error(f"Transaction {tx_hash} failed in block {receipt.get('blockNumber')}")
            raise TransactionFailedError(f"Transaction {tx_hash} failed (reverted)")
        logger.info(f"Transaction {tx_hash} mined in block {receipt.get('blockNumber')}")
        return receipt

    async def sign(self, account: str, data: bytes) -> bytes:
        """Sign ``data`` with ``eth_sign`` using an account unlocked on the node."""
        signature = await self.request("eth_sign", [account, "0x" + data.hex()])
        return bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
