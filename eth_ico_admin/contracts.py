"""
Contract Bindings, Typed Proxies and the Contract Registry

A ContractBinding couples a contract role with its truffle artifact (ABI and
bytecode) and, once deployed, its on-chain address. Bindings know how to encode
calls and constructor arguments and how to decode return values; the
LedgerClient moves the encoded payloads over JSON-RPC.

TokenContract and IcoContract give the orchestrator a typed call surface over
the token and ICO stage contracts. The ContractRegistry maps each ContractRole
to its binding and writes address changes through to the AddressStore.
"""
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import EncodingError
from eth_utils import is_address, keccak, to_checksum_address

from eth_ico_admin.address_store import AddressStore
from eth_ico_admin.errors import ConfigurationError, NotDeployedError, ValidationError
from eth_ico_admin.schemas import ContractRole, IcoAdminSettings, ICOState

logger = logging.getLogger(__name__)


def normalize_address(value: Optional[str], name: str = "address") -> str:
    """Validate a hex address argument and return it checksummed."""
    if not value or not is_address(value):
        raise ValidationError(f"Invalid {name}: {value!r} is not an ethereum address")
    return to_checksum_address(value)


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive comparison of two hex addresses."""
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


def _strip_hex(data: str) -> str:
    return data[2:] if data.startswith("0x") else data


class ContractArtifact:
    """ABI and bytecode of one contract, loaded from a truffle build artifact."""

    def __init__(self, name: str, abi: List[Dict[str, Any]], bytecode: str = ""):
        self.name = name
        self.abi = abi
        self.bytecode = bytecode

    @classmethod
    def load(cls, name: str, path: str) -> "ContractArtifact":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Unable to load {name} artifact from {path}: {e}")

        abi = data.get("abi")
        if not isinstance(abi, list):
            raise ConfigurationError(f"Artifact {path} for {name} has no 'abi' list")
        bytecode = data.get("bytecode") or data.get("unlinked_binary") or ""
        return cls(name, abi, bytecode)

    def functions(self, name: str) -> List[Dict[str, Any]]:
        return [entry for entry in self.abi if entry.get("type") == "function" and entry.get("name") == name]

    def constructor(self) -> Optional[Dict[str, Any]]:
        for entry in self.abi:
            if entry.get("type") == "constructor":
                return entry
        return None


def _types(params: Iterable[Dict[str, Any]]) -> List[str]:
    return [p["type"] for p in params]


def _encode_args(label: str, arg_types: List[str], args: Sequence[Any]) -> bytes:
    try:
        return encode(arg_types, list(args))
    except EncodingError as e:
        raise ValidationError(f"Invalid arguments for {label}: {e}")


class ContractBinding:
    """A contract role bound to its artifact and (optional) deployed address."""

    def __init__(self, role: ContractRole, artifact: ContractArtifact, address: Optional[str] = None):
        self.role = role
        self.artifact = artifact
        self.address = address

    @property
    def name(self) -> str:
        return self.role.value

    @property
    def deployed(self) -> bool:
        return bool(self.address)

    def function_abi(self, function: str, arg_count: int) -> Dict[str, Any]:
        candidates = [f for f in self.artifact.functions(function) if len(f.get("inputs", [])) == arg_count]
        if not candidates:
            raise ConfigurationError(f"{self.name} ABI has no function {function} taking {arg_count} argument(s)")
        return candidates[0]

    def encode_call(self, function: str, args: Sequence[Any]) -> str:
        entry = self.function_abi(function, len(args))
        arg_types = _types(entry.get("inputs", []))
        selector = keccak(text=f"{function}({','.join(arg_types)})")[:4]
        return "0x" + (selector + _encode_args(f"{self.name}.{function}", arg_types, args)).hex()

    def decode_result(self, function: str, raw: Optional[str]) -> Any:
        entries = self.artifact.functions(function)
        outputs = _types(entries[0].get("outputs", [])) if entries else []
        if not outputs:
            return None
        values = decode(outputs, bytes.fromhex(_strip_hex(raw or "0x")))
        return values[0] if len(values) == 1 else tuple(values)

    def encode_constructor(self, args: Sequence[Any]) -> str:
        if not self.artifact.bytecode:
            raise ConfigurationError(f"{self.name} artifact has no bytecode, cannot deploy")
        constructor = self.artifact.constructor()
        arg_types = _types(constructor.get("inputs", [])) if constructor else []
        if len(arg_types) != len(args):
            raise ConfigurationError(
                f"{self.name} constructor takes {len(arg_types)} argument(s), {len(args)} configured"
            )
        return "0x" + _strip_hex(self.artifact.bytecode) + _encode_args(f"{self.name} constructor", arg_types, args).hex()


class ContractProxy:
    """Base for typed contract proxies: routes calls through the ledger client."""

    def __init__(self, binding: ContractBinding, ledger):
        if not binding.deployed:
            raise NotDeployedError(f"Contract '{binding.name}' is not deployed")
        self.binding = binding
        self.ledger = ledger

    @property
    def address(self) -> str:
        return self.binding.address

    @property
    def name(self) -> str:
        return self.binding.name

    async def _call(self, function: str, *args) -> Any:
        return await self.ledger.call(self.binding, function, *args)

    async def _transact(self, function: str, *args) -> Dict[str, Any]:
        return await self.ledger.transact(self.binding, function, *args)

    async def owner(self) -> str:
        return await self._call("owner")

    async def transfer_ownership(self, new_owner: str):
        return await self._transact("transferOwnership", new_owner)


class TokenContract(ContractProxy):
    """Fixed-supply ERC20 token with reserved groups, lock and self-destruct."""

    async def symbol(self) -> str:
        return await self._call("symbol")

    async def total_supply(self) -> int:
        return await self._call("totalSupply")

    async def available_supply(self) -> int:
        return await self._call("availableSupply")

    async def locked(self) -> bool:
        return await self._call("locked")

    async def ico(self) -> str:
        return await self._call("ico")

    async def balance_of(self, owner: str) -> int:
        return await self._call("balanceOf", owner)

    async def get_reserved_tokens(self, group_id: int) -> int:
        return await self._call("getReservedTokens", group_id)

    async def change_ico(self, ico_address: str):
        return await self._transact("changeICO", ico_address)

    async def lock(self):
        return await self._transact("lock")

    async def unlock(self):
        return await self._transact("unlock")

    async def burn_remain(self):
        return await self._transact("burnRemain")

    async def burn_tokens(self, amount: int):
        return await self._transact("burnTokens", amount)

    async def assign_reserved(self, to: str, group_id: int, amount: int):
        return await self._transact("assignReserved", to, group_id, amount)

    async def self_destruct(self, v: int, r: bytes, s: bytes):
        return await self._transact("selfDestruct", v, r, s)


class IcoContract(ContractProxy):
    """One ICO stage contract."""

    async def state(self) -> ICOState:
        return ICOState.from_value(await self._call("state"))

    async def team_wallet(self) -> str:
        return await self._call("teamWallet")

    async def collected_wei(self) -> int:
        return await self._call("collectedWei")

    async def tokens_sold(self) -> int:
        return await self._call("tokensSold")

    async def investor_count(self) -> int:
        return await self._call("investorCount")

    async def low_cap_tokens(self) -> int:
        return await self._call("lowCapTokens")

    async def hard_cap_tokens(self) -> int:
        return await self._call("hardCapTokens")

    async def low_cap_tx_wei(self) -> int:
        return await self._call("lowCapTxWei")

    async def hard_cap_tx_wei(self) -> int:
        return await self._call("hardCapTxWei")

    async def whitelist_enabled(self) -> bool:
        return await self._call("whitelistEnabled")

    async def whitelisted(self, address: str) -> bool:
        return await self._call("whitelisted", address)

    async def get_investments(self, investor: str) -> int:
        return await self._call("getInvestments", investor)

    async def start(self, end: int):
        return await self._transact("start", end)

    async def suspend(self):
        return await self._transact("suspend")

    async def resume(self):
        return await self._transact("resume")

    async def touch(self):
        return await self._transact("touch")

    async def terminate(self):
        return await self._transact("terminate")

    async def tune(self, end: int, low_cap: int, hard_cap: int, low_tx_cap: int, hard_tx_cap: int):
        return await self._transact("tune", end, low_cap, hard_cap, low_tx_cap, hard_tx_cap)

    async def transfer_tokens(self, to: str, amount: int):
        return await self._transact("transferTokens", to, amount)

    async def whitelist(self, address: str):
        return await self._transact("whitelist", address)

    async def blacklist(self, address: str):
        return await self._transact("blacklist", address)

    async def enable_whitelist(self):
        return await self._transact("enableWhitelist")

    async def disable_whitelist(self):
        return await self._transact("disableWhitelist")


class ContractRegistry:
    """Bindings for every configured contract role, backed by the address store."""

    def __init__(self, bindings: Dict[ContractRole, ContractBinding], store: AddressStore):
        self._bindings = bindings
        self.store = store

    @classmethod
    def load(cls, settings: IcoAdminSettings, store: AddressStore) -> "ContractRegistry":
        bindings: Dict[ContractRole, ContractBinding] = {}
        for role in ContractRole:
            section = settings.ethereum.contract_config(role)
            if section is None:
                continue
            artifact = ContractArtifact.load(role.value, section.artifact)
            address = store.read(role.value)
            bindings[role] = ContractBinding(role, artifact, address)
            if address:
                logger.info(f"Loaded {role.value} instance at: {address}")
        return cls(bindings, store)

    def is_configured(self, role: ContractRole) -> bool:
        return role in self._bindings

    def get(self, role: ContractRole) -> Optional[ContractBinding]:
        return self._bindings.get(role)

    def address(self, role: ContractRole) -> Optional[str]:
        binding = self._bindings.get(role)
        return binding.address if binding else None

    def deployed_roles(self) -> List[ContractRole]:
        return [role for role, binding in self._bindings.items() if binding.deployed]

    def set_address(self, role: ContractRole, address: str) -> None:
        self._bindings[role].address = address
        self.store.write(role.value, address)

    def clear_address(self, role: ContractRole) -> None:
        binding = self._bindings.get(role)
        if binding is not None:
            binding.address = None
        self.store.delete(role.value)

    def find_by_address(self, address: str) -> Optional[Tuple[ContractRole, ContractBinding]]:
        for role, binding in self._bindings.items():
            if binding.deployed and same_address(binding.address, address):
                return role, binding
        return None
