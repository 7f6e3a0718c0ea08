import json

from eth_ico_admin.errors import NetworkSyncError, TransactionFailedError
from eth_ico_admin.schemas import ContractRole, ICOState

SENDER = "0x1111111111111111111111111111111111111111"
TEAM_WALLET = "0x2222222222222222222222222222222222222222"
INVESTOR = "0x3333333333333333333333333333333333333333"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _fn(name, inputs=(), outputs=()):
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": f"_{i}", "type": t} for i, t in enumerate(inputs)],
        "outputs": [{"name": "", "type": t} for t in outputs],
    }


def _ctor(*inputs):
    return {"type": "constructor", "inputs": [{"name": f"_{i}", "type": t} for i, t in enumerate(inputs)]}


OWNABLE_ABI = [
    _fn("owner", outputs=["address"]),
    _fn("transferOwnership", ["address"]),
]

TOKEN_ABI = OWNABLE_ABI + [
    _ctor("uint256", "uint256", "uint256", "uint256", "uint256"),
    _fn("symbol", outputs=["string"]),
    _fn("totalSupply", outputs=["uint256"]),
    _fn("availableSupply", outputs=["uint256"]),
    _fn("locked", outputs=["bool"]),
    _fn("ico", outputs=["address"]),
    _fn("balanceOf", ["address"], ["uint256"]),
    _fn("getReservedTokens", ["uint8"], ["uint256"]),
    _fn("changeICO", ["address"]),
    _fn("lock"),
    _fn("unlock"),
    _fn("burnRemain"),
    _fn("burnTokens", ["uint256"]),
    _fn("assignReserved", ["address", "uint8", "uint256"]),
    _fn("selfDestruct", ["uint8", "bytes32", "bytes32"]),
]

ICO_ABI = OWNABLE_ABI + [
    _ctor("address", "address", "uint256", "uint256", "uint256", "uint256"),
    _fn("state", outputs=["uint8"]),
    _fn("teamWallet", outputs=["address"]),
    _fn("collectedWei", outputs=["uint256"]),
    _fn("tokensSold", outputs=["uint256"]),
    _fn("investorCount", outputs=["uint256"]),
    _fn("lowCapTokens", outputs=["uint256"]),
    _fn("hardCapTokens", outputs=["uint256"]),
    _fn("lowCapTxWei", outputs=["uint256"]),
    _fn("hardCapTxWei", outputs=["uint256"]),
    _fn("whitelistEnabled", outputs=["bool"]),
    _fn("whitelisted", ["address"], ["bool"]),
    _fn("getInvestments", ["address"], ["uint256"]),
    _fn("start", ["uint256"]),
    _fn("suspend"),
    _fn("resume"),
    _fn("touch"),
    _fn("terminate"),
    _fn("tune", ["uint256", "uint256", "uint256", "uint256", "uint256"]),
    _fn("transferTokens", ["address", "uint256"]),
    _fn("whitelist", ["address"]),
    _fn("blacklist", ["address"]),
    _fn("enableWhitelist"),
    _fn("disableWhitelist"),
]

BYTECODE = "0x6060604052"


def write_artifacts(directory):
    directory.mkdir(parents=True, exist_ok=True)
    token = directory / "SNPCToken.json"
    token.write_text(json.dumps({"contractName": "SNPCToken", "abi": TOKEN_ABI, "bytecode": BYTECODE}))
    ico = directory / "SNPCICO.json"
    # older truffle builds name the bytecode field unlinked_binary
    ico.write_text(json.dumps({"contractName": "SNPCICO", "abi": ICO_ABI, "unlinked_binary": BYTECODE}))
    return token, ico


def config_text(tmp_path, stage1=True):
    token_artifact, ico_artifact = write_artifacts(tmp_path / "build")
    text = f"""
ethereum:
  endpoint: http://127.0.0.1:8545
  from: "{SENDER}"
  gas: 4000000
  gasPrice: "20e9"
  lockfilesDir: {tmp_path}/lockfiles
  receiptPollInterval: 0.01
  SNPCToken:
    schema: {token_artifact}
    totalSupplyTokens: 1000
    reservedTeamTokens: 10
    reservedBountyTokens: 20
    reservedPartnersTokens: 30
    reservedReserveTokens: 40
  SNPCPreICO:
    schema: {ico_artifact}
    teamWallet: "{TEAM_WALLET}"
    lowCapTokens: "100e18"
    hardCapTokens: "200e18"
    lowCapTxWei: "1e17"
    hardCapTxWei: "1e21"
"""
    if stage1:
        text += f"""
  SNPCICOStage1:
    schema: {ico_artifact}
    teamWallet: "{TEAM_WALLET}"
    lowCapWei: "1000e18"
    hardCapWei: "5000e18"
    lowCapTxWei: "1e17"
"""
    return text


# --- In-memory ledger ---

ONE_TOKEN = 10 ** 18


def _revert(reason):
    raise TransactionFailedError(f"Transaction reverted: {reason}")


class FakeToken:
    """Models the token contract; method names mirror the ABI."""

    def __init__(self, ledger, total, team, bounty, partners, reserve, stacking=0):
        self.ledger = ledger
        self.address = None
        self.owner_address = ledger.sender
        self.total = total * ONE_TOKEN
        self.reserved = {
            0x1: team * ONE_TOKEN,
            0x2: bounty * ONE_TOKEN,
            0x4: partners * ONE_TOKEN,
            0x8: reserve * ONE_TOKEN,
            0x10: stacking * ONE_TOKEN,
        }
        self.available = self.total - sum(self.reserved.values())
        self.ico_address = ZERO_ADDRESS
        self.is_locked = False
        self.balances = {}
        self.destroyed = False

    def owner(self):
        return self.owner_address

    def transferOwnership(self, new_owner):
        self.owner_address = new_owner

    def symbol(self):
        return "SNPC"

    def totalSupply(self):
        return self.total

    def availableSupply(self):
        return self.available

    def locked(self):
        return self.is_locked

    def ico(self):
        return self.ico_address

    def balanceOf(self, holder):
        return self.balances.get(holder.lower(), 0)

    def getReservedTokens(self, group_id):
        return self.reserved[group_id]

    def changeICO(self, ico_address):
        self.ico_address = ico_address

    def lock(self):
        self.is_locked = True

    def unlock(self):
        self.is_locked = False

    def burnRemain(self):
        self.total -= self.available
        self.available = 0

    def burnTokens(self, amount):
        if amount > self.available:
            _revert("burn exceeds available supply")
        self.total -= amount
        self.available -= amount

    def assignReserved(self, to, group_id, amount):
        if group_id not in self.reserved or amount == 0 or self.reserved[group_id] < amount:
            _revert("reserved group exhausted")
        self.reserved[group_id] -= amount
        self.balances[to.lower()] = self.balances.get(to.lower(), 0) + amount

    def credit(self, to, amount):
        if amount > self.available:
            _revert("not enough tokens")
        self.available -= amount
        self.balances[to.lower()] = self.balances.get(to.lower(), 0) + amount

    def selfDestruct(self, v, r, s):
        self.destroyed = True


class FakeIco:
    """Models one ICO stage contract."""

    def __init__(self, ledger, token, team_wallet, low_cap, hard_cap, low_cap_tx, hard_cap_tx):
        self.ledger = ledger
        self.address = None
        self.owner_address = ledger.sender
        self.token_address = token
        self.wallet = team_wallet
        self.low_cap = low_cap
        self.hard_cap = hard_cap
        self.low_cap_tx = low_cap_tx
        self.hard_cap_tx = hard_cap_tx
        self.state_value = ICOState.Inactive
        self.end = 0
        self.sold = 0
        self.investments = {}
        self.whitelist_on = False
        self.whitelist_set = set()

    @property
    def token(self):
        return self.ledger.at(self.token_address)

    def owner(self):
        return self.owner_address

    def transferOwnership(self, new_owner):
        self.owner_address = new_owner

    def state(self):
        return int(self.state_value)

    def teamWallet(self):
        return self.wallet

    def collectedWei(self):
        return 0

    def tokensSold(self):
        return self.sold

    def investorCount(self):
        return len(self.investments)

    def lowCapTokens(self):
        return self.low_cap

    def hardCapTokens(self):
        return self.hard_cap

    def lowCapTxWei(self):
        return self.low_cap_tx

    def hardCapTxWei(self):
        return self.hard_cap_tx

    def whitelistEnabled(self):
        return self.whitelist_on

    def whitelisted(self, address):
        return address.lower() in self.whitelist_set

    def getInvestments(self, investor):
        return self.investments.get(investor.lower(), 0)

    def start(self, end):
        if self.state_value != ICOState.Inactive:
            _revert("not inactive")
        if self.token.ico_address.lower() != self.address.lower():
            _revert("token is not bound to this ico")
        self.end = end
        self.state_value = ICOState.Active

    def suspend(self):
        if self.state_value != ICOState.Active:
            _revert("not active")
        self.state_value = ICOState.Suspended

    def resume(self):
        if self.state_value != ICOState.Suspended:
            _revert("not suspended")
        self.state_value = ICOState.Active

    def touch(self):
        if self.state_value == ICOState.Active and self.ledger.block_time >= self.end:
            self.state_value = ICOState.Completed if self.sold >= self.low_cap else ICOState.NotCompleted

    def terminate(self):
        if self.state_value == ICOState.Terminated:
            _revert("already terminated")
        self.state_value = ICOState.Terminated

    def tune(self, end, low_cap, hard_cap, low_cap_tx, hard_cap_tx):
        if self.state_value != ICOState.Suspended:
            _revert("not suspended")
        if end:
            self.end = end
        if low_cap:
            self.low_cap = low_cap
        if hard_cap:
            self.hard_cap = hard_cap
        if low_cap_tx:
            self.low_cap_tx = low_cap_tx
        if hard_cap_tx:
            self.hard_cap_tx = hard_cap_tx

    def transferTokens(self, to, amount):
        if self.state_value != ICOState.Active:
            _revert("not active")
        self.token.credit(to, amount)
        self.sold += amount
        self.investments.setdefault(to.lower(), 0)

    def whitelist(self, address):
        self.whitelist_set.add(address.lower())

    def blacklist(self, address):
        self.whitelist_set.discard(address.lower())

    def enableWhitelist(self):
        self.whitelist_on = True

    def disableWhitelist(self):
        self.whitelist_on = False


class FakeLedger:
    """Stands in for LedgerClient: same coroutine surface, contracts kept in memory."""

    def __init__(self, sender=SENDER):
        self.sender = sender
        self.contracts = {}
        self.transactions = []
        self.deployments = []
        self.syncing = False
        self.block_time = 0
        self._next_address = 0x1000

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    def at(self, address):
        return self.contracts[address.lower()]

    async def describe_node(self):
        return None

    async def check_network(self):
        if self.syncing:
            raise NetworkSyncError("Ethereum network client in pending synchronization, try again later")

    async def deploy(self, binding, *args):
        address = "0x" + format(self._next_address, "040x")
        self._next_address += 1
        if binding.role == ContractRole.token:
            contract = FakeToken(self, *args)
        else:
            contract = FakeIco(self, *args)
        contract.address = address
        self.contracts[address] = contract
        self.deployments.append((binding.name, args))
        return address

    async def call(self, binding, function, *args):
        return getattr(self.at(binding.address), function)(*args)

    async def transact(self, binding, function, *args):
        self.transactions.append((binding.name, function, args))
        getattr(self.at(binding.address), function)(*args)
        return {"status": "0x1", "blockNumber": hex(len(self.transactions))}

    async def sign(self, account, data):
        raise AssertionError("node signing is not modelled")


class Confirmer:
    """Scripted operator answers; records every question asked."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.questions = []

    async def __call__(self, question, expected):
        self.questions.append((question, expected))
        answer = self.answers.pop(0) if self.answers else ""
        return answer == expected
