"""
ICO Admin Command Dispatcher

Parses the command line, builds the admin session (settings, ledger client,
contract registry, confirmation prompt) and runs exactly one orchestrator
operation. Results are printed to stdout as indented JSON; logs and errors go
to stderr.

Exit codes:
    0: the command completed
    1: usage error, configuration or precondition failure, declined
       confirmation, or an error reported by the node
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional

from eth_ico_admin.address_store import AddressStore
from eth_ico_admin.config import load_settings
from eth_ico_admin.contracts import ContractRegistry
from eth_ico_admin.errors import ConfirmationDeclinedError, IcoAdminError, UsageError
from eth_ico_admin.ledger_client import LedgerClient, make_transport
from eth_ico_admin.orchestrator import CONFIRM_YES, AdminSession, ConfirmFn, IcoOrchestrator
from eth_ico_admin.schemas import IcoAdminSettings, IcoStage

logger = logging.getLogger(__name__)

Operation = Callable[[IcoOrchestrator], Awaitable[Dict[str, Any]]]

USAGE = """Usage:
\teth-ico-admin
\t[-c|--config <config yaml file>]
\t[-v|--verbose]
\t[-h|--help]
\t<command> [command options]
Commands:
\tdeploy                                       - Deploy SNPC token and Pre-ICO/ICO smart contracts
\tstatus                                       - Get contracts status
\tico <stage> state                            - Get ico state
\tico <stage> start <end>                      - Start ICO
\tico <stage> touch                            - Touch ICO. Recalculate ICO state based on current block time.
\tico <stage> suspend                          - Suspend ICO (only if ICO is Active)
\tico <stage> resume                           - Resume ICO (only if ICO is Suspended)
\tico <stage> terminate                        - Terminate ICO (can not be activate)
\tico <stage> transfer-tokens <addr> <amount>  - Transfer tokens to investor (fiat sales)
\tico <stage> investments <addr>               - Total investments from <addr>
\tico <stage> owner <addr>                     - Transfer ownership of ICO contract to <addr>
\tico <stage> tune <end> <lowcap> <hardcap> [<lowtxcap> <hardtxcap>]
\t                                             - Set end date/low-cap/hard-cap for ICO (Only in suspended state)
\t                                               Eg: eth-ico-admin ico pre tune '2018-03-20' '3000e18' '30000e18'
\ttoken balance <addr>                  - Get token balance for address
\ttoken lock                            - Lock token contract (no token transfers are allowed)
\ttoken unlock                          - Unlock token contract
\ttoken locked                          - Get token lock status
\ttoken ico [addr]                      - Change ICO contract for token (if <addr> specified) or view current ICO contract for token
\ttoken burn-unsold                     - Burning of unsold tokens
\ttoken burn <tokens>                   - Burn <tokens> (without decimals) from the available supply
\ttoken selfdestruct                    - Destroy the token contract (owner signature required)
\tgroup reserve <addr> <group> <tokens> - Reserve tokens (without decimals) to <addr> for <group>
\tgroup reserved <group>                - Get number of remaining tokens for <group>
\twl <stage> status                     - Check if whitelisting enabled
\twl <stage> add <addr>                 - Add <addr> to ICO whitelist
\twl <stage> remove <addr>              - Remove <addr> from ICO whitelist
\twl <stage> disable                    - Disable address whitelisting for ICO
\twl <stage> enable                     - Enable address whitelisting for ICO
\twl <stage> is <addr>                  - Check if given <addr> in whitelist

\t\t <stage> - ICO Stage: pre|stage1|stage2|stage3
\t\t <group> - Token reservation group: team|bounty|partners|reserve|stacking-bonus
\t\t <addr> - Ethereum address
"""


class ArgCursor:
    """Hands out positional command arguments left to right."""

    def __init__(self, args: List[str]):
        self._args = [a.strip() for a in args]

    def pull(self, name: str) -> str:
        if not self._args or not self._args[0]:
            raise UsageError(f"Missing required {name} argument for command")
        return self._args.pop(0)

    def pull_optional(self, default: Optional[str] = None) -> Optional[str]:
        if self._args and self._args[0]:
            return self._args.pop(0)
        return default


class _Parser(argparse.ArgumentParser):
    def error(self, message):
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog="eth-ico-admin", add_help=False, usage=USAGE)
    parser.add_argument("-c", "--config", help="Path to the YAML configuration file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose (debug) logging")
    parser.add_argument("-h", "--help", action="store_true", help="Print usage and exit")
    parser.add_argument("command", nargs="?")
    parser.add_argument("args", nargs=argparse.REMAINDER)
    return parser


# --- Command handlers ---
# Each handler consumes its arguments up front and returns the operation to run,
# so usage errors are reported before connecting to the node.

def _deploy(args: ArgCursor) -> Operation:
    return lambda o: o.deploy()


def _status(args: ArgCursor) -> Operation:
    return lambda o: o.status()


def _ico(args: ArgCursor) -> Operation:
    stage = IcoStage.from_name(args.pull("stage"))
    sub = args.pull("ico sub-command")
    if sub == "state":
        return lambda o: o.ico_state(stage)
    if sub == "start":
        end = args.pull("end")
        return lambda o: o.start(stage, end)
    if sub == "touch":
        return lambda o: o.touch(stage)
    if sub == "suspend":
        return lambda o: o.suspend(stage)
    if sub == "resume":
        return lambda o: o.resume(stage)
    if sub == "terminate":
        return lambda o: o.terminate(stage)
    if sub == "transfer-tokens":
        investor = args.pull("addr")
        amount = args.pull("amount")
        return lambda o: o.transfer_tokens(stage, investor, amount)
    if sub == "investments":
        investor = args.pull("addr")
        return lambda o: o.investments(stage, investor)
    if sub == "owner":
        new_owner = args.pull("addr")
        return lambda o: o.transfer_ownership(stage, new_owner)
    if sub == "tune":
        end = args.pull("end")
        low_cap = args.pull("lowcap")
        hard_cap = args.pull("hardcap")
        low_tx_cap = args.pull_optional("0")
        hard_tx_cap = args.pull_optional("0")
        return lambda o: o.tune(stage, end, low_cap, hard_cap, low_tx_cap, hard_tx_cap)
    raise UsageError(f"Unknown ico sub-command: {sub}")


def _token(args: ArgCursor) -> Operation:
    sub = args.pull("token sub-command")
    if sub == "balance":
        address = args.pull("addr")
        return lambda o: o.balance(address)
    if sub == "lock":
        return lambda o: o.lock()
    if sub == "unlock":
        return lambda o: o.unlock()
    if sub == "locked":
        return lambda o: o.locked()
    if sub == "ico":
        ico_address = args.pull_optional()
        return lambda o: o.token_ico(ico_address)
    if sub == "burn-unsold":
        return lambda o: o.burn_unsold()
    if sub == "burn":
        tokens = args.pull("tokens")
        return lambda o: o.burn(tokens)
    if sub == "selfdestruct":
        return lambda o: o.selfdestruct()
    raise UsageError(f"Unknown token sub-command: {sub}")


def _group(args: ArgCursor) -> Operation:
    sub = args.pull("group sub-command")
    if sub == "reserve":
        address = args.pull("addr")
        group = args.pull("group")
        tokens = args.pull("tokens")
        return lambda o: o.reserve(address, group, tokens)
    if sub == "reserved":
        group = args.pull("group")
        return lambda o: o.reserved(group)
    raise UsageError(f"Unknown group sub-command: {sub}")


def _whitelist(args: ArgCursor) -> Operation:
    stage = IcoStage.from_name(args.pull("stage"))
    sub = args.pull("whitelist sub-command")
    if sub == "status":
        return lambda o: o.whitelist_status(stage)
    if sub == "add":
        address = args.pull("address")
        return lambda o: o.whitelist_add(stage, address)
    if sub == "remove":
        address = args.pull("address")
        return lambda o: o.whitelist_remove(stage, address)
    if sub == "disable":
        return lambda o: o.whitelist_disable(stage)
    if sub == "enable":
        return lambda o: o.whitelist_enable(stage)
    if sub == "is":
        address = args.pull("address")
        return lambda o: o.whitelisted(stage, address)
    raise UsageError(f"Unknown whitelist sub-command: {sub}")


HANDLERS: Dict[str, Callable[[ArgCursor], Operation]] = {
    "deploy": _deploy,
    "status": _status,
    "ico": _ico,
    "token": _token,
    "group": _group,
    "wl": _whitelist,
}


def parse_command(command: str, args: List[str]) -> Operation:
    handler = HANDLERS.get(command)
    if handler is None:
        raise UsageError(f"Invalid command specified: '{command}'")
    return handler(ArgCursor(args))


# --- Session ---

async def prompt_confirm(question: str, expected: str) -> bool:
    """Ask on stderr and read one line from stdin; only the exact expected text confirms."""
    hint = "YES/no" if expected == CONFIRM_YES else f"type '{expected}' to confirm"
    sys.stderr.write(f"{question} [{hint}]: ")
    sys.stderr.flush()
    answer = await asyncio.to_thread(sys.stdin.readline)
    return answer.strip() == expected


def open_ledger(settings: IcoAdminSettings) -> LedgerClient:
    eth = settings.ethereum
    return LedgerClient(
        make_transport(eth.endpoint),
        eth.sender,
        eth.gas,
        eth.gas_price,
        poll_interval=eth.receipt_poll_interval,
    )


async def execute(
    settings: IcoAdminSettings,
    operation: Operation,
    confirm: ConfirmFn = prompt_confirm,
    ledger_factory: Callable[[IcoAdminSettings], Any] = open_ledger,
) -> Dict[str, Any]:
    """Build the session, check the node and run one operation."""
    registry = ContractRegistry.load(settings, AddressStore(settings.ethereum.lockfiles_dir))
    async with ledger_factory(settings) as ledger:
        orchestrator = IcoOrchestrator(AdminSession(settings, ledger, registry, confirm))
        await ledger.describe_node()
        await orchestrator.check_network()
        return await operation(orchestrator)


def to_json(value: Any) -> Any:
    """Integers become decimal strings so base-unit amounts survive JSON consumers."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, bytes):
        return "0x" + value.hex()
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    return value


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _usage(error: Optional[str] = None) -> None:
    sys.stderr.write(USAGE)
    if error:
        sys.stderr.write(f"{error}\n")


def main(
    argv: Optional[List[str]] = None,
    confirm: ConfirmFn = prompt_confirm,
    ledger_factory: Callable[[IcoAdminSettings], Any] = open_ledger,
) -> int:
    try:
        options = build_parser().parse_args(argv)
    except UsageError as e:
        _usage(str(e))
        return 1

    if options.help:
        sys.stdout.write(USAGE)
        return 0
    if not options.command:
        _usage("No command specified")
        return 1

    configure_logging(options.verbose)
    try:
        operation = parse_command(options.command, options.args)
        logger.debug(f"Command: {options.command} opts: {options.args}")
        settings = load_settings(options.config, verbose=options.verbose)
        result = asyncio.run(execute(settings, operation, confirm, ledger_factory))
    except UsageError as e:
        _usage(str(e))
        return 1
    except ConfirmationDeclinedError:
        return 1
    except IcoAdminError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception:
        logger.exception("Unexpected error")
        return 1

    print(json.dumps(to_json(result), indent=2))
    return 0
