"""
ICO Orchestrator - lifecycle operations across the token and ICO stage contracts

This module sequences every administrative operation the CLI offers. Each
operation re-reads the authoritative remote state it depends on, runs the
client-side guards from :mod:`eth_ico_admin.guards`, and only then submits a
transaction. A failed guard raises before anything is sent, so a rejected
command never leaves a partial change on the ledger.

Key Features:
- Resumable deployment: contracts with a stored address are skipped and each
  new address is persisted as soon as its deployment is mined
- Stage sequencing: a stage starts only when the token points at its
  predecessor and that predecessor has finished
- Irreversible actions (terminate, burning, self-destruct) require an explicit
  confirmation through the injected ``confirm`` capability
- Whole-token amounts are scaled to base units exactly, never through floats

Every operation returns a plain dict describing the resulting state; the
command dispatcher prints it.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from eth_ico_admin import guards
from eth_ico_admin.amounts import base_units_to_tokens, parse_exact_int, parse_timestamp, tokens_to_base_units
from eth_ico_admin.contracts import ContractRegistry, IcoContract, TokenContract, normalize_address
from eth_ico_admin.errors import ConfirmationDeclinedError
from eth_ico_admin.schemas import ContractRole, IcoAdminSettings, IcoStage, TokenGroup
from eth_ico_admin.signing import Signer, make_signer, sign_selfdestruct

logger = logging.getLogger(__name__)

# (question, expected answer) -> True when the operator typed exactly the expected answer
ConfirmFn = Callable[[str, str], Awaitable[bool]]

CONFIRM_YES = "YES"
SELFDESTRUCT_PHRASE = "DESTROY {address}"

STAGE_ROLES: Tuple[ContractRole, ...] = tuple(stage.role for stage in IcoStage)


@dataclass
class AdminSession:
    """Everything one CLI invocation works with, built once at startup."""

    settings: IcoAdminSettings
    ledger: Any
    registry: ContractRegistry
    confirm: ConfirmFn


class IcoOrchestrator:
    def __init__(self, session: AdminSession, signer: Optional[Signer] = None) -> None:
        self.session = session
        self.settings = session.settings
        self.ledger = session.ledger
        self.registry = session.registry
        self._signer = signer

    # --- Helpers ---

    async def check_network(self) -> None:
        await self.ledger.check_network()

    def token(self) -> TokenContract:
        guards.check_deployed(self.registry, ContractRole.token).raise_if_failed()
        return TokenContract(self.registry.get(ContractRole.token), self.ledger)

    def stage_contract(self, stage: IcoStage) -> IcoContract:
        guards.check_deployed(self.registry, stage.role).raise_if_failed()
        return IcoContract(self.registry.get(stage.role), self.ledger)

    async def _confirm(self, question: str, expected: str = CONFIRM_YES) -> None:
        if not await self.session.confirm(question, expected):
            logger.info(f"Operator declined: {question}")
            raise ConfirmationDeclinedError(question)

    async def _state_result(self, ico: IcoContract, key: str = "state") -> Dict[str, Any]:
        state = await ico.state()
        return {key: state.name}

    async def _stage_snapshot(self, ico: IcoContract, include_sales: bool = True) -> Dict[str, Any]:
        snapshot = {
            "address": ico.address,
            "owner": await ico.owner(),
            "teamWallet": await ico.team_wallet(),
            "state": (await ico.state()).name,
            "weiCollected": await ico.collected_wei(),
        }
        if include_sales:
            snapshot["tokensSold"] = await ico.tokens_sold()
            snapshot["investorCount"] = await ico.investor_count()
        snapshot.update({
            "lowCapTokens": await ico.low_cap_tokens(),
            "hardCapTokens": await ico.hard_cap_tokens(),
            "lowCapTxWei": await ico.low_cap_tx_wei(),
            "hardCapTxWei": await ico.hard_cap_tx_wei(),
        })
        return snapshot

    async def _supply(self, token: TokenContract) -> Dict[str, Any]:
        return {
            "totalSupply": await token.total_supply(),
            "availableSupply": await token.available_supply(),
        }

    # --- Deployment ---

    def _constructor_args(self, role: ContractRole, token_address: Optional[str]) -> List[Any]:
        eth = self.settings.ethereum
        if role == ContractRole.token:
            cfg = eth.token
            args = [
                cfg.total_supply_tokens,
                cfg.reserved_team_tokens,
                cfg.reserved_bounty_tokens,
                cfg.reserved_partners_tokens,
                cfg.reserved_reserve_tokens,
            ]
            if cfg.reserved_stacking_bonus_tokens is not None:
                args.append(cfg.reserved_stacking_bonus_tokens)
            return args
        if role == ContractRole.pre_ico:
            cfg = eth.pre_ico
            return [
                token_address,
                cfg.team_wallet,
                cfg.low_cap_tokens,
                cfg.hard_cap_tokens,
                cfg.low_cap_tx_wei,
                cfg.hard_cap_tx_wei,
            ]
        cfg = eth.contract_config(role)
        return [
            token_address,
            cfg.team_wallet,
            cfg.low_cap_wei,
            cfg.hard_cap_wei,
            cfg.low_cap_tx_wei,
            cfg.hard_cap_tx_wei if cfg.hard_cap_tx_wei is not None else cfg.hard_cap_wei,
        ]

    async def deploy(self) -> Dict[str, Any]:
        """
        Deploy every configured contract that has no stored address yet.

        The token is deployed first, then the pre-sale, then stage1..stage3 when
        configured. Each address is written to the address store immediately so an
        interrupted run can be resumed.
        """
        results: Dict[str, Any] = {}
        for role in ContractRole:
            if not self.registry.is_configured(role):
                logger.warning(f"{role.value} not configured. Skipped")
                results[role.value] = {"status": "not-configured"}
                continue

            existing = guards.check_not_deployed(self.registry, role)
            if not existing.ok:
                logger.info(f"{existing.message}, skipping deployment")
                results[role.value] = {"status": "skipped", "address": self.registry.address(role)}
                continue

            token_address = self.registry.address(ContractRole.token)
            args = self._constructor_args(role, token_address)
            logger.info(f"Deployment: '{role.value}' args={args}")
            address = await self.ledger.deploy(self.registry.get(role), *args)
            self.registry.set_address(role, address)
            logger.info(f"{role.value} successfully deployed at: {address}")
            results[role.value] = {"status": "deployed", "address": address}
        return results

    # --- Status ---

    async def status(self) -> Dict[str, Any]:
        token = self.token()
        guards.check_deployed(self.registry, ContractRole.pre_ico).raise_if_failed()
        data: Dict[str, Any] = {
            "token": {
                "address": token.address,
                "owner": await token.owner(),
                "symbol": await token.symbol(),
                "totalSupply": await token.total_supply(),
                "availableSupply": await token.available_supply(),
                "locked": await token.locked(),
            }
        }
        deployed = self.registry.deployed_roles()
        for stage in IcoStage:
            if stage.role in deployed:
                key = "pre-ico" if stage == IcoStage.pre else stage.value
                data[key] = await self._stage_snapshot(self.stage_contract(stage))
        return data

    # --- ICO stage lifecycle ---

    async def ico_state(self, stage: IcoStage) -> Dict[str, Any]:
        self.token()
        return await self._state_result(self.stage_contract(stage))

    async def start(self, stage: IcoStage, end_text: str) -> Dict[str, Any]:
        """Point the token at ``stage`` and start it with the given end date."""
        token = self.token()
        ico = self.stage_contract(stage)
        predecessor = stage.predecessor
        if predecessor is not None:
            guards.check_deployed(self.registry, predecessor.role).raise_if_failed()

        end = parse_timestamp(end_text)
        guards.check_end_in_future(end, time.time()).raise_if_failed()

        guards.check_startable(ico.name, await ico.state()).raise_if_failed()

        if predecessor is not None:
            previous = self.stage_contract(predecessor)
            token_ico = await token.ico()
            previous_state = await previous.state()
            guards.check_can_start(
                ico.name, previous.name, previous.address, token_ico, previous_state
            ).raise_if_failed()

        logger.info("Setting ICO for token...")
        await token.change_ico(ico.address)
        logger.info(f"Starting {ico.name}. End ts: {end} sec")
        await ico.start(end)
        return await self._state_result(ico)

    async def touch(self, stage: IcoStage) -> Dict[str, Any]:
        self.token()
        ico = self.stage_contract(stage)
        await ico.touch()
        return await self._state_result(ico)

    async def suspend(self, stage: IcoStage) -> Dict[str, Any]:
        self.token()
        ico = self.stage_contract(stage)
        guards.check_can_suspend(ico.name, await ico.state()).raise_if_failed()
        await ico.suspend()
        return await self._state_result(ico)

    async def resume(self, stage: IcoStage) -> Dict[str, Any]:
        self.token()
        ico = self.stage_contract(stage)
        guards.check_can_resume(ico.name, await ico.state()).raise_if_failed()
        await ico.resume()
        return await self._state_result(ico)

    async def terminate(self, stage: IcoStage) -> Dict[str, Any]:
        self.token()
        ico = self.stage_contract(stage)
        guards.check_can_terminate(ico.name, await ico.state()).raise_if_failed()
        await self._confirm(f"Terminate {ico.name}. Are you sure?")
        await ico.terminate()
        return await self._state_result(ico)

    async def transfer_tokens(self, stage: IcoStage, investor: str, amount_text: str) -> Dict[str, Any]:
        """Fiat sale path: hand ``amount`` base units to ``investor``."""
        self.token()
        ico = self.stage_contract(stage)
        investor = normalize_address(investor, "addr")
        amount = parse_exact_int(amount_text, "amount")
        await ico.transfer_tokens(investor, amount)
        return {"investor": investor, "amount": amount}

    async def investments(self, stage: IcoStage, investor: str) -> Dict[str, Any]:
        self.token()
        ico = self.stage_contract(stage)
        return {"investments": await ico.get_investments(normalize_address(investor, "addr"))}

    async def transfer_ownership(self, stage: IcoStage, new_owner: str) -> Dict[str, Any]:
        self.token()
        ico = self.stage_contract(stage)
        new_owner = normalize_address(new_owner, "address")
        await ico.transfer_ownership(new_owner)
        return {"newOwner": new_owner, "owner": await ico.owner()}

    async def tune(
        self,
        stage: IcoStage,
        end_text: str,
        low_cap_text: str,
        hard_cap_text: str,
        low_tx_cap_text: str = "0",
        hard_tx_cap_text: str = "0",
    ) -> Dict[str, Any]:
        """Change end date and caps. The contract accepts this only while Suspended."""
        self.token()
        ico = self.stage_contract(stage)
        end = parse_timestamp(end_text)
        guards.check_end_in_future(end, time.time()).raise_if_failed()
        low_cap = parse_exact_int(low_cap_text, "lowcap")
        hard_cap = parse_exact_int(hard_cap_text, "hardcap")
        low_tx_cap = parse_exact_int(low_tx_cap_text, "lowtxcap")
        hard_tx_cap = parse_exact_int(hard_tx_cap_text, "hardtxcap")

        logger.info(f"{ico.name} end ts: {end} sec")
        await ico.tune(end, low_cap, hard_cap, low_tx_cap, hard_tx_cap)
        return {stage.value: await self._stage_snapshot(ico, include_sales=False)}

    # --- Whitelist ---

    async def whitelist_status(self, stage: IcoStage) -> Dict[str, Any]:
        ico = self.stage_contract(stage)
        return {"whitelistEnabled": await ico.whitelist_enabled()}

    async def whitelist_add(self, stage: IcoStage, address: str) -> Dict[str, Any]:
        ico = self.stage_contract(stage)
        address = normalize_address(address)
        await ico.whitelist(address)
        return {"address": address, "whitelisted": await ico.whitelisted(address)}

    async def whitelist_remove(self, stage: IcoStage, address: str) -> Dict[str, Any]:
        ico = self.stage_contract(stage)
        address = normalize_address(address)
        await ico.blacklist(address)
        return {"address": address, "whitelisted": await ico.whitelisted(address)}

    async def whitelist_enable(self, stage: IcoStage) -> Dict[str, Any]:
        ico = self.stage_contract(stage)
        await ico.enable_whitelist()
        return {"whitelistEnabled": await ico.whitelist_enabled()}

    async def whitelist_disable(self, stage: IcoStage) -> Dict[str, Any]:
        ico = self.stage_contract(stage)
        await ico.disable_whitelist()
        return {"whitelistEnabled": await ico.whitelist_enabled()}

    async def whitelisted(self, stage: IcoStage, address: str) -> Dict[str, Any]:
        ico = self.stage_contract(stage)
        address = normalize_address(address)
        return {"address": address, "whitelisted": await ico.whitelisted(address)}

    # --- Token ---

    async def balance(self, address: str) -> Dict[str, Any]:
        token = self.token()
        tokens_with_decimals = await token.balance_of(normalize_address(address))
        return {
            "tokens": base_units_to_tokens(tokens_with_decimals),
            "tokensWithDecimals": tokens_with_decimals,
        }

    async def lock(self) -> Dict[str, Any]:
        token = self.token()
        await token.lock()
        return {"locked": await token.locked()}

    async def unlock(self) -> Dict[str, Any]:
        token = self.token()
        await token.unlock()
        return {"locked": await token.locked()}

    async def locked(self) -> Dict[str, Any]:
        token = self.token()
        return {"locked": await token.locked()}

    async def token_ico(self, ico_address: Optional[str] = None) -> Dict[str, Any]:
        """Show the token's active ICO contract, re-pointing it first when an address is given."""
        token = self.token()
        if ico_address:
            await token.change_ico(normalize_address(ico_address, "addr"))
        return {"ico": await token.ico()}

    async def controlling_ico(self, token: TokenContract) -> Tuple[IcoStage, IcoContract]:
        """Find which known stage contract the token currently points at."""
        token_ico = await token.ico()
        guards.check_controlling_ico(token_ico, self.registry, STAGE_ROLES).raise_if_failed()
        role, _ = self.registry.find_by_address(token_ico)
        stage = next(s for s in IcoStage if s.role == role)
        return stage, self.stage_contract(stage)

    async def _check_burnable(self, token: TokenContract) -> IcoContract:
        _, ico = await self.controlling_ico(token)
        guards.check_can_burn(ico.name, await ico.state()).raise_if_failed()
        return ico

    async def burn_unsold(self) -> Dict[str, Any]:
        token = self.token()
        await self._check_burnable(token)
        await self._confirm("Burning of unsold tokens. Are you sure?")
        await token.burn_remain()
        return await self._supply(token)

    async def burn(self, tokens_text: str) -> Dict[str, Any]:
        token = self.token()
        amount = tokens_to_base_units(tokens_text)
        await self._check_burnable(token)
        await self._confirm(f"Burning of {tokens_text} tokens. Are you sure?")
        await token.burn_tokens(amount)
        return await self._supply(token)

    async def selfdestruct(self) -> Dict[str, Any]:
        """Destroy the token contract with an owner signature; the stored address is removed afterwards."""
        token = self.token()
        address = token.address
        phrase = SELFDESTRUCT_PHRASE.format(address=address)
        await self._confirm(f"Self-destruct {token.name} at {address}. This can not be undone.", phrase)

        signer = self._signer or make_signer(
            self.settings.ethereum.selfdestruct, self.ledger, self.settings.ethereum.sender
        )
        signature = await sign_selfdestruct(signer, address)
        await token.self_destruct(signature.v, signature.r, signature.s)
        self.registry.clear_address(ContractRole.token)
        logger.warning(f"{token.name} at {address} self-destructed")
        return {"selfdestructed": address, "signer": signer.address}

    # --- Reserved token groups ---

    async def reserve(self, address: str, group_name: str, tokens_text: str) -> Dict[str, Any]:
        """Assign whole ``tokens`` from a reservation group to ``address``."""
        token = self.token()
        address = normalize_address(address)
        group = TokenGroup.from_name(group_name)
        amount = tokens_to_base_units(tokens_text)
        await token.assign_reserved(address, group.group_id, amount)
        return {
            "group": group.value,
            "address": address,
            "assigned": amount,
            "remaining": await token.get_reserved_tokens(group.group_id),
            "balance": await token.balance_of(address),
        }

    async def reserved(self, group_name: str) -> Dict[str, Any]:
        token = self.token()
        group = TokenGroup.from_name(group_name)
        return {"group": group.value, "remaining": await token.get_reserved_tokens(group.group_id)}
