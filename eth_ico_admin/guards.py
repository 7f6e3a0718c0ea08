"""
Client-side Guards for ICO State Transitions

Every state-changing operation against the ICO contracts is irreversible once
mined, so the orchestrator checks its preconditions locally first. The guards
in this module are pure functions over freshly fetched remote values; they
return a GuardResult instead of raising, and the caller decides to proceed or
to raise ``result.error()`` before any transaction is submitted.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from eth_ico_admin.contracts import ContractRegistry, same_address
from eth_ico_admin.errors import InvalidStateError, NotDeployedError, PreconditionError, ValidationError
from eth_ico_admin.schemas import ContractRole, ICOState, TERMINAL_STATES


class GuardFailure(str, Enum):
    not_deployed = "not_deployed"
    wrong_state = "wrong_state"
    wrong_ico_link = "wrong_ico_link"
    unknown_ico = "unknown_ico"
    bad_argument = "bad_argument"


_ERRORS = {
    GuardFailure.not_deployed: NotDeployedError,
    GuardFailure.wrong_state: InvalidStateError,
    GuardFailure.wrong_ico_link: InvalidStateError,
    GuardFailure.unknown_ico: InvalidStateError,
    GuardFailure.bad_argument: ValidationError,
}


@dataclass(frozen=True)
class GuardResult:
    ok: bool
    failure: Optional[GuardFailure] = None
    message: str = ""

    @classmethod
    def passed(cls) -> "GuardResult":
        return cls(True)

    @classmethod
    def failed(cls, failure: GuardFailure, message: str) -> "GuardResult":
        return cls(False, failure, message)

    def error(self) -> PreconditionError:
        return _ERRORS[self.failure](self.message)

    def raise_if_failed(self) -> None:
        if not self.ok:
            raise self.error()


START_PREDECESSOR_STATES = frozenset({ICOState.Inactive, ICOState.NotCompleted, ICOState.Completed})
TERMINATE_STATES = frozenset({ICOState.Inactive, ICOState.Active, ICOState.Suspended})
BURN_STATES = TERMINAL_STATES


def _names(states) -> str:
    return ", ".join(s.name for s in sorted(states))


def check_deployed(registry: ContractRegistry, role: ContractRole) -> GuardResult:
    if registry.address(role):
        return GuardResult.passed()
    return GuardResult.failed(GuardFailure.not_deployed, f"Contract '{role.value}' is not deployed")


def check_not_deployed(registry: ContractRegistry, role: ContractRole) -> GuardResult:
    address = registry.address(role)
    if address:
        return GuardResult.failed(GuardFailure.wrong_state, f"Contract '{role.value}' is already deployed at {address}")
    return GuardResult.passed()


def check_end_in_future(end: int, now: float) -> GuardResult:
    if end <= 0 or end <= now:
        return GuardResult.failed(GuardFailure.bad_argument, "End date is before current time")
    return GuardResult.passed()


def check_startable(name: str, state: ICOState) -> GuardResult:
    if state != ICOState.Inactive:
        return GuardResult.failed(
            GuardFailure.wrong_state, f"{name} must be in Inactive status to start, current status: {state.name}"
        )
    return GuardResult.passed()


def check_can_start(
    stage_name: str,
    predecessor_name: str,
    predecessor_address: str,
    token_ico_address: str,
    predecessor_state: ICOState,
) -> GuardResult:
    """A later stage starts only after the token points at its predecessor and that predecessor has finished."""
    if not same_address(token_ico_address, predecessor_address):
        return GuardResult.failed(
            GuardFailure.wrong_ico_link,
            f"SNPCToken must use {predecessor_name} address for deploy {stage_name} "
            f"(token ICO is {token_ico_address}, {predecessor_name} is {predecessor_address})",
        )
    if predecessor_state not in START_PREDECESSOR_STATES:
        return GuardResult.failed(
            GuardFailure.wrong_state,
            f"{predecessor_name} must be in {_names(START_PREDECESSOR_STATES)} status, "
            f"current status: {predecessor_state.name}",
        )
    return GuardResult.passed()


def check_can_terminate(name: str, state: ICOState) -> GuardResult:
    if state not in TERMINATE_STATES:
        return GuardResult.failed(
            GuardFailure.wrong_state,
            f"{name} must be in {_names(TERMINATE_STATES)} status, current status: {state.name}",
        )
    return GuardResult.passed()


def check_can_suspend(name: str, state: ICOState) -> GuardResult:
    if state != ICOState.Active:
        return GuardResult.failed(
            GuardFailure.wrong_state, f"{name} can be suspended only in Active status, current status: {state.name}"
        )
    return GuardResult.passed()


def check_can_resume(name: str, state: ICOState) -> GuardResult:
    if state != ICOState.Suspended:
        return GuardResult.failed(
            GuardFailure.wrong_state, f"{name} can be resumed only in Suspended status, current status: {state.name}"
        )
    return GuardResult.passed()


def check_can_burn(name: str, state: ICOState) -> GuardResult:
    if state not in BURN_STATES:
        return GuardResult.failed(
            GuardFailure.wrong_state,
            f"{name} must be in {_names(BURN_STATES)} status, current status: {state.name}",
        )
    return GuardResult.passed()


def check_controlling_ico(token_ico_address: str, registry: ContractRegistry, stage_roles) -> GuardResult:
    """The token's active ICO pointer must match one of the known deployed stage contracts."""
    for role in stage_roles:
        if same_address(registry.address(role), token_ico_address):
            return GuardResult.passed()
    return GuardResult.failed(
        GuardFailure.unknown_ico, f"SNPCToken use unknown contract address: {token_ico_address or ''}"
    )
