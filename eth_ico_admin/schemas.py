"""
Pydantic Data Models and Domain Enumerations

This module defines the validated settings object produced by the config loader
and the fixed enumerations the orchestrator works with.

Key Components:
- ICOState: remote ICO contract state, as returned by ``state()``
- TokenGroup: reserved-token groups and their numeric identifiers
- ContractRole: the closed set of contracts this tool manages
- IcoStage: ordered sale stages and their predecessors
- IcoAdminSettings: complete configuration document (``ethereum`` section)

Numeric constructor parameters accept integers or exact decimal strings such as
"44.1e6" and are normalised to ``int`` during validation.
"""
from enum import Enum, IntEnum
from typing import Annotated, Dict, Optional
from urllib.parse import urlparse

from eth_utils import is_address
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.functional_validators import BeforeValidator

from eth_ico_admin.amounts import parse_exact_int
from eth_ico_admin.errors import ValidationError


class ICOState(IntEnum):
    Inactive = 0
    Active = 1
    Suspended = 2
    Terminated = 3
    NotCompleted = 4
    Completed = 5

    @classmethod
    def from_value(cls, value: int) -> "ICOState":
        try:
            return cls(int(value))
        except ValueError:
            raise ValidationError(f"Unknown ico state: {value}")


TERMINAL_STATES = frozenset({ICOState.Terminated, ICOState.NotCompleted, ICOState.Completed})


class TokenGroup(str, Enum):
    team = "team"
    bounty = "bounty"
    partners = "partners"
    reserve = "reserve"
    stacking_bonus = "stacking-bonus"

    @property
    def group_id(self) -> int:
        return _GROUP_IDS[self]

    @classmethod
    def from_name(cls, name: str) -> "TokenGroup":
        try:
            return cls(name)
        except ValueError:
            known = "|".join(g.value for g in cls)
            raise ValidationError(f"Unknown token group: {name!r} (expected {known})")

    @classmethod
    def from_id(cls, group_id: int) -> "TokenGroup":
        for group, known_id in _GROUP_IDS.items():
            if known_id == group_id:
                return group
        raise ValidationError(f"Unknown token groupId: {group_id}")


_GROUP_IDS: Dict[TokenGroup, int] = {
    TokenGroup.team: 0x1,
    TokenGroup.bounty: 0x2,
    TokenGroup.partners: 0x4,
    TokenGroup.reserve: 0x8,
    TokenGroup.stacking_bonus: 0x10,
}


class ContractRole(str, Enum):
    token = "SNPCToken"
    pre_ico = "SNPCPreICO"
    stage1 = "SNPCICOStage1"
    stage2 = "SNPCICOStage2"
    stage3 = "SNPCICOStage3"


class IcoStage(str, Enum):
    pre = "pre"
    stage1 = "stage1"
    stage2 = "stage2"
    stage3 = "stage3"

    @property
    def role(self) -> ContractRole:
        return _STAGE_ROLES[self]

    @property
    def predecessor(self) -> Optional["IcoStage"]:
        stages = list(IcoStage)
        index = stages.index(self)
        return stages[index - 1] if index > 0 else None

    @classmethod
    def from_name(cls, name: Optional[str]) -> "IcoStage":
        try:
            return cls(name)
        except ValueError:
            raise ValidationError(f"Unknown ico stage: {name or ''} (expected pre|stage1|stage2|stage3)")


_STAGE_ROLES: Dict[IcoStage, ContractRole] = {
    IcoStage.pre: ContractRole.pre_ico,
    IcoStage.stage1: ContractRole.stage1,
    IcoStage.stage2: ContractRole.stage2,
    IcoStage.stage3: ContractRole.stage3,
}


class SigningMode(str, Enum):
    node = "node"
    local = "local"


# --- Settings models ---

def _exact_int(value):
    try:
        return parse_exact_int(value)
    except ValidationError as e:
        raise ValueError(str(e))


ExactInt = Annotated[int, BeforeValidator(_exact_int)]


def _check_address(value: str) -> str:
    if not isinstance(value, str) or not is_address(value):
        raise ValueError(f"{value!r} is not a valid ethereum address")
    return value


Address = Annotated[str, BeforeValidator(_check_address)]


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)


class ContractArtifactConfig(_Section):
    artifact: str = Field(alias="schema", description="Path to the truffle JSON artifact (abi + bytecode).")


class TokenDeployConfig(ContractArtifactConfig):
    total_supply_tokens: ExactInt = Field(alias="totalSupplyTokens")
    reserved_team_tokens: ExactInt = Field(alias="reservedTeamTokens")
    reserved_bounty_tokens: ExactInt = Field(alias="reservedBountyTokens")
    reserved_partners_tokens: ExactInt = Field(alias="reservedPartnersTokens")
    reserved_reserve_tokens: ExactInt = Field(alias="reservedReserveTokens")
    reserved_stacking_bonus_tokens: Optional[ExactInt] = Field(None, alias="reservedStackingBonusTokens")


class PreIcoDeployConfig(ContractArtifactConfig):
    team_wallet: Address = Field(alias="teamWallet")
    low_cap_tokens: ExactInt = Field(alias="lowCapTokens")
    hard_cap_tokens: ExactInt = Field(alias="hardCapTokens")
    low_cap_tx_wei: ExactInt = Field(alias="lowCapTxWei")
    hard_cap_tx_wei: ExactInt = Field(alias="hardCapTxWei")


class IcoStageDeployConfig(ContractArtifactConfig):
    team_wallet: Address = Field(alias="teamWallet")
    low_cap_wei: ExactInt = Field(alias="lowCapWei")
    hard_cap_wei: ExactInt = Field(alias="hardCapWei")
    low_cap_tx_wei: ExactInt = Field(alias="lowCapTxWei")
    hard_cap_tx_wei: Optional[ExactInt] = Field(None, alias="hardCapTxWei")


class SelfDestructConfig(_Section):
    mode: SigningMode = SigningMode.node
    private_key_env: str = Field("ICO_ADMIN_SIGNER_KEY", alias="privateKeyEnv")


class EthereumConfig(_Section):
    endpoint: str
    sender: Address = Field(alias="from")
    gas: ExactInt
    gas_price: ExactInt = Field(alias="gasPrice")
    lockfiles_dir: str = Field(alias="lockfilesDir")
    receipt_poll_interval: float = Field(1.0, alias="receiptPollInterval", gt=0)
    selfdestruct: SelfDestructConfig = Field(default_factory=SelfDestructConfig)

    token: TokenDeployConfig = Field(alias="SNPCToken")
    pre_ico: PreIcoDeployConfig = Field(alias="SNPCPreICO")
    stage1: Optional[IcoStageDeployConfig] = Field(None, alias="SNPCICOStage1")
    stage2: Optional[IcoStageDeployConfig] = Field(None, alias="SNPCICOStage2")
    stage3: Optional[IcoStageDeployConfig] = Field(None, alias="SNPCICOStage3")

    @field_validator("endpoint")
    @classmethod
    def _known_scheme(cls, value: str) -> str:
        value = value.strip()
        scheme = urlparse(value).scheme
        if scheme not in ("http", "https", "ipc"):
            raise ValueError(f"Unknown web3 endpoint: '{value}'")
        return value

    def contract_config(self, role: ContractRole) -> Optional[ContractArtifactConfig]:
        """Deployment section for a contract role, None when not configured."""
        return {
            ContractRole.token: self.token,
            ContractRole.pre_ico: self.pre_ico,
            ContractRole.stage1: self.stage1,
            ContractRole.stage2: self.stage2,
            ContractRole.stage3: self.stage3,
        }[role]


class IcoAdminSettings(_Section):
    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    ethereum: EthereumConfig
