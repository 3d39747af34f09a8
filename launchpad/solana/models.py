"""
Models for launchpad operations.
"""
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator
from solders.instruction import Instruction
from solders.keypair import Keypair


class MintKind(str, Enum):
    """Mutually exclusive mint variants."""
    TAXED = "taxed"
    SOULBOUND = "soulbound"


class WorkflowStage(str, Enum):
    """Logical stage of the single-mint workflow."""
    UNINITIALIZED = "uninitialized"
    MINT_CREATED = "mint_created"
    ACCOUNT_READY = "account_ready"
    FUNDED = "funded"
    TRANSFER_ATTEMPTED = "transfer_attempted"


STAGE_ORDER = list(WorkflowStage)


class TransferFeeConfig(BaseModel):
    """Transfer-fee extension settings of a taxed mint."""
    transfer_fee_basis_points: int = Field(ge=0, le=10_000)
    maximum_fee: int = Field(ge=0, le=2 ** 64 - 1)
    withdraw_authority: Optional[str] = None


class MintConfig(BaseModel):
    """Parameters for a create-mint request."""
    model_config = ConfigDict(extra="forbid")

    kind: MintKind
    decimals: int = Field(ge=0, le=255)
    transfer_fee_basis_points: Optional[int] = Field(default=None, ge=0, le=10_000)
    maximum_fee: Optional[int] = Field(default=None, ge=0, le=2 ** 64 - 1)
    mint_authority: Optional[str] = None
    fee_withdraw_authority: Optional[str] = None
    freeze_authority: Optional[str] = None

    @model_validator(mode="after")
    def check_kind_extensions(self):
        fee_fields = (self.transfer_fee_basis_points, self.maximum_fee, self.fee_withdraw_authority)
        if self.kind == MintKind.SOULBOUND and any(value is not None for value in fee_fields):
            raise ValueError("soulbound mints cannot carry a transfer fee")
        if self.kind == MintKind.TAXED and (self.transfer_fee_basis_points is None or self.maximum_fee is None):
            raise ValueError("taxed mints need transfer_fee_basis_points and maximum_fee")
        return self


class MintInfo(BaseModel):
    """A mint created by this client."""
    address: str
    kind: MintKind
    decimals: int
    mint_authority: str
    freeze_authority: Optional[str] = None
    transfer_fee: Optional[TransferFeeConfig] = None
    signature: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_transferable(self) -> bool:
        return self.kind != MintKind.SOULBOUND


class AssociatedAccount(BaseModel):
    """Deterministic per-(mint, owner) token account and its last observed balances."""
    address: str
    owner: str
    mint: str
    balance: Optional[int] = None
    withheld_amount: Optional[int] = None
    observed_at: Optional[datetime] = None


class TokenAccountState(BaseModel):
    """Decoded Token-2022 token account."""
    address: str
    mint: str
    owner: str
    amount: int
    withheld_amount: int = 0
    non_transferable: bool = False


class MintAccountState(BaseModel):
    """Decoded Token-2022 mint."""
    address: str
    decimals: int
    supply: int
    mint_authority: Optional[str] = None
    freeze_authority: Optional[str] = None
    transfer_fee: Optional[TransferFeeConfig] = None
    withheld_amount: int = 0
    non_transferable: bool = False


class PendingOperation(BaseModel):
    """A requested action with its resolved instructions and extra signers."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    action: str
    instructions: List[Instruction] = Field(default_factory=list)
    signers: List[Keypair] = Field(default_factory=list)
    detail: Dict[str, Any] = Field(default_factory=dict)


class ConfirmationStatus(BaseModel):
    """Outcome of waiting on a submitted transaction."""
    signature: str
    confirmed: bool
    error: Optional[str] = None


class LogEntry(BaseModel):
    """Human-readable record of an action or outcome."""
    message: str
    ok: bool = True
    timestamp: datetime = Field(default_factory=datetime.now)


class OperationResult(BaseModel):
    """Result returned by every sequencer action."""
    ok: bool
    action: str
    detail: Dict[str, Any] = Field(default_factory=dict)
    error_kind: Optional[str] = None
    message: Optional[str] = None
    signature: Optional[str] = None
