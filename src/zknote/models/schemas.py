"""Pydantic data models for the zk-note API."""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class DepositRequest(BaseModel):
    """Request model for deposit operations."""
    currency: str = Field(..., min_length=1, pattern=r"^\w+$", description="Pool currency")
    amount: str = Field(..., pattern=r"^\d+(\.\d+)?$", description="Pool denomination")


class DepositResponse(BaseModel):
    """Response model for deposit operations."""
    note: str = Field(..., description="Secret note; required to withdraw")
    timestamp: datetime = Field(default_factory=datetime.now)


class WithdrawalRequest(BaseModel):
    """Request model for withdrawal operations."""
    note: str = Field(..., description="Note returned by deposit")
    recipient: str = Field(..., pattern=r"^0x[0-9a-fA-F]{40}$", description="Recipient address")
    relayer: str = Field(default="0x" + "0" * 40, pattern=r"^0x[0-9a-fA-F]{40}$", description="Relayer address")
    fee: int = Field(default=0, ge=0, description="Relayer fee in base units")
    refund: int = Field(default=0, ge=0, description="Refund in base units")


class CallArgsModel(BaseModel):
    """Verifier call arguments."""
    proof: str
    args: List[str]


class ReceiptModel(BaseModel):
    """Ledger receipt."""
    transaction_hash: str
    block_number: int
    status: str


class WithdrawalResponse(BaseModel):
    """Response model for withdrawal operations."""
    state: str = Field(..., description="Terminal state of the attempt")
    history: List[str] = Field(default_factory=list)
    currency: Optional[str] = None
    amount: Optional[str] = None
    reason: Optional[str] = Field(default=None, description="Failure reason, verbatim")
    error_type: Optional[str] = None
    race_lost: Optional[bool] = Field(default=None, description="True if another submission won a race")
    call_args: Optional[CallArgsModel] = None
    receipt: Optional[ReceiptModel] = None
    timestamp: datetime


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Service status")
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())
    version: str = "0.1.0"
