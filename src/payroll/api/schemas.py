"""
Request and response models for the payroll API.

Amounts cross the API in ADA and are converted to integer lovelace here;
nothing past this module sees a decimal amount.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pycardano import Address
from pycardano.exception import PyCardanoException
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from payroll.core.models import LOVELACE_PER_ADA, lovelace_to_ada
from payroll.core.run import PayrollRun

# ADA amounts carry lovelace precision
ADA_DECIMALS = 6


def ada_to_lovelace(amount: Decimal) -> int:
    """Convert an ADA amount with at most six decimals to lovelace."""
    return int(amount * LOVELACE_PER_ADA)


def _check_address(value: str) -> str:
    value = value.strip()
    try:
        Address.from_primitive(value)
    except (PyCardanoException, ValueError, TypeError) as e:
        raise ValueError(f"invalid Cardano address: {e}") from e
    return value


def _check_ada(value: Decimal) -> Decimal:
    if not value.is_finite():
        raise ValueError("amount must be a finite number")
    if -value.normalize().as_tuple().exponent > ADA_DECIMALS:
        raise ValueError(f"amount has more than {ADA_DECIMALS} decimal places")
    return value


class RecipientCreate(BaseModel):
    """Request to add a payroll recipient."""
    address: str = Field(..., description="Bech32 payment address")
    amount: Decimal = Field(..., gt=0, description="Amount per run in ADA")
    active: bool = Field(True, description="Include the recipient in payroll runs")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return _check_address(v)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        return _check_ada(v)

    @property
    def amount_lovelace(self) -> int:
        return ada_to_lovelace(self.amount)


class RecipientUpdate(BaseModel):
    """
    Partial update of a recipient.

    Only fields present in the request body are written; an explicit
    ``null`` is rejected.
    """
    address: Optional[str] = None
    amount: Optional[Decimal] = Field(None, gt=0)
    active: Optional[bool] = None

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: Optional[str]) -> str:
        if v is None:
            raise ValueError("address may not be null")
        return _check_address(v)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Optional[Decimal]) -> Decimal:
        if v is None:
            raise ValueError("amount may not be null")
        return _check_ada(v)

    @field_validator("active")
    @classmethod
    def validate_active(cls, v: Optional[bool]) -> bool:
        if v is None:
            raise ValueError("active may not be null")
        return v

    def to_fields(self) -> Dict[str, Any]:
        """Fields to write, with the amount in lovelace."""
        fields = {name: getattr(self, name) for name in self.model_fields_set}
        if "amount" in fields:
            fields["amount"] = ada_to_lovelace(fields["amount"])
        return fields


class RecipientOut(BaseModel):
    """A stored recipient."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    address: str
    amount: int = Field(..., description="Amount per run in lovelace")
    active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def amount_ada(self) -> str:
        return lovelace_to_ada(self.amount)


class TransactionOut(BaseModel):
    """A recorded payroll transaction."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    tx_hash: str
    fee: Optional[int] = None
    total_amount: Optional[int] = None
    recipient_count: Optional[int] = None
    created_at: Optional[datetime] = None


class RunPayrollResponse(BaseModel):
    """Outcome of a manually triggered payroll run."""
    status: str
    message: str
    run_id: str
    tx_hash: Optional[str] = None
    fee: Optional[int] = None
    recipient_count: int = 0
    total_amount: int = 0
    already_recorded: bool = False
    error: Optional[str] = None

    @classmethod
    def from_run(cls, run: PayrollRun) -> "RunPayrollResponse":
        messages = {
            "recorded": "Payroll executed",
            "skipped": "No active recipients",
            "failed": "Payroll run failed",
        }
        return cls(
            status=run.status.value,
            message=messages.get(run.status.value, run.status.value),
            run_id=run.run_id,
            tx_hash=run.tx_hash,
            fee=run.fee,
            recipient_count=run.recipient_count,
            total_amount=run.total_amount,
            already_recorded=run.already_recorded,
            error=run.error_message,
        )
