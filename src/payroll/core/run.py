"""
Payroll run model.

Tracks one execution of the payroll pipeline from trigger to recorded hash.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class RunStatus(str, Enum):
    """Status of a payroll run."""
    PENDING = "pending"           # Triggered, nothing fetched yet
    BUILDING = "building"         # Snapshot fetched, transaction being assembled
    SIGNING = "signing"           # Draft being signed
    SUBMITTING = "submitting"     # Signed transaction being submitted
    RECORDED = "recorded"         # Submitted and hash recorded
    SKIPPED = "skipped"           # No active recipients
    FAILED = "failed"             # Any component error

    @property
    def is_final(self) -> bool:
        return self in (RunStatus.RECORDED, RunStatus.SKIPPED, RunStatus.FAILED)


@dataclass
class PayrollRun:
    """
    One execution of the payroll pipeline.

    Attributes:
        run_id: Unique identifier for the run
        trigger: What started the run ("schedule", "manual", ...)
        status: Current processing status
        tx_hash: Hash of the submitted transaction
        fee: Fee paid, in lovelace
        recipient_count: Number of recipients paid
        total_amount: Lovelace paid to recipients
        already_recorded: The hash was present in the log before this run
    """

    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trigger: str = "manual"
    status: RunStatus = RunStatus.PENDING

    # Transaction info
    tx_hash: Optional[str] = None
    fee: Optional[int] = None
    recipient_count: int = 0
    total_amount: int = 0
    already_recorded: bool = False

    # Timestamps
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    # Error tracking
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    def mark_building(self, recipient_count: int, total_amount: int) -> None:
        self.status = RunStatus.BUILDING
        self.recipient_count = recipient_count
        self.total_amount = total_amount

    def mark_signing(self, fee: int) -> None:
        self.status = RunStatus.SIGNING
        self.fee = fee

    def mark_submitting(self) -> None:
        self.status = RunStatus.SUBMITTING

    def mark_recorded(self, tx_hash: str, already_recorded: bool = False) -> None:
        """Mark the run as submitted and logged."""
        self.status = RunStatus.RECORDED
        self.tx_hash = tx_hash
        self.already_recorded = already_recorded
        self.finished_at = datetime.utcnow()

    def mark_skipped(self) -> None:
        self.status = RunStatus.SKIPPED
        self.finished_at = datetime.utcnow()

    def mark_failed(self, error: Exception) -> None:
        """Mark the run as failed with the error that stopped it."""
        self.status = RunStatus.FAILED
        self.error_type = type(error).__name__
        self.error_message = str(error)
        self.finished_at = datetime.utcnow()

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.RECORDED

    @property
    def duration_seconds(self) -> Optional[float]:
        if not self.finished_at:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "run_id": self.run_id,
            "trigger": self.trigger,
            "status": self.status.value,
            "tx_hash": self.tx_hash,
            "fee": self.fee,
            "recipient_count": self.recipient_count,
            "total_amount": self.total_amount,
            "already_recorded": self.already_recorded,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error_type": self.error_type,
            "error_message": self.error_message,
        }
