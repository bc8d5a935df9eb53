"""
Transaction module.

Handles transaction construction, signing, and submission.
"""

from payroll.tx.builder import (
    InsufficientFunds,
    InvalidPayrollError,
    SerializationLimitExceeded,
    TransactionBuildError,
    TransactionBuilder,
    TransactionDraft,
)
from payroll.tx.signer import SignedTransaction, SigningError, TransactionSigner
from payroll.tx.submitter import TransactionSubmitter

__all__ = [
    "TransactionBuilder",
    "TransactionDraft",
    "TransactionBuildError",
    "InvalidPayrollError",
    "InsufficientFunds",
    "SerializationLimitExceeded",
    "TransactionSigner",
    "SignedTransaction",
    "SigningError",
    "TransactionSubmitter",
]
