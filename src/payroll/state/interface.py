"""
Collaborator interfaces consumed by a payroll run.

A ``RecipientSource`` supplies who to pay; a ``TransactionLog`` records the
hash of every submitted transaction exactly once.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from payroll.core.models import Recipient
from payroll.exceptions import PayrollError


class RecordOutcome(str, Enum):
    """Result of recording a transaction hash."""
    INSERTED = "inserted"
    ALREADY_EXISTS = "already_exists"


class PersistenceConflict(PayrollError):
    """The transaction hash is already recorded. Not a failure."""

    def __init__(self, tx_hash: str):
        super().__init__(f"Transaction {tx_hash} already recorded")
        self.tx_hash = tx_hash


class RecipientSource(ABC):
    """Supplies the active recipients for a payroll run."""

    @abstractmethod
    async def get_active_recipients(self) -> List[Recipient]:
        """
        Get the recipients to pay, in payment order.

        Returns:
            Active recipients with amounts in lovelace
        """
        pass


class TransactionLog(ABC):
    """Write-once log of submitted transaction hashes."""

    @abstractmethod
    async def insert_transaction_hash(
        self,
        tx_hash: str,
        fee: Optional[int] = None,
        total_amount: Optional[int] = None,
        recipient_count: Optional[int] = None,
        recorded_at: Optional[datetime] = None,
    ) -> None:
        """
        Insert a transaction hash under a uniqueness constraint.

        Raises:
            PersistenceConflict: The hash is already present
        """
        pass

    async def record_transaction_hash(self, tx_hash: str, **details) -> RecordOutcome:
        """
        Record a transaction hash idempotently.

        Returns:
            ``INSERTED`` on first write, ``ALREADY_EXISTS`` afterwards
        """
        try:
            await self.insert_transaction_hash(tx_hash, **details)
        except PersistenceConflict:
            return RecordOutcome.ALREADY_EXISTS
        return RecordOutcome.INSERTED


class StaticRecipientSource(RecipientSource):
    """Recipient source backed by a fixed list."""

    def __init__(self, recipients: Iterable[Recipient]):
        self._recipients = list(recipients)

    async def get_active_recipients(self) -> List[Recipient]:
        return list(self._recipients)

    @classmethod
    def from_file(cls, path: str) -> "StaticRecipientSource":
        """Load recipients from a JSON file (see ``load_recipients_file``)."""
        return cls(load_recipients_file(path))


def load_recipients_file(path: str) -> List[Recipient]:
    """
    Read recipients from a JSON file.

    The file holds a list of ``{"address": ..., "amount": <lovelace>}``.
    """
    with open(Path(path)) as f:
        data = json.load(f)

    return [
        Recipient(address=item["address"], amount=int(item["amount"]))
        for item in data
    ]
