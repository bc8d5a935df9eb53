"""
Ledger value models shared by the payroll pipeline.

All amounts are integers in lovelace (1 ADA = 1_000_000 lovelace).
Conversion to and from ADA happens only at the API and CLI edges.
"""

from dataclasses import dataclass

from pycardano import TransactionId, TransactionInput

LOVELACE_PER_ADA = 1_000_000


@dataclass(frozen=True)
class UnspentOutput:
    """
    An unspent output owned by the funding address.

    Attributes:
        transaction_id: Hash of the transaction that created the output (hex)
        output_index: Index of the output in that transaction
        value: Lovelace locked in the output
    """

    transaction_id: str
    output_index: int
    value: int

    @property
    def ref(self) -> str:
        """Reference in ``tx_hash#index`` form."""
        return f"{self.transaction_id}#{self.output_index}"

    def to_input(self) -> TransactionInput:
        """Convert to a PyCardano transaction input."""
        return TransactionInput(
            TransactionId.from_primitive(self.transaction_id),
            self.output_index,
        )


@dataclass(frozen=True)
class Recipient:
    """A payee for one payroll run."""

    address: str
    amount: int

    def to_dict(self) -> dict:
        return {"address": self.address, "amount": self.amount}


@dataclass(frozen=True)
class PaymentOutput:
    """An output of a payroll transaction."""

    address: str
    amount: int
    is_change: bool = False


def lovelace_to_ada(lovelace: int) -> str:
    """Format lovelace as an ADA string with six decimals."""
    sign = "-" if lovelace < 0 else ""
    whole, frac = divmod(abs(lovelace), LOVELACE_PER_ADA)
    return f"{sign}{whole}.{frac:06d}"
