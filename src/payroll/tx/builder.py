"""
Transaction Builder - constructs payroll transactions.

Turns a UTXO snapshot, the recipient list, protocol parameters and the chain
tip into a balanced, size-bounded unsigned transaction draft.

Fee and size depend on each other: the fee is linear in the serialized size,
and the size depends on whether a change output exists. The builder resolves
this in two passes (without change, then with change). Sizes are measured
with placeholder values of maximal CBOR width and a dummy witness, so each
measured size bounds the final signed size from above.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

import structlog

from pycardano import (
    Address,
    PaymentVerificationKey,
    Transaction,
    TransactionBody,
    TransactionOutput,
    TransactionWitnessSet,
    Value,
    VerificationKeyWitness,
)
from pycardano.exception import PyCardanoException

from payroll.core.models import PaymentOutput, Recipient, UnspentOutput
from payroll.exceptions import PayrollError
from payroll.node.interface import ProtocolParameters

logger = structlog.get_logger(__name__)

# Per-entry overhead the ledger adds to an output's size when computing the
# minimum lovelace it must hold (Babbage era).
UTXO_ENTRY_OVERHEAD_BYTES = 160

# Widest CBOR unsigned encodings used while sizing: fees stay below 2**32
# for any transaction within protocol size limits, change may not.
FEE_PLACEHOLDER = 2**32 - 1
CHANGE_PLACEHOLDER = 2**64 - 1

_DUMMY_WITNESS = VerificationKeyWitness(
    PaymentVerificationKey(bytes(32)),
    bytes(64),
)


class TransactionBuildError(PayrollError):
    """Raised when transaction construction fails."""
    pass


class InvalidPayrollError(TransactionBuildError):
    """Raised when the builder's inputs violate its preconditions."""
    pass


class InsufficientFunds(TransactionBuildError):
    """Raised when the UTXO set cannot cover the recipients and the fee."""

    def __init__(self, available: int, required: int):
        super().__init__(
            f"Insufficient funds: {available} lovelace available, {required} required"
        )
        self.available = available
        self.required = required

    @property
    def shortfall(self) -> int:
        return self.required - self.available


class SerializationLimitExceeded(TransactionBuildError):
    """Raised when the transaction or one of its values exceeds protocol size limits."""

    def __init__(self, message: str, size: int, limit: int):
        super().__init__(message)
        self.size = size
        self.limit = limit


@dataclass(frozen=True)
class TransactionDraft:
    """
    An unsigned, balanced payroll transaction.

    Invariant: ``total_input == total_output + fee``.
    """

    inputs: Tuple[UnspentOutput, ...]
    outputs: Tuple[PaymentOutput, ...]
    fee: int
    ttl: int
    size: int

    @property
    def total_input(self) -> int:
        return sum(u.value for u in self.inputs)

    @property
    def total_output(self) -> int:
        return sum(o.amount for o in self.outputs)

    @property
    def recipient_outputs(self) -> Tuple[PaymentOutput, ...]:
        return tuple(o for o in self.outputs if not o.is_change)

    @property
    def recipient_total(self) -> int:
        return sum(o.amount for o in self.recipient_outputs)

    @property
    def change_output(self) -> Optional[PaymentOutput]:
        for output in self.outputs:
            if output.is_change:
                return output
        return None

    @property
    def is_balanced(self) -> bool:
        return self.total_input == self.total_output + self.fee

    def to_transaction_body(self) -> TransactionBody:
        """Build the PyCardano transaction body for this draft."""
        return _transaction_body(self.inputs, self.outputs, self.fee, self.ttl)


def _to_tx_output(output: PaymentOutput) -> TransactionOutput:
    return TransactionOutput(Address.from_primitive(output.address), Value(output.amount))


def _transaction_body(
    inputs: Sequence[UnspentOutput],
    outputs: Sequence[PaymentOutput],
    fee: int,
    ttl: int,
) -> TransactionBody:
    return TransactionBody(
        inputs=[u.to_input() for u in inputs],
        outputs=[_to_tx_output(o) for o in outputs],
        fee=fee,
        ttl=ttl,
    )


def signed_size(
    inputs: Sequence[UnspentOutput],
    outputs: Sequence[PaymentOutput],
    fee: int,
    ttl: int,
) -> int:
    """Serialized size of the transaction once it carries one vkey witness."""
    body = _transaction_body(inputs, outputs, fee, ttl)
    tx = Transaction(body, TransactionWitnessSet(vkey_witnesses=[_DUMMY_WITNESS]))
    return len(tx.to_cbor())


def calculate_fee(size: int, params: ProtocolParameters) -> int:
    """Linear minimum fee for a transaction of ``size`` bytes."""
    return params.min_fee_a * size + params.min_fee_b


class TransactionBuilder:
    """
    Builds balanced payroll transactions.

    Every available UTXO of the funding address is consumed; leftover value
    returns to the funding address as change when it is large enough to form
    a valid output, and is otherwise added to the fee.
    """

    def __init__(self, change_address: str, validity_window: int = 1000):
        """
        Initialize the transaction builder.

        Args:
            change_address: Funding address that receives the change output
            validity_window: Slots added to the chain tip to form the TTL
        """
        self.change_address = change_address
        self.validity_window = validity_window
        self._change_network = self._parse_address(change_address).network

    def build(
        self,
        utxos: Sequence[UnspentOutput],
        recipients: Sequence[Recipient],
        params: ProtocolParameters,
        tip_slot: int,
    ) -> TransactionDraft:
        """
        Build a balanced transaction paying every recipient.

        Args:
            utxos: UTXO snapshot of the funding address
            recipients: Recipients to pay, in output order
            params: Protocol parameters for this run
            tip_slot: Current chain tip slot

        Returns:
            Balanced transaction draft

        Raises:
            InvalidPayrollError: Empty recipients or UTXOs, or a bad recipient
            InsufficientFunds: The UTXO total cannot cover recipients plus fee
            SerializationLimitExceeded: The result exceeds protocol size limits
        """
        self._validate(utxos, recipients)

        inputs = tuple(utxos)
        payments = [PaymentOutput(r.address, r.amount) for r in recipients]
        total_in = sum(u.value for u in inputs)
        total_out = sum(p.amount for p in payments)
        ttl = tip_slot + self.validity_window

        # Pass 1: recipients only.
        fee = calculate_fee(signed_size(inputs, payments, FEE_PLACEHOLDER, ttl), params)
        if total_in < total_out + fee:
            logger.warning(
                "insufficient_funds",
                available=total_in,
                required=total_out + fee,
                utxo_count=len(inputs),
            )
            raise InsufficientFunds(available=total_in, required=total_out + fee)

        # Pass 2: with a change output to the funding address.
        change_fee = calculate_fee(
            signed_size(inputs, payments + [self._change_placeholder()], FEE_PLACEHOLDER, ttl),
            params,
        )
        change = total_in - total_out - change_fee
        min_change = self.min_change_value(params)

        if change > 0 and change >= min_change:
            outputs = payments + [PaymentOutput(self.change_address, change, is_change=True)]
            fee = change_fee
        else:
            outputs = payments
            fee = total_in - total_out
            logger.debug("change_folded_into_fee", change=change, min_change=min_change)

        size = signed_size(inputs, outputs, fee, ttl)
        self._check_limits(outputs, size, params)

        draft = TransactionDraft(
            inputs=inputs,
            outputs=tuple(outputs),
            fee=fee,
            ttl=ttl,
            size=size,
        )

        logger.info(
            "payroll_transaction_built",
            inputs=len(inputs),
            recipients=len(payments),
            has_change=draft.change_output is not None,
            fee=fee,
            size=size,
            ttl=ttl,
        )
        return draft

    def estimate_fee(
        self,
        utxos: Sequence[UnspentOutput],
        recipients: Sequence[Recipient],
        params: ProtocolParameters,
        tip_slot: int,
        with_change: bool = True,
    ) -> int:
        """
        Fee the builder charges for these inputs and recipients.

        Args:
            with_change: Whether a change output is part of the transaction
        """
        outputs = [PaymentOutput(r.address, r.amount) for r in recipients]
        if with_change:
            outputs.append(self._change_placeholder())
        size = signed_size(tuple(utxos), outputs, FEE_PLACEHOLDER, tip_slot + self.validity_window)
        return calculate_fee(size, params)

    def min_change_value(self, params: ProtocolParameters) -> int:
        """Smallest change amount that still forms a valid output."""
        output_size = len(_to_tx_output(self._change_placeholder()).to_cbor())
        return params.coins_per_utxo_byte * (UTXO_ENTRY_OVERHEAD_BYTES + output_size)

    def _change_placeholder(self) -> PaymentOutput:
        return PaymentOutput(self.change_address, CHANGE_PLACEHOLDER, is_change=True)

    def _validate(
        self,
        utxos: Sequence[UnspentOutput],
        recipients: Sequence[Recipient],
    ) -> None:
        if not recipients:
            raise InvalidPayrollError("Cannot build payroll transaction with no recipients")

        if not utxos:
            raise InvalidPayrollError("No UTXOs available at the funding address")

        for recipient in recipients:
            amount = recipient.amount
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise InvalidPayrollError(
                    f"Recipient amount must be a positive integer: {recipient.address} -> {amount!r}"
                )

            address = self._parse_address(recipient.address)
            if address.network != self._change_network:
                raise InvalidPayrollError(
                    f"Recipient {recipient.address} is not on the funding address network"
                )

        for utxo in utxos:
            if utxo.value <= 0:
                raise InvalidPayrollError(f"UTXO {utxo.ref} has non-positive value")

    def _check_limits(
        self,
        outputs: Iterable[PaymentOutput],
        size: int,
        params: ProtocolParameters,
    ) -> None:
        if size > params.max_tx_size:
            raise SerializationLimitExceeded(
                f"Transaction size {size} exceeds maximum {params.max_tx_size} bytes",
                size=size,
                limit=params.max_tx_size,
            )

        for output in outputs:
            value_size = len(Value(output.amount).to_cbor())
            if value_size > params.max_val_size:
                raise SerializationLimitExceeded(
                    f"Output value for {output.address} is {value_size} bytes, "
                    f"maximum is {params.max_val_size}",
                    size=value_size,
                    limit=params.max_val_size,
                )

    @staticmethod
    def _parse_address(address: str) -> Address:
        try:
            return Address.from_primitive(address)
        except (PyCardanoException, ValueError, TypeError) as e:
            raise InvalidPayrollError(f"Invalid Cardano address: {address}") from e

