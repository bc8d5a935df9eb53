"""
Abstract interface for Cardano node integration.

Defines the contract for blockchain access that all node adapters must implement,
and the classification of network failures seen during submission.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from pycardano import Transaction

from payroll.core.models import UnspentOutput
from payroll.exceptions import PayrollError


@dataclass(frozen=True)
class ProtocolParameters:
    """Protocol parameters needed to assemble a payment transaction."""
    min_fee_a: int                     # Fee coefficient (per byte)
    min_fee_b: int                     # Fee constant
    max_tx_size: int                   # Maximum transaction size in bytes
    max_val_size: int                  # Maximum serialized value size
    coins_per_utxo_byte: int           # Min lovelace per UTXO byte
    key_deposit: int = 2_000_000       # Key registration deposit
    pool_deposit: int = 500_000_000    # Pool registration deposit


@dataclass(frozen=True)
class ChainTip:
    """Current chain tip information."""
    slot: int
    block_hash: str
    block_height: int


class NetworkTransientError(PayrollError):
    """
    Transport-level failure: timeout, connection reset, 5xx, rate limit.

    No ledger state is assumed to have changed; the same bytes may be resent.
    """
    pass


class NetworkRejection(PayrollError):
    """
    The network validated the transaction and refused it.

    Fatal for the draft: it must be rebuilt from a fresh UTXO snapshot
    rather than resubmitted.
    """

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code


class NodeRequestError(PayrollError):
    """
    The provider refused a query outright: bad credentials, malformed request.

    Resending the same request will not help.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# Substrings a node or API uses to report that a transaction is already
# in the mempool or on chain.
_DUPLICATE_MARKERS = (
    "already known",
    "alreadyknown",
    "already in mempool",
    "already been included",
    "duplicate",
)


def is_duplicate_submission(message: str) -> bool:
    """Check whether a rejection message means the tx was already accepted."""
    lowered = message.lower()
    return any(marker in lowered for marker in _DUPLICATE_MARKERS)


def transaction_hash(tx_cbor: bytes) -> str:
    """Hash of a serialized transaction, i.e. the hash of its body."""
    return Transaction.from_cbor(tx_cbor).transaction_body.hash().hex()


class NodeInterface(ABC):
    """
    Abstract interface for Cardano node access.

    This interface defines the blockchain operations needed by a payroll run:
    - UTXO queries for the funding address
    - Protocol parameters and chain tip
    - Transaction submission
    - Transaction lookup
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish connection to the node/API.

        Raises:
            NetworkTransientError: If connection cannot be established
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the node/API."""
        pass

    @abstractmethod
    async def get_protocol_parameters(self) -> ProtocolParameters:
        """
        Get current protocol parameters.

        Returns:
            Current protocol parameters from the network

        Raises:
            NetworkTransientError: Provider unreachable or overloaded
            NodeRequestError: Provider refused the request
        """
        pass

    @abstractmethod
    async def get_chain_tip(self) -> ChainTip:
        """
        Get current chain tip.

        Returns:
            Current chain tip information
        """
        pass

    @abstractmethod
    async def get_utxos_at_address(self, address: str) -> List[UnspentOutput]:
        """
        Get the spendable ADA-only UTXOs at a given address.

        Outputs carrying native assets are left out; spending them would
        require returning the assets in a change output.

        Args:
            address: Bech32 encoded address

        Returns:
            List of UTXOs at the address
        """
        pass

    @abstractmethod
    async def submit_transaction(self, tx_cbor: bytes) -> str:
        """
        Submit a signed transaction to the network.

        The bytes are sent as given. A submission the network reports as
        already known is a success.

        Args:
            tx_cbor: Serialized signed transaction

        Returns:
            Transaction hash

        Raises:
            NetworkTransientError: Transport failure, safe to resend
            NetworkRejection: Validation failure, rebuild required
        """
        pass

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> Optional[dict]:
        """
        Look up a transaction on chain by hash.

        Used to settle whether a transaction whose submission outcome was
        unclear has landed.

        Args:
            tx_hash: Transaction hash

        Returns:
            Transaction details if found, None otherwise
        """
        pass

    async def get_tip_slot(self) -> int:
        """Get the slot of the current chain tip."""
        tip = await self.get_chain_tip()
        return tip.slot
