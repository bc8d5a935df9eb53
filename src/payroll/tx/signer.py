"""
Transaction Signer - handles transaction signing.

Manages the funding wallet's signing key and produces the single vkey
witness that authorizes spending the funding address's UTXOs.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from pycardano import (
    Address,
    Network,
    PaymentSigningKey,
    PaymentVerificationKey,
    Transaction,
    TransactionWitnessSet,
    VerificationKeyWitness,
)
from pycardano.exception import PyCardanoException

from payroll.config import PayrollConfig, get_config
from payroll.exceptions import PayrollError
from payroll.tx.builder import TransactionDraft

logger = structlog.get_logger(__name__)


class SigningError(PayrollError):
    """Raised when a draft cannot be signed with the configured key."""
    pass


@dataclass(frozen=True)
class SignedTransaction:
    """A signed payroll transaction, ready for submission."""

    transaction: Transaction
    serialized: bytes
    tx_hash: str

    @property
    def witness(self) -> VerificationKeyWitness:
        return self.transaction.transaction_witness_set.vkey_witnesses[0]

    @property
    def cbor_hex(self) -> str:
        return self.serialized.hex()


class TransactionSigner:
    """
    Handles transaction signing with the funding wallet's key.

    Supports loading keys from:
    - File path (standard Cardano signing key format)
    - CBOR-encoded key (for environment variable configuration)
    - Raw 32-byte ed25519 key in hex

    The funding address defaults to the enterprise address of the key. When
    an explicit funding address is configured, its payment credential must
    match the key.
    """

    def __init__(self, config: Optional[PayrollConfig] = None):
        """
        Initialize the transaction signer.

        Args:
            config: Payroll configuration
        """
        self.config = config or get_config()
        self._signing_key: Optional[PaymentSigningKey] = None
        self._verification_key: Optional[PaymentVerificationKey] = None
        self._address: Optional[Address] = None

    def load_key_from_file(self, key_path: str) -> None:
        """
        Load signing key from a file.

        Args:
            key_path: Path to the signing key file
        """
        path = Path(key_path)
        if not path.exists():
            raise FileNotFoundError(f"Signing key file not found: {key_path}")

        self._set_key(PaymentSigningKey.load(str(path)))
        logger.info("signing_key_loaded", path=key_path, address=self._short_address())

    def load_key_from_cbor(self, cbor_hex: str) -> None:
        """
        Load signing key from CBOR hex string.

        Args:
            cbor_hex: CBOR-encoded signing key in hex (``5820...``)
        """
        self._set_key(PaymentSigningKey.from_cbor(cbor_hex))
        logger.info("signing_key_loaded_from_cbor", address=self._short_address())

    def load_key_from_hex(self, key_hex: str) -> None:
        """
        Load a raw ed25519 signing key.

        Args:
            key_hex: 32-byte private key in hex
        """
        key_bytes = bytes.fromhex(key_hex)
        if len(key_bytes) != 32:
            raise ValueError(f"Expected a 32-byte key, got {len(key_bytes)} bytes")

        self._set_key(PaymentSigningKey(key_bytes))
        logger.info("signing_key_loaded_from_hex", address=self._short_address())

    def load_from_config(self) -> None:
        """Load signing key from configuration."""
        if self.config.signing_key_path:
            self.load_key_from_file(self.config.signing_key_path)
        elif self.config.signing_key_cbor:
            self.load_key_from_cbor(self.config.signing_key_cbor)
        elif self.config.signing_key_hex:
            self.load_key_from_hex(self.config.signing_key_hex)
        else:
            raise ValueError("No signing key configured")

    def _set_key(self, signing_key: PaymentSigningKey) -> None:
        self._signing_key = signing_key
        self._verification_key = PaymentVerificationKey.from_signing_key(signing_key)
        self._derive_address()

    def _derive_address(self) -> None:
        """Resolve the funding address for the loaded key."""
        if not self._verification_key:
            return

        if self.config.funding_address:
            self._address = Address.from_primitive(self.config.funding_address)
        else:
            network = Network.MAINNET if self.config.is_mainnet else Network.TESTNET
            self._address = Address(self._verification_key.hash(), network=network)

    def _short_address(self) -> Optional[str]:
        return str(self._address)[:30] + "..." if self._address else None

    @property
    def address(self) -> Optional[Address]:
        """Get the funding address."""
        return self._address

    @property
    def address_str(self) -> Optional[str]:
        """Get the funding address as string."""
        return str(self._address) if self._address else None

    @property
    def verification_key(self) -> Optional[PaymentVerificationKey]:
        return self._verification_key

    @property
    def signing_key(self) -> Optional[PaymentSigningKey]:
        return self._signing_key

    @property
    def is_loaded(self) -> bool:
        """Check if a signing key is loaded."""
        return self._signing_key is not None

    @property
    def key_matches_address(self) -> bool:
        """Check the key controls the funding address's payment credential."""
        if not self._verification_key or not self._address:
            return False
        return self._address.payment_part == self._verification_key.hash()

    def sign(self, draft: TransactionDraft) -> SignedTransaction:
        """
        Sign a transaction draft.

        Args:
            draft: Balanced draft produced by the transaction builder

        Returns:
            Signed transaction carrying a single vkey witness

        Raises:
            SigningError: If no key is loaded or the key does not match
                the funding address
        """
        if not self._signing_key:
            raise SigningError("No signing key loaded")

        if not self.key_matches_address:
            raise SigningError(
                f"Signing key does not control funding address {self.address_str}"
            )

        tx_body = draft.to_transaction_body()
        body_hash = tx_body.hash()

        try:
            signature = self._signing_key.sign(body_hash)
        except PyCardanoException as e:
            raise SigningError(f"Failed to sign transaction: {e}") from e

        vkey_witness = VerificationKeyWitness(self._verification_key, signature)
        witness_set = TransactionWitnessSet(vkey_witnesses=[vkey_witness])
        signed_tx = Transaction(tx_body, witness_set)

        tx_hash = body_hash.hex()
        logger.debug("transaction_signed", tx_hash=tx_hash[:16] + "...")

        return SignedTransaction(
            transaction=signed_tx,
            serialized=signed_tx.to_cbor(),
            tx_hash=tx_hash,
        )


def generate_key(config: Optional[PayrollConfig] = None) -> TransactionSigner:
    """
    Generate a new random signing key.

    The key is not persisted; use ``signer.signing_key.save(path)`` to keep it.

    Returns:
        TransactionSigner with a new random key
    """
    signer = TransactionSigner(config)
    signer._set_key(PaymentSigningKey.generate())

    logger.debug("signing_key_generated", address=signer._short_address())

    return signer
