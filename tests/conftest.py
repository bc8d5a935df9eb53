"""
Pytest configuration and shared fixtures for the test suite.
"""

import asyncio
from typing import List, Optional

import pytest
import pytest_asyncio
from pycardano import Address, Network, PaymentSigningKey, PaymentVerificationKey

from payroll.config import NetworkType, NodeProvider, PayrollConfig
from payroll.core.models import Recipient, UnspentOutput
from payroll.node.interface import ChainTip, NodeInterface, ProtocolParameters, transaction_hash
from payroll.state.database import Database
from payroll.tx.signer import generate_key


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_config(tmp_path) -> PayrollConfig:
    """Create a test configuration."""
    return PayrollConfig(
        network=NetworkType.PREPROD,
        node_provider=NodeProvider.BLOCKFROST,
        blockfrost_project_id="test_project_id",
        funding_address=None,
        signing_key_path=None,
        signing_key_cbor=None,
        signing_key_hex=None,
        submit_max_retries=3,
        submit_retry_delay_seconds=0,
        submit_timeout_seconds=5,
        schedule_interval_seconds=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'payroll.db'}",
        log_level="DEBUG",
    )


# ============================================================================
# Test Data Generators
# ============================================================================

def generate_test_tx_hash(index: int = 0) -> str:
    """Generate a deterministic test transaction hash."""
    base = "abcd1234" * 8  # 64 chars
    return base[:60] + f"{index:04d}"


def generate_test_address(network: Network = Network.TESTNET) -> str:
    """Generate a valid enterprise address for a fresh random key."""
    vkey = PaymentVerificationKey.from_signing_key(PaymentSigningKey.generate())
    return str(Address(vkey.hash(), network=network))


TEST_PROTOCOL_PARAMETERS = ProtocolParameters(
    min_fee_a=44,
    min_fee_b=155381,
    max_tx_size=16384,
    max_val_size=5000,
    coins_per_utxo_byte=4310,
    key_deposit=2_000_000,
    pool_deposit=500_000_000,
)

TEST_TIP_SLOT = 12_345_678


@pytest.fixture
def tip_slot() -> int:
    return TEST_TIP_SLOT


@pytest.fixture
def make_address():
    """Factory for valid addresses on a given network."""
    return generate_test_address


@pytest.fixture
def make_utxo():
    """Factory for single UTXOs of a given value."""
    def _make(value: int, index: int = 0) -> UnspentOutput:
        return UnspentOutput(
            transaction_id=generate_test_tx_hash(index),
            output_index=0,
            value=value,
        )
    return _make


@pytest.fixture
def protocol_params() -> ProtocolParameters:
    """Protocol parameters matching preprod."""
    return TEST_PROTOCOL_PARAMETERS


@pytest.fixture
def recipient_addresses() -> List[str]:
    """Three testnet recipient addresses."""
    return [generate_test_address() for _ in range(3)]


@pytest.fixture
def sample_recipients(recipient_addresses) -> List[Recipient]:
    """Two recipients paid 1.5 and 2 ADA."""
    return [
        Recipient(address=recipient_addresses[0], amount=1_500_000),
        Recipient(address=recipient_addresses[1], amount=2_000_000),
    ]


@pytest.fixture
def sample_utxo() -> UnspentOutput:
    """A single 5 ADA UTXO."""
    return UnspentOutput(
        transaction_id=generate_test_tx_hash(0),
        output_index=0,
        value=5_000_000,
    )


@pytest.fixture
def sample_utxos() -> List[UnspentOutput]:
    """Five UTXOs holding 5, 10, 15, 20 and 25 ADA."""
    return [
        UnspentOutput(
            transaction_id=generate_test_tx_hash(i),
            output_index=i % 2,
            value=(i + 1) * 5_000_000,
        )
        for i in range(5)
    ]


# ============================================================================
# Mock Node Interface
# ============================================================================

class MockNodeInterface(NodeInterface):
    """Mock node interface for testing."""

    def __init__(self):
        self.utxos: List[UnspentOutput] = []
        self.protocol_params = TEST_PROTOCOL_PARAMETERS
        self.tip_slot = TEST_TIP_SLOT

        self.submitted_txs: List[str] = []
        self.submit_calls = 0
        self.query_calls = 0
        self.lookup_calls = 0

        # Consumed one per submit call: an exception to raise, or None
        self.submit_errors: List[Optional[Exception]] = []
        # Consumed one per submit call: seconds to wait before answering
        self.submit_delays: List[float] = []

        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def get_protocol_parameters(self) -> ProtocolParameters:
        self.query_calls += 1
        return self.protocol_params

    async def get_chain_tip(self) -> ChainTip:
        self.query_calls += 1
        return ChainTip(
            slot=self.tip_slot,
            block_hash="abc123" * 10 + "abcd",
            block_height=100000,
        )

    async def get_utxos_at_address(self, address: str) -> List[UnspentOutput]:
        self.query_calls += 1
        return list(self.utxos)

    async def submit_transaction(self, tx_cbor: bytes) -> str:
        self.submit_calls += 1

        if self.submit_delays:
            await asyncio.sleep(self.submit_delays.pop(0))

        if self.submit_errors:
            error = self.submit_errors.pop(0)
            if error is not None:
                raise error

        tx_hash = transaction_hash(tx_cbor)
        self.submitted_txs.append(tx_hash)
        return tx_hash

    async def get_transaction(self, tx_hash: str) -> Optional[dict]:
        self.lookup_calls += 1
        if tx_hash in self.submitted_txs:
            return {"hash": tx_hash}
        return None


@pytest.fixture
def mock_node() -> MockNodeInterface:
    """Create a mock node interface."""
    return MockNodeInterface()


@pytest.fixture
def mock_node_with_utxo(mock_node, sample_utxo) -> MockNodeInterface:
    """Create a mock node holding one 5 ADA UTXO."""
    mock_node.utxos.append(sample_utxo)
    return mock_node


# ============================================================================
# Test Signer
# ============================================================================

@pytest.fixture
def test_signer(test_config):
    """Create a test signer with a random key."""
    return generate_key(test_config)


# ============================================================================
# Database
# ============================================================================

@pytest_asyncio.fixture
async def database(test_config):
    """Connected database in a temporary SQLite file."""
    db = Database(test_config)
    await db.connect()
    yield db
    await db.disconnect()
