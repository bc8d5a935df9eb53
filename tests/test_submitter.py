"""
Test suite for transaction submission and failure classification.
"""

from unittest.mock import AsyncMock, patch

import pytest

from payroll.node.interface import NetworkRejection, NetworkTransientError
from payroll.tx.builder import TransactionBuilder
from payroll.tx.submitter import TransactionSubmitter


@pytest.fixture
def signed(test_signer, protocol_params, sample_utxo, sample_recipients, tip_slot):
    builder = TransactionBuilder(change_address=test_signer.address_str)
    draft = builder.build([sample_utxo], sample_recipients, protocol_params, tip_slot)
    return test_signer.sign(draft)


@pytest.fixture
def submitter(mock_node, test_config) -> TransactionSubmitter:
    return TransactionSubmitter(mock_node, test_config)


class TestSubmission:
    """Tests for successful submissions."""

    @pytest.mark.asyncio
    async def test_accepted_first_attempt(self, submitter, mock_node, signed):
        tx_hash = await submitter.submit(signed)

        assert tx_hash == signed.tx_hash
        assert mock_node.submit_calls == 1
        assert mock_node.submitted_txs == [signed.tx_hash]

    @pytest.mark.asyncio
    async def test_submits_signed_bytes(self, test_config, signed):
        node = AsyncMock()
        node.submit_transaction.return_value = signed.tx_hash

        await TransactionSubmitter(node, test_config).submit(signed)

        node.submit_transaction.assert_awaited_once_with(signed.serialized)

    @pytest.mark.asyncio
    async def test_network_hash_is_returned(self, test_config, signed):
        node = AsyncMock()
        node.submit_transaction.return_value = "ff" * 32

        tx_hash = await TransactionSubmitter(node, test_config).submit(signed)

        assert tx_hash == "ff" * 32


class TestRetries:
    """Tests for transient failure handling."""

    @pytest.mark.asyncio
    async def test_transient_then_success(self, submitter, mock_node, signed):
        mock_node.submit_errors = [NetworkTransientError("connection reset"), None]

        tx_hash = await submitter.submit(signed)

        assert tx_hash == signed.tx_hash
        assert mock_node.submit_calls == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, submitter, mock_node, signed):
        mock_node.submit_errors = [NetworkTransientError(f"503 #{i}") for i in range(3)]

        with pytest.raises(NetworkTransientError, match="503 #2"):
            await submitter.submit(signed)

        assert mock_node.submit_calls == 3
        assert mock_node.submitted_txs == []

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, test_config, mock_node, signed):
        config = test_config.model_copy(update={"submit_timeout_seconds": 0.05})
        mock_node.submit_delays = [1.0, 0.0]

        tx_hash = await TransactionSubmitter(mock_node, config).submit(signed)

        assert tx_hash == signed.tx_hash
        assert mock_node.submit_calls == 2

    @pytest.mark.asyncio
    async def test_backoff_grows_with_attempts(self, test_config, mock_node, signed):
        config = test_config.model_copy(update={"submit_retry_delay_seconds": 2.0})
        mock_node.submit_errors = [
            NetworkTransientError("timeout"),
            NetworkTransientError("timeout"),
            None,
        ]

        with patch("payroll.tx.submitter.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await TransactionSubmitter(mock_node, config).submit(signed)

        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]


class TestRejection:
    """Rejections are never retried."""

    @pytest.mark.asyncio
    async def test_rejection_not_retried(self, submitter, mock_node, signed):
        mock_node.submit_errors = [NetworkRejection("BadInputsUTxO", error_code="400")]

        with pytest.raises(NetworkRejection) as exc_info:
            await submitter.submit(signed)

        assert exc_info.value.error_code == "400"
        assert mock_node.submit_calls == 1

    @pytest.mark.asyncio
    async def test_rejection_after_transient(self, submitter, mock_node, signed):
        mock_node.submit_errors = [
            NetworkTransientError("connection reset"),
            NetworkRejection("ValueNotConserved"),
        ]

        with pytest.raises(NetworkRejection):
            await submitter.submit(signed)

        assert mock_node.submit_calls == 2

    @pytest.mark.asyncio
    async def test_rejection_first_attempt_skips_lookup(self, submitter, mock_node, signed):
        mock_node.submit_errors = [NetworkRejection("ValueNotConserved")]

        with pytest.raises(NetworkRejection):
            await submitter.submit(signed)

        assert mock_node.lookup_calls == 0


class TestReconciliation:
    """An unclear attempt followed by a rejection is settled against the chain."""

    @pytest.mark.asyncio
    async def test_landed_after_timeout_then_rejected(self, submitter, mock_node, signed):
        # First copy lands, but the answer never arrives.
        mock_node.submitted_txs.append(signed.tx_hash)
        mock_node.submit_errors = [
            NetworkTransientError("timeout"),
            NetworkRejection("BadInputsUTxO"),
        ]

        tx_hash = await submitter.submit(signed)

        assert tx_hash == signed.tx_hash
        assert mock_node.submit_calls == 2
        assert mock_node.lookup_calls == 1

    @pytest.mark.asyncio
    async def test_not_on_chain_keeps_rejection(self, submitter, mock_node, signed):
        mock_node.submit_errors = [
            NetworkTransientError("timeout"),
            NetworkRejection("BadInputsUTxO"),
        ]

        with pytest.raises(NetworkRejection, match="BadInputsUTxO"):
            await submitter.submit(signed)

        assert mock_node.lookup_calls == 1

    @pytest.mark.asyncio
    async def test_failed_lookup_keeps_rejection(self, test_config, signed):
        node = AsyncMock()
        node.submit_transaction.side_effect = [
            NetworkTransientError("connection reset"),
            NetworkRejection("BadInputsUTxO"),
        ]
        node.get_transaction.side_effect = NetworkTransientError("503")

        with pytest.raises(NetworkRejection):
            await TransactionSubmitter(node, test_config).submit(signed)

    @pytest.mark.asyncio
    async def test_landed_after_retries_exhausted(self, submitter, mock_node, signed):
        mock_node.submitted_txs.append(signed.tx_hash)
        mock_node.submit_errors = [NetworkTransientError("timeout")] * 3

        tx_hash = await submitter.submit(signed)

        assert tx_hash == signed.tx_hash
        assert mock_node.submit_calls == 3
