"""
Transaction Submitter - sends signed transactions to the network.

Transient failures are retried with the same bytes: the transaction hash is
fixed by its body, so a resend of an already-accepted transaction is reported
as a duplicate and treated as success. Rejections are never retried.

A timeout or dropped connection leaves the first copy's fate unknown. If a
later attempt is then rejected, the rejection may come from that copy having
spent the inputs already, so the chain is asked before giving up.
"""

import asyncio
from typing import Optional

import structlog

from payroll.config import PayrollConfig, get_config
from payroll.node.interface import NetworkRejection, NetworkTransientError, NodeInterface
from payroll.tx.signer import SignedTransaction

logger = structlog.get_logger(__name__)


class TransactionSubmitter:
    """Submits signed transactions, classifying and retrying failures."""

    def __init__(
        self,
        node: NodeInterface,
        config: Optional[PayrollConfig] = None,
    ):
        """
        Initialize the submitter.

        Args:
            node: Node interface used for submission
            config: Payroll configuration (retry and timeout settings)
        """
        self.node = node
        self.config = config or get_config()
        self.max_attempts = self.config.submit_max_retries
        self.retry_delay = self.config.submit_retry_delay_seconds
        self.timeout = self.config.submit_timeout_seconds

    async def submit(self, signed: SignedTransaction) -> str:
        """
        Submit a signed transaction.

        Args:
            signed: Transaction produced by the signer

        Returns:
            Transaction hash assigned by the network

        Raises:
            NetworkTransientError: Every attempt failed in transport
            NetworkRejection: The network refused the transaction
        """
        last_error: Optional[NetworkTransientError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                tx_hash = await asyncio.wait_for(
                    self.node.submit_transaction(signed.serialized),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                # The network may still accept the transaction.
                last_error = NetworkTransientError(
                    f"No response to submission within {self.timeout}s"
                )
            except NetworkTransientError as e:
                last_error = e
            except NetworkRejection as e:
                logger.error(
                    "tx_rejected",
                    tx_hash=signed.tx_hash,
                    attempt=attempt,
                    error=str(e),
                    error_code=e.error_code,
                )
                if last_error is not None and await self._landed(signed):
                    return signed.tx_hash
                raise
            else:
                if tx_hash != signed.tx_hash:
                    logger.warning(
                        "tx_hash_mismatch",
                        local_hash=signed.tx_hash,
                        network_hash=tx_hash,
                    )
                logger.info("tx_accepted", tx_hash=tx_hash, attempt=attempt)
                return tx_hash

            logger.warning(
                "tx_submit_retryable_failure",
                tx_hash=signed.tx_hash,
                attempt=attempt,
                max_attempts=self.max_attempts,
                error=str(last_error),
            )
            if attempt < self.max_attempts:
                await asyncio.sleep(self.retry_delay * attempt)

        if await self._landed(signed):
            return signed.tx_hash
        raise last_error

    async def _landed(self, signed: SignedTransaction) -> bool:
        """Check whether an earlier copy of the transaction made it on chain."""
        try:
            found = await self.node.get_transaction(signed.tx_hash)
        except Exception as e:
            logger.warning("tx_lookup_failed", tx_hash=signed.tx_hash, error=str(e))
            return False

        if found is None:
            return False

        logger.info("tx_found_on_chain", tx_hash=signed.tx_hash)
        return True
