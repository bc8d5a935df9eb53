"""
Payroll service.

Coordinates one payroll run: fetch recipients and a fresh ledger snapshot,
build, sign, submit, and record the transaction hash.
"""

import asyncio
from typing import Callable, List, Optional

import structlog

from payroll.config import NodeProvider, PayrollConfig, get_config
from payroll.core.models import Recipient
from payroll.core.run import PayrollRun
from payroll.node.blockfrost import BlockfrostAdapter
from payroll.node.interface import NodeInterface
from payroll.node.ogmios import OgmiosAdapter
from payroll.state.interface import RecipientSource, RecordOutcome, TransactionLog
from payroll.tx.builder import TransactionBuilder, TransactionDraft
from payroll.tx.signer import SigningError, TransactionSigner
from payroll.tx.submitter import TransactionSubmitter

logger = structlog.get_logger(__name__)


class PayrollService:
    """
    Runs the payroll pipeline.

    Every run works from its own snapshot: recipients, protocol parameters,
    chain tip and funding UTXOs are fetched at the start and dropped at the
    end. The only durable output is the recorded transaction hash.

    The service does not guard against concurrent runs; callers go through
    ``PayrollScheduler.trigger``, which allows one run at a time.

    Usage:
        ```python
        service = PayrollService(recipient_source=db, transaction_log=db)
        await service.initialize()
        tx_hash = await service.run_payroll()
        ```
    """

    def __init__(
        self,
        recipient_source: RecipientSource,
        transaction_log: TransactionLog,
        config: Optional[PayrollConfig] = None,
        node: Optional[NodeInterface] = None,
        signer: Optional[TransactionSigner] = None,
    ):
        """
        Initialize the payroll service.

        Args:
            recipient_source: Supplies the recipients of each run
            transaction_log: Records submitted transaction hashes
            config: Payroll configuration
            node: Custom node interface (auto-created based on config if not provided)
            signer: Funding wallet signer (loaded from config if not provided)
        """
        self.config = config or get_config()
        self.recipient_source = recipient_source
        self.transaction_log = transaction_log

        # Initialize node interface
        if node:
            self.node = node
        elif self.config.node_provider == NodeProvider.OGMIOS:
            self.node = OgmiosAdapter(self.config)
        else:
            self.node = BlockfrostAdapter(self.config)

        self.signer = signer
        self._builder: Optional[TransactionBuilder] = None
        self._submitter: Optional[TransactionSubmitter] = None

        self._initialized = False
        self._last_run: Optional[PayrollRun] = None
        self._on_run_finished: Optional[Callable[[PayrollRun], None]] = None

    async def initialize(self) -> None:
        """
        Connect to the node and prepare the pipeline components.

        Must be called before running payroll.
        """
        if self._initialized:
            return

        await self.node.connect()

        if self.signer is None:
            self.signer = TransactionSigner(self.config)
            self.signer.load_from_config()

        if not self.signer.is_loaded:
            raise SigningError("Signer key not loaded")

        self._builder = TransactionBuilder(
            change_address=self.signer.address_str,
            validity_window=self.config.validity_window_slots,
        )
        self._submitter = TransactionSubmitter(self.node, self.config)

        self._initialized = True
        logger.info("payroll_initialized", funding_address=self.funding_address[:30] + "...")

    async def shutdown(self) -> None:
        """Disconnect from the node."""
        await self.node.disconnect()
        self._initialized = False
        logger.info("payroll_shutdown")

    @property
    def funding_address(self) -> Optional[str]:
        return self.signer.address_str if self.signer else None

    @property
    def builder(self) -> Optional[TransactionBuilder]:
        return self._builder

    @property
    def last_run(self) -> Optional[PayrollRun]:
        return self._last_run

    async def run_payroll(self, trigger: str = "manual") -> Optional[str]:
        """
        Run payroll once.

        Returns:
            Hash of the recorded transaction, or None when there were no
            active recipients or the run failed
        """
        run = await self.execute(trigger)
        return run.tx_hash if run.succeeded else None

    async def execute(self, trigger: str = "manual") -> PayrollRun:
        """
        Run payroll once and report the outcome.

        Component errors are logged and stored on the returned run; they
        never propagate to the caller.
        """
        run = PayrollRun(trigger=trigger)
        self._last_run = run
        log = logger.bind(run_id=run.run_id[:8], trigger=trigger)
        log.info("payroll_run_started")

        try:
            if not self._initialized:
                await self.initialize()
            await self._run(run, log)
        except Exception as e:
            stage = run.status.value
            run.mark_failed(e)
            log.error(
                "payroll_run_failed",
                stage=stage,
                error_type=run.error_type,
                error=run.error_message,
                tx_hash=run.tx_hash,
            )

        if self._on_run_finished:
            self._on_run_finished(run)

        return run

    async def _run(self, run: PayrollRun, log) -> None:
        recipients = await self.recipient_source.get_active_recipients()

        if not recipients:
            run.mark_skipped()
            log.info("payroll_run_skipped", reason="no_active_recipients")
            return

        run.mark_building(len(recipients), _total(recipients))

        params, tip_slot, utxos = await asyncio.gather(
            self.node.get_protocol_parameters(),
            self.node.get_tip_slot(),
            self.node.get_utxos_at_address(self.funding_address),
        )
        log.info(
            "ledger_snapshot_fetched",
            utxo_count=len(utxos),
            tip_slot=tip_slot,
            recipients=len(recipients),
        )

        draft = self._builder.build(utxos, recipients, params, tip_slot)

        run.mark_signing(draft.fee)
        signed = self.signer.sign(draft)
        # Known before submission so a failed run still reports it.
        run.tx_hash = signed.tx_hash

        run.mark_submitting()
        tx_hash = await self._submitter.submit(signed)
        run.tx_hash = tx_hash

        outcome = await self._record(tx_hash, draft, log)
        run.mark_recorded(tx_hash, already_recorded=outcome == RecordOutcome.ALREADY_EXISTS)

        log.info(
            "payroll_run_completed",
            tx_hash=tx_hash,
            fee=draft.fee,
            total_amount=draft.recipient_total,
            record=outcome.value,
        )

    async def _record(self, tx_hash: str, draft: TransactionDraft, log) -> RecordOutcome:
        """
        Record an accepted transaction hash, retrying on failure.

        Recording is idempotent, so a retry after a write that did land
        comes back as ALREADY_EXISTS.
        """
        attempts = self.config.record_max_retries

        for attempt in range(1, attempts + 1):
            try:
                return await self.transaction_log.record_transaction_hash(
                    tx_hash,
                    fee=draft.fee,
                    total_amount=draft.recipient_total,
                    recipient_count=len(draft.recipient_outputs),
                )
            except Exception as e:
                if attempt == attempts:
                    # On chain but not in the log: needs manual reconciliation.
                    log.error(
                        "accepted_tx_not_recorded",
                        tx_hash=tx_hash,
                        fee=draft.fee,
                        total_amount=draft.recipient_total,
                        error=str(e),
                    )
                    raise
                log.warning(
                    "tx_record_retry",
                    tx_hash=tx_hash,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                )
                await asyncio.sleep(self.config.submit_retry_delay_seconds * attempt)

    def on_run_finished(self, callback: Callable[[PayrollRun], None]) -> None:
        """Register callback for finished runs (success or failure)."""
        self._on_run_finished = callback


def _total(recipients: List[Recipient]) -> int:
    return sum(r.amount for r in recipients)
