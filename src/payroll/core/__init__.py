"""
Core payroll components.

This module contains the ledger value models, the per-run status record,
the payroll service and the single-flight scheduler.
"""

from payroll.core.models import PaymentOutput, Recipient, UnspentOutput
from payroll.core.run import PayrollRun, RunStatus
from payroll.core.payroll import PayrollService
from payroll.core.scheduler import PayrollScheduler, SchedulerState

__all__ = [
    "PaymentOutput",
    "Recipient",
    "UnspentOutput",
    "PayrollRun",
    "RunStatus",
    "PayrollService",
    "PayrollScheduler",
    "SchedulerState",
]
