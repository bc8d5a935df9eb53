"""
Cardano Batch Payroll

Scheduled disbursement of ADA from a single funding wallet to a list of
recipients. Each payroll run assembles one balanced transaction covering
every active recipient, signs it, submits it and records its hash exactly once.
"""

__version__ = "0.1.0"

from payroll.core.models import Recipient, UnspentOutput
from payroll.core.payroll import PayrollService
from payroll.core.run import PayrollRun, RunStatus
from payroll.core.scheduler import PayrollScheduler, SchedulerState

__all__ = [
    "PayrollService",
    "PayrollScheduler",
    "SchedulerState",
    "PayrollRun",
    "RunStatus",
    "Recipient",
    "UnspentOutput",
]
