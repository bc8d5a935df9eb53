"""
Base exception for the payroll pipeline.

Concrete errors live next to the component that raises them:
builder errors in ``payroll.tx.builder``, ``SigningError`` in
``payroll.tx.signer``, network errors in ``payroll.node.interface`` and
``PersistenceConflict`` in ``payroll.state.interface``.
"""


class PayrollError(Exception):
    """Base class for every error raised by a payroll run."""
    pass
