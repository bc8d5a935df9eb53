"""
State management module.

Provides the recipient source and transaction log collaborators,
backed by a SQLAlchemy database.
"""

from payroll.state.interface import (
    PersistenceConflict,
    RecipientSource,
    RecordOutcome,
    StaticRecipientSource,
    TransactionLog,
)
from payroll.state.database import Database, init_database

__all__ = [
    "RecipientSource",
    "TransactionLog",
    "RecordOutcome",
    "PersistenceConflict",
    "StaticRecipientSource",
    "Database",
    "init_database",
]
