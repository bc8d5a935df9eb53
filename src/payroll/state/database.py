"""
Database module for persistent state storage.

Uses SQLAlchemy for async database operations with SQLite by default.
Holds the payroll recipients and the write-once transaction log.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from payroll.config import PayrollConfig, get_config
from payroll.core.models import Recipient
from payroll.state.interface import (
    PersistenceConflict,
    RecipientSource,
    TransactionLog,
    load_recipients_file,
)

logger = structlog.get_logger(__name__)

Base = declarative_base()

# Columns a recipient update may touch
RECIPIENT_FIELDS = ("address", "amount", "active")


class RecipientRecord(Base):
    """Database model for payroll recipients."""

    __tablename__ = "payroll_recipients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(String(150), nullable=False)
    amount = Column(BigInteger, nullable=False)  # lovelace
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_recipient(self) -> Recipient:
        return Recipient(address=self.address, amount=int(self.amount))


class TransactionRecord(Base):
    """Database model for submitted payroll transactions."""

    __tablename__ = "payroll_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tx_hash = Column(String(64), nullable=False, unique=True)

    fee = Column(BigInteger, nullable=True)
    total_amount = Column(BigInteger, nullable=True)
    recipient_count = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class Database(RecipientSource, TransactionLog):
    """
    Async database interface for state persistence.

    Serves as the recipient source and the transaction log of a payroll run,
    and backs the recipient management API.
    """

    def __init__(self, config: Optional[PayrollConfig] = None):
        """
        Initialize database connection.

        Args:
            config: Payroll configuration
        """
        self.config = config or get_config()
        self._engine = None
        self._session_factory = None

    async def connect(self) -> None:
        """Initialize database connection and create tables."""
        self._engine = create_async_engine(
            self.config.database_url,
            echo=False,
        )

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        # Create tables
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("database_connected", url=self.config.database_url.split("///")[0])

        if self.config.recipients_seed_file:
            await self.seed_recipients(load_recipients_file(self.config.recipients_seed_file))

    async def disconnect(self) -> None:
        """Close database connection."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("database_disconnected")

    def _get_session(self) -> AsyncSession:
        """Get a new database session."""
        if not self._session_factory:
            raise RuntimeError("Database not connected")
        return self._session_factory()

    # Recipient operations

    async def list_recipients(self) -> List[RecipientRecord]:
        """Load all recipients ordered by id."""
        async with self._get_session() as session:
            result = await session.execute(
                select(RecipientRecord).order_by(RecipientRecord.id)
            )
            return list(result.scalars().all())

    async def get_recipient(self, recipient_id: int) -> Optional[RecipientRecord]:
        """Load a recipient by id."""
        async with self._get_session() as session:
            return await session.get(RecipientRecord, recipient_id)

    async def create_recipient(
        self,
        address: str,
        amount: int,
        active: bool = True,
    ) -> RecipientRecord:
        """Create a recipient; ``amount`` is in lovelace."""
        async with self._get_session() as session:
            record = RecipientRecord(address=address, amount=amount, active=active)
            session.add(record)
            await session.commit()

        logger.info("recipient_created", recipient_id=record.id, address=address[:20] + "...")
        return record

    async def update_recipient(
        self,
        recipient_id: int,
        fields: Dict[str, Any],
    ) -> Optional[RecipientRecord]:
        """
        Update the given fields of a recipient.

        Only keys present in ``fields`` are written.

        Returns:
            The updated record, or None if it does not exist
        """
        unknown = set(fields) - set(RECIPIENT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown recipient fields: {sorted(unknown)}")

        async with self._get_session() as session:
            record = await session.get(RecipientRecord, recipient_id)
            if not record:
                return None

            for name, value in fields.items():
                setattr(record, name, value)
            record.updated_at = datetime.utcnow()

            await session.commit()

        logger.info("recipient_updated", recipient_id=recipient_id, fields=sorted(fields))
        return record

    async def delete_recipient(self, recipient_id: int) -> bool:
        """Delete a recipient. Returns True if a row was removed."""
        async with self._get_session() as session:
            record = await session.get(RecipientRecord, recipient_id)
            if not record:
                return False

            await session.delete(record)
            await session.commit()

        logger.info("recipient_deleted", recipient_id=recipient_id)
        return True

    async def seed_recipients(self, recipients: Iterable[Recipient]) -> int:
        """Insert recipients if the table is empty. Returns the number inserted."""
        async with self._get_session() as session:
            count = await session.scalar(select(func.count()).select_from(RecipientRecord))
            if count:
                return 0

            records = [
                RecipientRecord(address=r.address, amount=r.amount, active=True)
                for r in recipients
            ]
            session.add_all(records)
            await session.commit()

        logger.info("recipients_seeded", count=len(records))
        return len(records)

    async def get_active_recipients(self) -> List[Recipient]:
        """Load the active recipients in payment order."""
        async with self._get_session() as session:
            result = await session.execute(
                select(RecipientRecord)
                .where(RecipientRecord.active.is_(True))
                .order_by(RecipientRecord.id)
            )
            return [r.to_recipient() for r in result.scalars().all()]

    # Transaction log operations

    async def insert_transaction_hash(
        self,
        tx_hash: str,
        fee: Optional[int] = None,
        total_amount: Optional[int] = None,
        recipient_count: Optional[int] = None,
        recorded_at: Optional[datetime] = None,
    ) -> None:
        """Insert a transaction hash; the unique constraint rejects duplicates."""
        async with self._get_session() as session:
            session.add(
                TransactionRecord(
                    tx_hash=tx_hash,
                    fee=fee,
                    total_amount=total_amount,
                    recipient_count=recipient_count,
                    created_at=recorded_at or datetime.utcnow(),
                )
            )
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.info("transaction_already_recorded", tx_hash=tx_hash)
                raise PersistenceConflict(tx_hash) from e

        logger.info("transaction_recorded", tx_hash=tx_hash)

    async def get_transaction(self, tx_hash: str) -> Optional[TransactionRecord]:
        """Load a transaction record by hash."""
        async with self._get_session() as session:
            result = await session.execute(
                select(TransactionRecord).where(TransactionRecord.tx_hash == tx_hash)
            )
            return result.scalar_one_or_none()

    async def list_transactions(self, limit: Optional[int] = None) -> List[TransactionRecord]:
        """Load recorded transactions, newest first."""
        async with self._get_session() as session:
            query = select(TransactionRecord).order_by(
                TransactionRecord.created_at.desc(),
                TransactionRecord.id.desc(),
            )
            if limit:
                query = query.limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def count_transactions(self, tx_hash: Optional[str] = None) -> int:
        """Count recorded transactions, optionally for one hash."""
        async with self._get_session() as session:
            query = select(func.count()).select_from(TransactionRecord)
            if tx_hash:
                query = query.where(TransactionRecord.tx_hash == tx_hash)
            return int(await session.scalar(query))


async def init_database(config: Optional[PayrollConfig] = None) -> Database:
    """
    Initialize and connect to the database.

    Args:
        config: Payroll configuration

    Returns:
        Connected Database instance
    """
    db = Database(config)
    await db.connect()
    return db
