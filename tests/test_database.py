"""
Test suite for the recipient store and the transaction log.
"""

import json

import pytest

from payroll.core.models import Recipient
from payroll.state.database import init_database
from payroll.state.interface import PersistenceConflict, RecordOutcome, StaticRecipientSource


class TestTransactionLog:
    """The log holds each transaction hash exactly once."""

    @pytest.mark.asyncio
    async def test_record_new_hash(self, database):
        outcome = await database.record_transaction_hash(
            "aa" * 32, fee=170_000, total_amount=3_500_000, recipient_count=2
        )

        assert outcome == RecordOutcome.INSERTED
        record = await database.get_transaction("aa" * 32)
        assert record.fee == 170_000
        assert record.total_amount == 3_500_000
        assert record.recipient_count == 2
        assert record.created_at is not None

    @pytest.mark.asyncio
    async def test_rerecording_is_a_noop(self, database):
        first = await database.record_transaction_hash("bb" * 32, fee=1)
        second = await database.record_transaction_hash("bb" * 32, fee=2)

        assert first == RecordOutcome.INSERTED
        assert second == RecordOutcome.ALREADY_EXISTS
        assert await database.count_transactions("bb" * 32) == 1
        assert (await database.get_transaction("bb" * 32)).fee == 1

    @pytest.mark.asyncio
    async def test_insert_raises_conflict(self, database):
        await database.insert_transaction_hash("cc" * 32)

        with pytest.raises(PersistenceConflict) as exc_info:
            await database.insert_transaction_hash("cc" * 32)

        assert exc_info.value.tx_hash == "cc" * 32

    @pytest.mark.asyncio
    async def test_log_usable_after_conflict(self, database):
        await database.record_transaction_hash("dd" * 32)
        await database.record_transaction_hash("dd" * 32)
        outcome = await database.record_transaction_hash("ee" * 32)

        assert outcome == RecordOutcome.INSERTED
        assert await database.count_transactions() == 2

    @pytest.mark.asyncio
    async def test_list_newest_first(self, database):
        for i in range(3):
            await database.record_transaction_hash(f"{i:02d}" * 32)

        records = await database.list_transactions()
        assert [r.tx_hash for r in records] == [f"{i:02d}" * 32 for i in (2, 1, 0)]

        limited = await database.list_transactions(limit=2)
        assert len(limited) == 2

    @pytest.mark.asyncio
    async def test_unknown_hash(self, database):
        assert await database.get_transaction("ff" * 32) is None


class TestRecipients:
    """Tests for recipient management."""

    @pytest.mark.asyncio
    async def test_create_and_list(self, database, recipient_addresses):
        created = await database.create_recipient(recipient_addresses[0], 1_500_000)

        assert created.id is not None
        assert created.active is True

        records = await database.list_recipients()
        assert [(r.address, r.amount) for r in records] == [(recipient_addresses[0], 1_500_000)]

    @pytest.mark.asyncio
    async def test_active_recipients_in_order(self, database, recipient_addresses):
        await database.create_recipient(recipient_addresses[0], 1_000_000)
        await database.create_recipient(recipient_addresses[1], 2_000_000, active=False)
        await database.create_recipient(recipient_addresses[2], 3_000_000)

        recipients = await database.get_active_recipients()

        assert recipients == [
            Recipient(recipient_addresses[0], 1_000_000),
            Recipient(recipient_addresses[2], 3_000_000),
        ]

    @pytest.mark.asyncio
    async def test_partial_update(self, database, recipient_addresses):
        created = await database.create_recipient(recipient_addresses[0], 1_000_000)

        updated = await database.update_recipient(created.id, {"amount": 2_500_000})

        assert updated.amount == 2_500_000
        assert updated.address == recipient_addresses[0]
        assert updated.active is True

    @pytest.mark.asyncio
    async def test_deactivate(self, database, recipient_addresses):
        created = await database.create_recipient(recipient_addresses[0], 1_000_000)

        await database.update_recipient(created.id, {"active": False})

        assert await database.get_active_recipients() == []

    @pytest.mark.asyncio
    async def test_update_missing(self, database):
        assert await database.update_recipient(999, {"amount": 1}) is None

    @pytest.mark.asyncio
    async def test_update_unknown_field(self, database, recipient_addresses):
        created = await database.create_recipient(recipient_addresses[0], 1_000_000)

        with pytest.raises(ValueError, match="Unknown recipient fields"):
            await database.update_recipient(created.id, {"id": 5})

    @pytest.mark.asyncio
    async def test_delete(self, database, recipient_addresses):
        created = await database.create_recipient(recipient_addresses[0], 1_000_000)

        assert await database.delete_recipient(created.id) is True
        assert await database.delete_recipient(created.id) is False
        assert await database.get_recipient(created.id) is None

    @pytest.mark.asyncio
    async def test_seed_only_when_empty(self, database, sample_recipients):
        assert await database.seed_recipients(sample_recipients) == 2
        assert await database.seed_recipients(sample_recipients) == 0
        assert len(await database.list_recipients()) == 2


class TestStaticRecipientSource:
    """Tests for the file-backed recipient source."""

    @pytest.mark.asyncio
    async def test_from_file(self, tmp_path, sample_recipients):
        path = tmp_path / "recipients.json"
        path.write_text(
            '[{"address": "%s", "amount": 1500000}, {"address": "%s", "amount": "2000000"}]'
            % (sample_recipients[0].address, sample_recipients[1].address)
        )

        source = StaticRecipientSource.from_file(str(path))

        assert await source.get_active_recipients() == sample_recipients


class TestSeeding:
    """Recipients file loaded into an empty table on connect."""

    @pytest.mark.asyncio
    async def test_connect_seeds_empty_table(self, test_config, tmp_path, sample_recipients):
        path = tmp_path / "seed.json"
        path.write_text(json.dumps([{"address": r.address, "amount": r.amount} for r in sample_recipients]))
        config = test_config.model_copy(update={"recipients_seed_file": str(path)})

        db = await init_database(config)
        try:
            assert await db.get_active_recipients() == sample_recipients
        finally:
            await db.disconnect()

        # Reconnecting does not seed again.
        db = await init_database(config)
        try:
            assert len(await db.list_recipients()) == 2
        finally:
            await db.disconnect()

    @pytest.mark.asyncio
    async def test_no_seed_file(self, database):
        assert await database.list_recipients() == []
