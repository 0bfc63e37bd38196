"""
Tests for the record store: Mongo fetch/update and subscription delivery.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from services.record_store import (
    MongoRecordStore,
    RecordNotFoundError,
    RecordStoreError,
)


def _db_with(find_one=None, update_one=None):
    db = MagicMock()
    db.accounts.find_one = find_one or AsyncMock(return_value=None)
    db.accounts.update_one = update_one or AsyncMock(return_value=MagicMock(matched_count=1))
    return db


class TestMongoRecordStore:

    @pytest.mark.asyncio
    async def test_fetch_projects_requested_fields(self):
        doc = {"account_id": "ACC-1", "credit_decision": "Pending"}
        db = _db_with(find_one=AsyncMock(return_value=doc))
        with patch("services.record_store.database.get_db", return_value=db):
            result = await MongoRecordStore().fetch("ACC-1", ["credit_decision"])
        assert result == doc
        query, projection = db.accounts.find_one.call_args[0]
        assert query == {"account_id": "ACC-1"}
        assert projection == {"_id": 0, "account_id": 1, "credit_decision": 1}

    @pytest.mark.asyncio
    async def test_fetch_missing_record(self):
        db = _db_with()
        with patch("services.record_store.database.get_db", return_value=db):
            with pytest.raises(RecordNotFoundError):
                await MongoRecordStore().fetch("ACC-404", ["name"])

    @pytest.mark.asyncio
    async def test_fetch_driver_error_is_wrapped(self):
        db = _db_with(find_one=AsyncMock(side_effect=RuntimeError("socket closed")))
        with patch("services.record_store.database.get_db", return_value=db):
            with pytest.raises(RecordStoreError) as exc:
                await MongoRecordStore().fetch("ACC-1", ["name"])
        assert exc.value.record_id == "ACC-1"
        assert "socket closed" in exc.value.message

    @pytest.mark.asyncio
    async def test_update_sets_values_and_timestamp(self):
        db = _db_with()
        with patch("services.record_store.database.get_db", return_value=db):
            await MongoRecordStore().update("ACC-1", {"credit_decision": "Pending"})
        _, update = db.accounts.update_one.call_args[0]
        assert update["$set"]["credit_decision"] == "Pending"
        assert "updated_at" in update["$set"]

    @pytest.mark.asyncio
    async def test_update_unmatched_record(self):
        db = _db_with(update_one=AsyncMock(return_value=MagicMock(matched_count=0)))
        with patch("services.record_store.database.get_db", return_value=db):
            with pytest.raises(RecordNotFoundError):
                await MongoRecordStore().update("ACC-404", {"name": "x"})


class TestSubscriptions:

    @pytest.mark.asyncio
    async def test_notify_changed_refreshes_subscribers(self, memory_store):
        memory_store.records["ACC-1"] = {"name": "Jane", "credit_decision": "Pending"}
        seen = []
        memory_store.subscribe("ACC-1", ["credit_decision"], on_snapshot=seen.append)

        memory_store.records["ACC-1"]["credit_decision"] = "Full Retainer"
        await memory_store.notify_changed("ACC-1")

        assert seen == [{"account_id": "ACC-1", "credit_decision": "Full Retainer"}]

    @pytest.mark.asyncio
    async def test_async_callbacks_and_failures(self, memory_store):
        memory_store.fail_fetch = True
        failures = []

        async def on_failure(error):
            failures.append(error)

        subscription = memory_store.subscribe("ACC-1", ["name"], on_snapshot=MagicMock(), on_failure=on_failure)
        assert await subscription.refresh() is None
        assert len(failures) == 1
        assert isinstance(subscription.last_error, RecordStoreError)

    @pytest.mark.asyncio
    async def test_cancelled_subscription_receives_nothing(self, memory_store):
        memory_store.records["ACC-1"] = {"name": "Jane"}
        on_snapshot = MagicMock()
        subscription = memory_store.subscribe("ACC-1", ["name"], on_snapshot=on_snapshot)

        subscription.cancel()
        await memory_store.notify_changed("ACC-1")
        await subscription.refresh()

        on_snapshot.assert_not_called()
        assert memory_store.subscriber_count("ACC-1") == 0

    @pytest.mark.asyncio
    async def test_notify_changed_never_raises(self, memory_store):
        memory_store.records["ACC-1"] = {"name": "Jane"}
        memory_store.subscribe("ACC-1", ["name"], on_snapshot=MagicMock(side_effect=ValueError("bad handler")))

        await memory_store.notify_changed("ACC-1")
