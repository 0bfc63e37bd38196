"""
Tests for conflict scanning and the per-session conflict monitor.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from models import AuditAction, ToastSeverity
from models.conflict import ConflictEvaluation
from services.conflict_service import (
    conflict_message,
    find_potential_conflicts,
    get_monitor,
    process_matches,
    scan_account,
)
from services.conflict_signature import ConflictAlertNotOpenError
from services.record_store import RecordNotFoundError
from services.workflow_sessions import WorkflowSession


def _accounts_db(account, matches):
    db = MagicMock()
    db.accounts.find_one = AsyncMock(return_value=account)
    cursor = MagicMock()
    cursor.limit.return_value = MagicMock(to_list=AsyncMock(return_value=matches))
    db.accounts.find = MagicMock(return_value=cursor)
    return db


def test_process_matches_shapes_rows():
    rows = [
        {"account_id": "ACC-2", "name": "Jane Doe", "mobile_phone": "555-0100"},
        {"account_id": "ACC-3", "name": "J. Doe", "email": "jane@example.com"},
    ]
    matches = process_matches(rows)
    assert [m.id for m in matches] == ["ACC-2", "ACC-3"]
    assert matches[0].subtitle == "555-0100"
    assert matches[1].subtitle == "jane@example.com"
    assert matches[0].url == "/ACC-2"


def test_process_matches_ignores_non_list():
    assert process_matches(None) == []
    assert process_matches({"account_id": "ACC-2"}) == []


def test_conflict_message_pluralization():
    assert conflict_message(1).startswith("1 potential conflict found")
    assert conflict_message(3).startswith("3 potential conflicts found")


class TestFindPotentialConflicts:

    @pytest.mark.asyncio
    async def test_query_matches_name_email_and_phone(self):
        account = {"account_id": "ACC-1", "name": "Jane Doe", "email": "Jane@Example.com", "mobile_phone": "(555) 010-0100"}
        db = _accounts_db(account, [])
        with patch("services.conflict_service.database.get_db", return_value=db):
            await find_potential_conflicts("ACC-1")

        query = db.accounts.find.call_args[0][0]
        assert query["account_id"] == {"$ne": "ACC-1"}
        criteria = query["$or"]
        assert {"email": "jane@example.com"} in criteria
        assert {"mobile_phone_digits": "5550100100"} in criteria
        assert criteria[0]["name"]["$options"] == "i"

    @pytest.mark.asyncio
    async def test_unknown_account(self):
        db = _accounts_db(None, [])
        with patch("services.conflict_service.database.get_db", return_value=db):
            with pytest.raises(RecordNotFoundError):
                await find_potential_conflicts("ACC-404")

    @pytest.mark.asyncio
    async def test_no_criteria_no_query(self):
        db = _accounts_db({"account_id": "ACC-1", "name": ""}, [])
        with patch("services.conflict_service.database.get_db", return_value=db):
            assert await find_potential_conflicts("ACC-1") == []
        db.accounts.find.assert_not_called()


class TestScanAccount:

    @pytest.mark.asyncio
    async def test_scan_updates_alert_fields(self, memory_store):
        memory_store.records["ACC-1"] = {"name": "Jane Doe"}
        db = _accounts_db(
            {"account_id": "ACC-1", "name": "Jane Doe"},
            [{"account_id": "ACC-2", "name": "Jane Doe"}, {"account_id": "ACC-3", "name": "Jane Doe"}],
        )
        with patch("services.conflict_service.database.get_db", return_value=db), \
             patch("services.conflict_service.create_audit_log", new_callable=AsyncMock) as audit:
            result = await scan_account("ACC-1", store=memory_store)

        assert result.conflict_score == 2
        assert result.conflict_alert is True
        record = memory_store.records["ACC-1"]
        assert record["conflict_alert"] is True
        assert record["conflict_score"] == 2
        assert record["conflict_alert_message"] == conflict_message(2)
        assert audit.call_args.kwargs["action"] == AuditAction.CONFLICT_SCAN_COMPLETED

    @pytest.mark.asyncio
    async def test_scan_without_matches_clears_alert(self, memory_store):
        memory_store.records["ACC-1"] = {"name": "Jane Doe", "conflict_alert": True}
        db = _accounts_db({"account_id": "ACC-1", "name": "Jane Doe"}, [])
        with patch("services.conflict_service.database.get_db", return_value=db), \
             patch("services.conflict_service.create_audit_log", new_callable=AsyncMock):
            result = await scan_account("ACC-1", store=memory_store)

        assert result.conflict_alert is False
        assert memory_store.records["ACC-1"]["conflict_alert"] is False
        assert memory_store.records["ACC-1"]["conflict_alert_message"] is None


class TestConflictMonitor:

    @pytest.mark.asyncio
    async def test_show_dismiss_then_rearm_on_score_change(self, memory_store):
        memory_store.records["ACC-1"] = {
            "conflict_alert": True,
            "conflict_alert_dismissed": False,
            "conflict_score": 2,
            "conflict_alert_message": "2 potential conflicts found with existing accounts. Please review.",
        }
        session = WorkflowSession()
        monitor = get_monitor(session, "ACC-1", store=memory_store)
        assert get_monitor(session, "ACC-1", store=memory_store) is monitor

        with patch("services.conflict_service.create_audit_log", new_callable=AsyncMock) as audit:
            assert await monitor.evaluate() == ConflictEvaluation.SHOWN
            assert monitor.tracker.state.modal_open is True

            assert await monitor.dismiss() is True
            record = memory_store.records["ACC-1"]
            assert record["conflict_alert_dismissed"] is True
            assert record["conflict_alert_signature"] == "2"
            assert audit.call_args.kwargs["action"] == AuditAction.CONFLICT_ALERT_DISMISSED

            # Another matching account appears; the subscription re-arms the alert
            record["conflict_score"] = 3
            await memory_store.notify_changed("ACC-1")

        assert monitor.last_evaluation == ConflictEvaluation.REARMED
        assert memory_store.records["ACC-1"]["conflict_alert_dismissed"] is False
        assert memory_store.records["ACC-1"]["conflict_alert_signature"] == "3"
        assert monitor.tracker.state.modal_open is True
        assert session.signature_cache.get("ACC-1") == "3"

    @pytest.mark.asyncio
    async def test_repeated_evaluate_while_open_is_suppressed(self, memory_store):
        memory_store.records["ACC-1"] = {"conflict_alert": True, "conflict_score": 1}
        monitor = get_monitor(WorkflowSession(), "ACC-1", store=memory_store)

        assert await monitor.evaluate() == ConflictEvaluation.SHOWN
        assert await monitor.evaluate() == ConflictEvaluation.SUPPRESSED
        assert monitor.response().evaluation == ConflictEvaluation.SHOWN

    @pytest.mark.asyncio
    async def test_subscription_failure_toasts(self, memory_store):
        session = WorkflowSession()
        monitor = get_monitor(session, "ACC-1", store=memory_store)
        memory_store.fail_fetch = True

        await monitor.subscription.refresh()

        toast = session.drain_toasts()[0]
        assert toast.title == "Failed to load account data"
        assert toast.severity == ToastSeverity.ERROR

    @pytest.mark.asyncio
    async def test_close_cancels_subscription(self, memory_store):
        session = WorkflowSession()
        get_monitor(session, "ACC-1", store=memory_store)
        assert memory_store.subscriber_count("ACC-1") == 1

        session.close()

        assert memory_store.subscriber_count("ACC-1") == 0

    @pytest.mark.asyncio
    async def test_dismiss_with_no_alert_cannot_mute_later_conflicts(self, memory_store):
        memory_store.records["ACC-1"] = {"conflict_alert": False, "conflict_score": None}
        monitor = get_monitor(WorkflowSession(), "ACC-1", store=memory_store)

        with patch("services.conflict_service.create_audit_log", new_callable=AsyncMock) as audit:
            assert await monitor.evaluate() == ConflictEvaluation.NO_ALERT
            with pytest.raises(ConflictAlertNotOpenError):
                await monitor.dismiss()
        audit.assert_not_awaited()
        assert "conflict_alert_dismissed" not in memory_store.records["ACC-1"]

        # A later scan turns the alert on
        memory_store.records["ACC-1"].update({"conflict_alert": True, "conflict_score": 3})
        assert await monitor.evaluate() == ConflictEvaluation.SHOWN

    @pytest.mark.asyncio
    async def test_legacy_integer_signature(self, memory_store):
        memory_store.records["ACC-1"] = {
            "conflict_alert": True,
            "conflict_alert_dismissed": True,
            "conflict_score": 3,
            "conflict_alert_signature": 3,
        }
        monitor = get_monitor(WorkflowSession(), "ACC-1", store=memory_store)

        assert await monitor.evaluate() == ConflictEvaluation.REMAINS_DISMISSED
