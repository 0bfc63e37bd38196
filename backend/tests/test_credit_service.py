"""
Tests for the credit check lifecycle and the waiting-screen poll session.
"""
import asyncio
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from bson.decimal128 import Decimal128

from models import AuditAction, CreditCheckStatus, ToastSeverity
from models.credit import CreditDecisionRequest, PollOutcome, PollStatus, StartPollRequest
from services.credit_service import (
    NEXT_STEP_RETAINER_DECISION,
    CreditService,
    PollSessionError,
    snapshot_from_record,
)
from services.record_store import RecordNotFoundError
from services.workflow_sessions import WorkflowSession


def _actions(audit):
    return [c.kwargs["action"] for c in audit.call_args_list]


class TestCreditCheck:

    @pytest.mark.asyncio
    async def test_launch_sets_pending(self, memory_store):
        memory_store.records["ACC-1"] = {"name": "Jane Doe"}
        with patch("services.credit_service.create_audit_log", new_callable=AsyncMock) as audit:
            result = await CreditService.launch_credit_check("ACC-1", store=memory_store)

        assert result == {"success": True, "message": "Credit check started successfully."}
        assert memory_store.records["ACC-1"]["credit_decision"] == "Pending"
        assert memory_store.records["ACC-1"]["credit_check_status"] == CreditCheckStatus.REQUESTED.value
        assert memory_store.notified == ["ACC-1"]
        assert _actions(audit) == [AuditAction.CREDIT_CHECK_REQUESTED]

    @pytest.mark.asyncio
    async def test_launch_unknown_account(self, memory_store):
        with pytest.raises(RecordNotFoundError):
            await CreditService.launch_credit_check("ACC-404", store=memory_store)

    @pytest.mark.asyncio
    async def test_record_decision_stores_amounts(self, memory_store):
        memory_store.records["ACC-1"] = {"name": "Jane Doe", "credit_decision": "Pending"}
        request = CreditDecisionRequest(
            credit_decision=" Silver - 50% Retainer ",
            quoted_retainer=Decimal("2000"),
            reduced_retainer=Decimal("1000"),
        )
        with patch("services.credit_service.create_audit_log", new_callable=AsyncMock) as audit:
            snapshot = await CreditService.record_credit_decision("ACC-1", request, store=memory_store)

        assert audit.call_args.kwargs["before_state"]["decision_label"] == "Pending"
        assert audit.call_args.kwargs["after_state"]["decision_label"] == "Silver - 50% Retainer"
        record = memory_store.records["ACC-1"]
        assert isinstance(record["quoted_retainer"], Decimal128)
        assert record["credit_check_status"] == CreditCheckStatus.DECIDED.value
        assert snapshot.decision_label == "Silver - 50% Retainer"
        assert snapshot.quoted_amount == Decimal("2000")
        assert snapshot.reduced_amount == Decimal("1000")
        assert snapshot.account_name == "Jane Doe"

    @pytest.mark.asyncio
    async def test_pending_decision_keeps_requested_status(self, memory_store):
        memory_store.records["ACC-1"] = {"name": "Jane Doe"}
        with patch("services.credit_service.create_audit_log", new_callable=AsyncMock):
            await CreditService.record_credit_decision(
                "ACC-1", CreditDecisionRequest(credit_decision="pending"), store=memory_store
            )
        assert memory_store.records["ACC-1"]["credit_check_status"] == CreditCheckStatus.REQUESTED.value

    @pytest.mark.asyncio
    async def test_retainer_view(self, memory_store):
        memory_store.records["ACC-1"] = {
            "name": "Jane Doe",
            "credit_decision": "Gold - 0% Retainer",
            "quoted_retainer": Decimal128("1500"),
            "quoted_retainer_amount": Decimal128("300"),
        }
        view = await CreditService.get_retainer_view("ACC-1", store=memory_store)
        assert view.is_qualified is True
        assert view.reduced_amount == Decimal("0")
        assert view.standard_amount == Decimal("1500")


def test_snapshot_from_record_blank_decision():
    snapshot = snapshot_from_record({"credit_decision": "", "name": "Jane"})
    assert snapshot.decision_label is None
    assert snapshot.account_name == "Jane"


class TestPollSession:

    @pytest.mark.asyncio
    async def test_poll_completes_and_sets_next_step(self, memory_store):
        memory_store.records["ACC-1"] = {"name": "Jane Doe", "credit_decision": "Bronze - 80% Retainer"}
        session = WorkflowSession()
        request = StartPollRequest(account_id="ACC-1", initial_delay_ms=0, interval_ms=1)

        with patch("services.credit_service.create_audit_log", new_callable=AsyncMock) as audit:
            poll = CreditService.start_poll(session, request, store=memory_store)
            completion = await asyncio.wait_for(poll.poller.wait(), timeout=2)
            await asyncio.sleep(0)

        assert completion.outcome == PollOutcome.DECISION_FOUND
        status = poll.status()
        assert status["next_step"] == NEXT_STEP_RETAINER_DECISION
        assert status["state"]["status"] == PollStatus.COMPLETED.value
        assert status["completion"]["attempts"] == 1
        assert _actions(audit) == [AuditAction.CREDIT_POLL_COMPLETED]
        # Each counted tick hints other readers of the account
        assert memory_store.notified == ["ACC-1"]

    @pytest.mark.asyncio
    async def test_poll_timeout_toasts(self, memory_store):
        memory_store.records["ACC-1"] = {"name": "Jane Doe", "credit_decision": "Pending"}
        session = WorkflowSession()
        request = StartPollRequest(account_id="ACC-1", max_attempts=2, initial_delay_ms=0, interval_ms=1)

        with patch("services.credit_service.create_audit_log", new_callable=AsyncMock):
            poll = CreditService.start_poll(session, request, store=memory_store)
            completion = await asyncio.wait_for(poll.poller.wait(), timeout=2)

        assert completion.outcome == PollOutcome.MAX_ATTEMPTS
        toasts = session.drain_toasts()
        assert [t.severity for t in toasts] == [ToastSeverity.INFO]
        assert poll.next_step == NEXT_STEP_RETAINER_DECISION

    @pytest.mark.asyncio
    async def test_poll_fetch_failure_toasts_error(self, memory_store):
        memory_store.fail_fetch = True
        session = WorkflowSession()
        request = StartPollRequest(account_id="ACC-1", initial_delay_ms=0, interval_ms=1)

        with patch("services.credit_service.create_audit_log", new_callable=AsyncMock) as audit:
            poll = CreditService.start_poll(session, request, store=memory_store)
            await asyncio.wait_for(poll.poller.wait(), timeout=2)
            await asyncio.sleep(0)

        assert poll.poller.state.status == PollStatus.FAILED
        toast = session.drain_toasts()[0]
        assert toast.title == "Failed to load credit decision"
        assert toast.severity == ToastSeverity.ERROR
        assert poll.next_step is None
        assert _actions(audit) == [AuditAction.CREDIT_POLL_FAILED]

    @pytest.mark.asyncio
    async def test_late_target_then_stop(self, memory_store):
        memory_store.records["ACC-2"] = {"name": "Third Party", "credit_decision": "Pending"}
        session = WorkflowSession()
        request = StartPollRequest(initial_delay_ms=60000)

        poll = CreditService.start_poll(session, request, store=memory_store)
        with pytest.raises(PollSessionError):
            CreditService.start_poll(session, request, store=memory_store)

        poll.set_account("ACC-2")
        assert poll.poller.resolve_target() == "ACC-2"

        CreditService.stop_poll(session)
        assert poll.poller.state.status == PollStatus.STOPPED
        assert memory_store.fetch_calls == []

        # A stopped poll can be replaced
        replacement = CreditService.start_poll(session, request, store=memory_store)
        assert replacement is not poll
        replacement.stop()

    def test_get_poll_without_poll(self):
        with pytest.raises(PollSessionError):
            CreditService.get_poll(WorkflowSession())
