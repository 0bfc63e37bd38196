"""
Credit Check Service

- Launch a credit check for an account (decision becomes "Pending")
- Record the decision returned by the credit bureau integration
- Poll sessions for the "waiting for credit result" step
- Retainer view for the decision screen
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson.decimal128 import Decimal128

from models import AuditAction, CreditCheckStatus, ToastSeverity
from models.credit import (
    CreditDecisionRequest,
    DecisionSnapshot,
    PollCompletion,
    PollConfig,
    PollOutcome,
    RetainerView,
    StartPollRequest,
)
from services.decision_poller import DecisionPoller, default_poll_config, is_terminal_decision
from services.record_store import (
    DECISION_FIELDS,
    FIELD_CREDIT_DECISION,
    FIELD_NAME,
    FIELD_QUOTED_RETAINER,
    FIELD_REDUCED_RETAINER,
    RecordStore,
    record_store,
)
from services.retainer_calculator import build_retainer_view, to_amount
from services.workflow_sessions import WorkflowSession
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

PENDING_DECISION = "Pending"

# Workflow step the caller advances to once polling ends
NEXT_STEP_RETAINER_DECISION = "RETAINER_DECISION"


class PollSessionError(Exception):
    """Poll session operation not allowed in the current state."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


def snapshot_from_record(record: Dict[str, Any]) -> DecisionSnapshot:
    return DecisionSnapshot(
        decision_label=record.get(FIELD_CREDIT_DECISION) or None,
        quoted_amount=to_amount(record.get(FIELD_QUOTED_RETAINER)),
        reduced_amount=to_amount(record.get(FIELD_REDUCED_RETAINER)),
        account_name=record.get(FIELD_NAME),
    )


def _decimal_field(value):
    return Decimal128(value) if value is not None else None


class CreditPollSession:
    """The waiting screen's poller for one workflow session."""

    def __init__(
        self,
        session: WorkflowSession,
        account_id: Optional[str],
        config: PollConfig,
        store: RecordStore = record_store,
    ):
        self.session = session
        self.account_id = account_id
        self.store = store
        self.next_step: Optional[str] = None
        self.poller = DecisionPoller(
            fetch_snapshot=self._fetch_snapshot,
            on_complete=self._on_complete,
            on_failure=self._on_failure,
            config=config,
            notify_changed=store.notify_changed,
        )

    async def _fetch_snapshot(self, account_id: str) -> DecisionSnapshot:
        record = await self.store.fetch(account_id, DECISION_FIELDS)
        return snapshot_from_record(record)

    def _resolve_account_id(self) -> Optional[str]:
        return self.account_id

    def start(self):
        self.poller.start(self._resolve_account_id)

    def set_account(self, account_id: str):
        self.account_id = account_id
        logger.info(f"Poll target set session_id={self.session.session_id} account_id={account_id}")

    def stop(self):
        self.poller.stop()

    def _on_complete(self, completion: PollCompletion):
        self.next_step = NEXT_STEP_RETAINER_DECISION
        logger.info(
            f"Credit poll completed session_id={self.session.session_id} "
            f"outcome={completion.outcome.value} attempts={completion.attempts}"
        )
        if completion.outcome == PollOutcome.MAX_ATTEMPTS:
            self.session.notify(
                "Still processing",
                "Your credit decision is taking longer than expected. We'll show the latest result.",
                ToastSeverity.INFO,
            )
        self.session.run_in_background(create_audit_log(
            action=AuditAction.CREDIT_POLL_COMPLETED,
            account_id=completion.target_id,
            session_id=self.session.session_id,
            metadata={
                "outcome": completion.outcome.value,
                "attempts": completion.attempts,
                "decision": completion.snapshot.decision_label if completion.snapshot else None,
            },
        ))

    def _on_failure(self, error: Exception):
        message = getattr(error, "message", None) or str(error) or "An unexpected error occurred"
        self.session.notify("Failed to load credit decision", message, ToastSeverity.ERROR)
        self.session.run_in_background(create_audit_log(
            action=AuditAction.CREDIT_POLL_FAILED,
            account_id=self.poller.state.target_id,
            session_id=self.session.session_id,
            metadata={"error": message, "attempts": self.poller.state.attempt_count},
        ))

    def status(self) -> Dict[str, Any]:
        poller = self.poller
        return {
            "session_id": self.session.session_id,
            "account_id": self.account_id,
            "state": poller.state.model_dump(mode="json"),
            "completion": poller.completion.model_dump(mode="json") if poller.completion else None,
            "next_step": self.next_step,
            "error": str(poller.error) if poller.error else None,
        }


class CreditService:
    """Credit check lifecycle on an account."""

    @staticmethod
    async def launch_credit_check(account_id: str, store: RecordStore = record_store) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        await store.update(account_id, {
            FIELD_CREDIT_DECISION: PENDING_DECISION,
            "credit_check_status": CreditCheckStatus.REQUESTED.value,
            "credit_check_requested_at": now.isoformat(),
        })
        await store.notify_changed(account_id)
        await create_audit_log(
            action=AuditAction.CREDIT_CHECK_REQUESTED,
            account_id=account_id,
            resource_type="account",
            resource_id=account_id,
        )
        logger.info(f"Credit check launched account_id={account_id}")
        return {"success": True, "message": "Credit check started successfully."}

    @staticmethod
    async def record_credit_decision(
        account_id: str,
        request: CreditDecisionRequest,
        store: RecordStore = record_store,
    ) -> DecisionSnapshot:
        """Store the bureau's decision; live pollers see it on their next tick."""
        before = await CreditService.get_decision(account_id, store=store)
        decision = request.credit_decision.strip()
        values = {
            FIELD_CREDIT_DECISION: decision,
            "credit_check_status": (
                CreditCheckStatus.DECIDED.value if is_terminal_decision(decision)
                else CreditCheckStatus.REQUESTED.value
            ),
        }
        if request.quoted_retainer is not None:
            values[FIELD_QUOTED_RETAINER] = _decimal_field(request.quoted_retainer)
        if request.reduced_retainer is not None:
            values[FIELD_REDUCED_RETAINER] = _decimal_field(request.reduced_retainer)

        await store.update(account_id, values)
        await store.notify_changed(account_id)
        after = await CreditService.get_decision(account_id, store=store)
        await create_audit_log(
            action=AuditAction.CREDIT_DECISION_RECORDED,
            account_id=account_id,
            resource_type="account",
            resource_id=account_id,
            before_state=before.model_dump(mode="json"),
            after_state=after.model_dump(mode="json"),
            metadata={"credit_decision": decision},
        )
        logger.info(f"Credit decision recorded account_id={account_id} decision={decision}")
        return after

    @staticmethod
    async def get_decision(account_id: str, store: RecordStore = record_store) -> DecisionSnapshot:
        record = await store.fetch(account_id, DECISION_FIELDS)
        return snapshot_from_record(record)

    @staticmethod
    async def get_retainer_view(account_id: str, store: RecordStore = record_store) -> RetainerView:
        snapshot = await CreditService.get_decision(account_id, store=store)
        return build_retainer_view(snapshot)

    # ------------------------------------------------------------------
    # Poll sessions
    # ------------------------------------------------------------------

    @staticmethod
    def start_poll(
        session: WorkflowSession,
        request: StartPollRequest,
        store: RecordStore = record_store,
    ) -> CreditPollSession:
        if session.poll is not None and session.poll.poller.active:
            raise PollSessionError("A credit decision poll is already running for this session")

        config = default_poll_config()
        overrides = {
            k: v for k, v in {
                "max_attempts": request.max_attempts,
                "interval_ms": request.interval_ms,
                "initial_delay_ms": request.initial_delay_ms,
            }.items() if v is not None
        }
        if overrides:
            config = config.model_copy(update=overrides)

        poll = CreditPollSession(session, request.account_id, config, store=store)
        session.poll = poll
        poll.start()
        return poll

    @staticmethod
    def get_poll(session: WorkflowSession) -> CreditPollSession:
        if session.poll is None:
            raise PollSessionError("No credit decision poll for this session")
        return session.poll

    @staticmethod
    def stop_poll(session: WorkflowSession) -> CreditPollSession:
        poll = CreditService.get_poll(session)
        poll.stop()
        return poll
