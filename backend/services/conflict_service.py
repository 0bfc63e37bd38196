"""
Conflict Service

Conflict-of-interest checks against existing accounts:
- find accounts sharing a name, email or phone with the applicant
- score an account by its matches and set its alert fields
- per-session monitors that show / re-arm / dismiss the alert
"""
import logging
import re
from typing import Any, Dict, List, Optional

from database import database
from models import AuditAction, ToastSeverity
from models.conflict import (
    ConflictEvaluation,
    ConflictEvaluationResponse,
    ConflictMatch,
    ConflictScanResult,
)
from services.conflict_signature import ConflictAlertTracker, conflict_fields_from_record
from services.record_store import (
    CONFLICT_FIELDS,
    FIELD_CONFLICT_ALERT,
    FIELD_CONFLICT_MESSAGE,
    FIELD_CONFLICT_SCORE,
    RecordNotFoundError,
    RecordStore,
    Subscription,
    record_store,
)
from services.workflow_sessions import WorkflowSession
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

MAX_MATCHES = 50


def _digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def process_matches(raw_matches: Any) -> List[ConflictMatch]:
    """Shape matching accounts for display."""
    if not isinstance(raw_matches, list):
        return []
    return [
        ConflictMatch(
            id=m["account_id"],
            name=m.get("name") or "",
            subtitle=m.get("mobile_phone") or m.get("email") or "",
            url=f"/{m['account_id']}",
        )
        for m in raw_matches
    ]


def conflict_message(score: int) -> str:
    plural = "conflict" if score == 1 else "conflicts"
    return f"{score} potential {plural} found with existing accounts. Please review."


async def find_potential_conflicts(account_id: str) -> List[Dict[str, Any]]:
    """Other accounts sharing the applicant's name, email or mobile phone."""
    db = database.get_db()
    account = await db.accounts.find_one(
        {"account_id": account_id},
        {"_id": 0, "account_id": 1, "name": 1, "email": 1, "mobile_phone": 1},
    )
    if not account:
        raise RecordNotFoundError(account_id)

    criteria = []
    name = (account.get("name") or "").strip()
    if name:
        criteria.append({"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}})
    email = (account.get("email") or "").strip().lower()
    if email:
        criteria.append({"email": email})
    phone = _digits(account.get("mobile_phone"))
    if phone:
        criteria.append({"mobile_phone_digits": phone})
    if not criteria:
        return []

    cursor = db.accounts.find(
        {"account_id": {"$ne": account_id}, "$or": criteria},
        {"_id": 0, "account_id": 1, "name": 1, "email": 1, "mobile_phone": 1},
    ).limit(MAX_MATCHES)
    return await cursor.to_list(length=MAX_MATCHES)


async def scan_account(account_id: str, store: RecordStore = record_store) -> ConflictScanResult:
    """Score an account by its potential conflicts and update its alert fields."""
    raw = await find_potential_conflicts(account_id)
    matches = process_matches(raw)
    score = len(matches)
    values = {
        FIELD_CONFLICT_ALERT: score > 0,
        FIELD_CONFLICT_SCORE: score,
        FIELD_CONFLICT_MESSAGE: conflict_message(score) if score else None,
    }
    await store.update(account_id, values)
    await store.notify_changed(account_id)
    await create_audit_log(
        action=AuditAction.CONFLICT_SCAN_COMPLETED,
        account_id=account_id,
        resource_type="account",
        resource_id=account_id,
        metadata={"conflict_score": score, "match_ids": [m.id for m in matches]},
    )
    logger.info(f"Conflict scan account_id={account_id} score={score}")
    return ConflictScanResult(
        account_id=account_id,
        conflict_score=score,
        conflict_alert=score > 0,
        matches=matches,
    )


class ConflictMonitor:
    """Conflict alert for one account within one workflow session."""

    def __init__(self, session: WorkflowSession, account_id: str, store: RecordStore = record_store):
        self.session = session
        self.account_id = account_id
        self.store = store
        self.tracker = ConflictAlertTracker(
            record_id=account_id,
            store=store,
            session_cache=session.signature_cache,
            notify=session.notify,
        )
        self.subscription: Subscription = store.subscribe(
            account_id,
            CONFLICT_FIELDS,
            on_snapshot=self._on_snapshot,
            on_failure=self._on_failure,
        )
        self.tracker.bind_refresh(self.subscription.refresh)
        self.last_evaluation: Optional[ConflictEvaluation] = None

    async def _on_snapshot(self, record: Dict[str, Any]):
        evaluation = await self.tracker.evaluate(conflict_fields_from_record(record))
        # Re-deliveries while the alert is open are no-ops; keep the meaningful result
        if evaluation != ConflictEvaluation.SUPPRESSED:
            self.last_evaluation = evaluation

    def _on_failure(self, error: Exception):
        message = getattr(error, "message", None) or str(error)
        self.session.notify("Failed to load account data", message, ToastSeverity.ERROR)

    async def evaluate(self) -> ConflictEvaluation:
        record = await self.store.fetch(self.account_id, CONFLICT_FIELDS)
        evaluation = await self.tracker.evaluate(conflict_fields_from_record(record))
        if evaluation != ConflictEvaluation.SUPPRESSED:
            self.last_evaluation = evaluation
        if evaluation == ConflictEvaluation.REARMED:
            self.session.run_in_background(create_audit_log(
                action=AuditAction.CONFLICT_ALERT_REARMED,
                account_id=self.account_id,
                session_id=self.session.session_id,
                metadata={"signature": self.tracker.current_signature},
            ))
        return evaluation

    async def dismiss(self) -> bool:
        persisted = await self.tracker.dismiss()
        await create_audit_log(
            action=AuditAction.CONFLICT_ALERT_DISMISSED,
            account_id=self.account_id,
            session_id=self.session.session_id,
            metadata={"signature": self.tracker.current_signature, "persisted": persisted},
        )
        return persisted

    def close_alert(self):
        self.tracker.close()

    def close(self):
        self.subscription.cancel()

    def response(self, evaluation: Optional[ConflictEvaluation] = None) -> ConflictEvaluationResponse:
        return ConflictEvaluationResponse(
            account_id=self.account_id,
            evaluation=evaluation or self.last_evaluation or ConflictEvaluation.NO_ALERT,
            state=self.tracker.state,
            current_signature=self.tracker.current_signature,
        )


def get_monitor(session: WorkflowSession, account_id: str, store: RecordStore = record_store) -> ConflictMonitor:
    monitor = session.conflict_monitors.get(account_id)
    if monitor is None:
        monitor = ConflictMonitor(session, account_id, store=store)
        session.conflict_monitors[account_id] = monitor
    return monitor
