"""
Conflict Alert Routes

Scan an account for conflicts, and drive the per-session conflict alert:
- POST /api/conflicts/accounts/{account_id}/scan
- GET  /api/conflicts/accounts/{account_id}/matches
- POST /api/conflicts/sessions/{session_id}/accounts/{account_id}/evaluate
- GET  /api/conflicts/sessions/{session_id}/accounts/{account_id}
- POST /api/conflicts/sessions/{session_id}/accounts/{account_id}/dismiss
- POST /api/conflicts/sessions/{session_id}/accounts/{account_id}/close
"""
from fastapi import APIRouter, HTTPException, status
import logging

from routes.sessions import get_session_or_404
from services.conflict_service import find_potential_conflicts, get_monitor, process_matches, scan_account
from services.conflict_signature import ConflictAlertNotOpenError
from services.record_store import RecordNotFoundError, RecordStoreError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/conflicts", tags=["conflicts"])


def _record_error(e: RecordStoreError) -> HTTPException:
    if isinstance(e, RecordNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    logger.error(f"Record store error record_id={e.record_id}: {e.message}")
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)


@router.post("/accounts/{account_id}/scan")
async def scan(account_id: str):
    try:
        result = await scan_account(account_id)
    except RecordStoreError as e:
        raise _record_error(e)
    return result.model_dump()


@router.get("/accounts/{account_id}/matches")
async def get_matches(account_id: str):
    try:
        raw = await find_potential_conflicts(account_id)
    except RecordStoreError as e:
        raise _record_error(e)
    return {"account_id": account_id, "matches": [m.model_dump() for m in process_matches(raw)]}


@router.post("/sessions/{session_id}/accounts/{account_id}/evaluate")
async def evaluate(session_id: str, account_id: str):
    """Load the account's alert fields and apply the show / re-arm rules."""
    session = get_session_or_404(session_id)
    monitor = get_monitor(session, account_id)
    try:
        evaluation = await monitor.evaluate()
    except RecordStoreError as e:
        raise _record_error(e)
    return monitor.response(evaluation).model_dump(mode="json")


@router.get("/sessions/{session_id}/accounts/{account_id}")
async def get_alert_state(session_id: str, account_id: str):
    session = get_session_or_404(session_id)
    monitor = session.conflict_monitors.get(account_id)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No conflict alert for account {account_id} in this session"
        )
    return monitor.response().model_dump(mode="json")


@router.post("/sessions/{session_id}/accounts/{account_id}/dismiss")
async def dismiss(session_id: str, account_id: str):
    """Dismiss the alert for this signature. A failed write still closes the alert locally."""
    session = get_session_or_404(session_id)
    monitor = session.conflict_monitors.get(account_id)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No conflict alert for account {account_id} in this session"
        )
    try:
        persisted = await monitor.dismiss()
    except ConflictAlertNotOpenError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    body = monitor.response().model_dump(mode="json")
    body["persisted"] = persisted
    return body


@router.post("/sessions/{session_id}/accounts/{account_id}/close")
async def close_alert(session_id: str, account_id: str):
    session = get_session_or_404(session_id)
    monitor = session.conflict_monitors.get(account_id)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No conflict alert for account {account_id} in this session"
        )
    monitor.close_alert()
    return monitor.response().model_dump(mode="json")
