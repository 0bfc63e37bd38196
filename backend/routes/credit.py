"""
Credit Check Routes

- POST   /api/credit/accounts/{account_id}/check - Launch the credit check
- POST   /api/credit/accounts/{account_id}/decision - Record the bureau decision
- GET    /api/credit/accounts/{account_id}/decision - Current decision snapshot
- GET    /api/credit/accounts/{account_id}/retainer - Retainer decision screen view
- POST   /api/credit/sessions/{session_id}/poll - Start waiting for the decision
- GET    /api/credit/sessions/{session_id}/poll - Poll status / completion
- PUT    /api/credit/sessions/{session_id}/poll/target - Set the account being polled
- DELETE /api/credit/sessions/{session_id}/poll - Stop waiting
"""
from fastapi import APIRouter, HTTPException, status
import logging

from models.credit import CreditDecisionRequest, StartPollRequest, UpdatePollTargetRequest
from routes.sessions import get_session_or_404
from services.credit_service import CreditService, PollSessionError
from services.record_store import RecordNotFoundError, RecordStoreError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/credit", tags=["credit"])


def _record_error(e: RecordStoreError) -> HTTPException:
    if isinstance(e, RecordNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    logger.error(f"Record store error record_id={e.record_id}: {e.message}")
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)


@router.post("/accounts/{account_id}/check")
async def launch_credit_check(account_id: str):
    try:
        return await CreditService.launch_credit_check(account_id)
    except RecordStoreError as e:
        raise _record_error(e)


@router.post("/accounts/{account_id}/decision")
async def record_decision(account_id: str, data: CreditDecisionRequest):
    try:
        snapshot = await CreditService.record_credit_decision(account_id, data)
    except RecordStoreError as e:
        raise _record_error(e)
    return snapshot.model_dump(mode="json")


@router.get("/accounts/{account_id}/decision")
async def get_decision(account_id: str):
    try:
        snapshot = await CreditService.get_decision(account_id)
    except RecordStoreError as e:
        raise _record_error(e)
    return snapshot.model_dump(mode="json")


@router.get("/accounts/{account_id}/retainer")
async def get_retainer(account_id: str):
    try:
        view = await CreditService.get_retainer_view(account_id)
    except RecordStoreError as e:
        raise _record_error(e)
    return view.model_dump(mode="json")


@router.post("/sessions/{session_id}/poll", status_code=status.HTTP_202_ACCEPTED)
async def start_poll(session_id: str, data: StartPollRequest):
    session = get_session_or_404(session_id)
    try:
        poll = CreditService.start_poll(session, data)
    except PollSessionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    return poll.status()


@router.get("/sessions/{session_id}/poll")
async def get_poll(session_id: str):
    session = get_session_or_404(session_id)
    try:
        poll = CreditService.get_poll(session)
    except PollSessionError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return poll.status()


@router.put("/sessions/{session_id}/poll/target")
async def set_poll_target(session_id: str, data: UpdatePollTargetRequest):
    """Late-resolved account id; skipped ticks start counting once it is set."""
    session = get_session_or_404(session_id)
    try:
        poll = CreditService.get_poll(session)
    except PollSessionError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    poll.set_account(data.account_id)
    return poll.status()


@router.delete("/sessions/{session_id}/poll")
async def stop_poll(session_id: str):
    session = get_session_or_404(session_id)
    try:
        poll = CreditService.stop_poll(session)
    except PollSessionError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return poll.status()
