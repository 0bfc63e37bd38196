"""
Workflow session routes: open/close a session and drain its toasts.
"""
from fastapi import APIRouter, HTTPException, status
import logging

from services.workflow_sessions import SessionNotFoundError, WorkflowSession, workflow_sessions

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def get_session_or_404(session_id: str) -> WorkflowSession:
    try:
        return workflow_sessions.get(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session():
    session = workflow_sessions.create()
    return {
        "session_id": session.session_id,
        "created_at": session.created_at.isoformat(),
    }


@router.delete("/{session_id}")
async def close_session(session_id: str):
    if not workflow_sessions.close(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Workflow session not found: {session_id}")
    return {"success": True}


@router.get("/{session_id}/toasts")
async def drain_toasts(session_id: str):
    """Queued notifications since the last call; draining empties the queue."""
    session = get_session_or_404(session_id)
    return {"toasts": [t.model_dump(mode="json") for t in session.drain_toasts()]}
