"""
Workflow Sessions - server-side state for one user's pass through intake.

A session owns:
- the session signature cache used by conflict alerts
- queued toasts (best-effort notifications for the UI)
- at most one active credit decision poll
- one conflict monitor per account being watched

Sessions are in-memory only. Closing a session (explicitly, or by the idle
reaper) stops its poller and cancels its subscriptions.
"""
import asyncio
import logging
import os
import uuid
from collections import deque
from datetime import datetime, timezone, timedelta
from typing import Dict, List, Optional, Any

from models import Toast, ToastSeverity
from services.conflict_signature import SessionSignatureCache

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = int(os.environ.get("WORKFLOW_SESSION_TTL_SECONDS", "1800"))
SESSION_TOAST_LIMIT = int(os.environ.get("SESSION_TOAST_LIMIT", "50"))


class SessionNotFoundError(Exception):
    def __init__(self, session_id: str):
        self.session_id = session_id
        self.message = f"Workflow session not found: {session_id}"
        super().__init__(self.message)


class WorkflowSession:
    def __init__(self, session_id: Optional[str] = None):
        now = datetime.now(timezone.utc)
        self.session_id = session_id or f"WS-{uuid.uuid4().hex[:12].upper()}"
        self.created_at = now
        self.last_seen_at = now
        self.signature_cache = SessionSignatureCache()
        self.toasts: deque = deque(maxlen=SESSION_TOAST_LIMIT)
        self.poll: Optional[Any] = None  # services.credit_service.CreditPollSession
        self.conflict_monitors: Dict[str, Any] = {}  # account_id -> ConflictMonitor
        self.closed = False
        self._background_tasks = set()

    def touch(self):
        self.last_seen_at = datetime.now(timezone.utc)

    def notify(self, title: str, message: str, severity: ToastSeverity = ToastSeverity.INFO):
        """Queue a toast. Never raises."""
        try:
            self.toasts.append(Toast(title=title, message=message, severity=severity))
            log = logger.error if severity == ToastSeverity.ERROR else logger.info
            log(f"Toast session_id={self.session_id} [{severity.value}] {title}: {message}")
        except Exception as e:
            logger.warning(f"Failed to queue toast session_id={self.session_id}: {e}")

    def drain_toasts(self) -> List[Toast]:
        toasts = list(self.toasts)
        self.toasts.clear()
        return toasts

    def run_in_background(self, coro):
        """Fire-and-forget work tied to the session (audit writes after poll completion)."""
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def close(self):
        if self.closed:
            return
        self.closed = True
        if self.poll is not None:
            self.poll.stop()
        for monitor in self.conflict_monitors.values():
            monitor.close()
        self.conflict_monitors.clear()
        self.signature_cache.clear()
        logger.info(f"Workflow session closed session_id={self.session_id}")


class WorkflowSessionRegistry:
    def __init__(self):
        self._sessions: Dict[str, WorkflowSession] = {}

    def create(self) -> WorkflowSession:
        session = WorkflowSession()
        self._sessions[session.session_id] = session
        logger.info(f"Workflow session created session_id={session.session_id}")
        return session

    def get(self, session_id: str) -> WorkflowSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.touch()
        return session

    def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> int:
        session_ids = list(self._sessions)
        for sid in session_ids:
            self.close(sid)
        return len(session_ids)

    def reap_idle(self, ttl_seconds: int = SESSION_TTL_SECONDS, now: Optional[datetime] = None) -> int:
        """Close sessions idle for longer than ttl_seconds. Returns how many were closed."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=ttl_seconds)
        expired = [sid for sid, s in self._sessions.items() if s.last_seen_at < cutoff]
        for sid in expired:
            self.close(sid)
        if expired:
            logger.info(f"Reaped {len(expired)} idle workflow sessions")
        return len(expired)

    def __len__(self):
        return len(self._sessions)


workflow_sessions = WorkflowSessionRegistry()
