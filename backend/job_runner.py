"""
Shared job runner for scheduled background jobs.
Used by server (scheduler) and scripts (manual run).
Each run_* returns a dict with "message" and "count".
"""
import logging

logger = logging.getLogger(__name__)


async def run_workflow_session_reaper():
    """Close workflow sessions idle past WORKFLOW_SESSION_TTL_SECONDS (stops their pollers)."""
    try:
        from services.workflow_sessions import workflow_sessions, SESSION_TTL_SECONDS
        count = workflow_sessions.reap_idle(SESSION_TTL_SECONDS)
        logger.info(f"Workflow session reaper completed: {count} sessions closed")
        return {"message": f"Idle workflow sessions closed: {count}", "count": count}
    except Exception as e:
        logger.error(f"Workflow session reaper job failed: {e}")
        raise


async def run_conflict_rescan(limit: int = 500):
    """Re-score accounts with an active conflict alert so scores track new matches."""
    try:
        from database import database
        from services.conflict_service import scan_account
        db = database.get_db()
        cursor = db.accounts.find(
            {"conflict_alert": True},
            {"_id": 0, "account_id": 1},
        ).limit(limit)
        accounts = await cursor.to_list(length=limit)
        count = 0
        for account in accounts:
            try:
                await scan_account(account["account_id"])
                count += 1
            except Exception as e:
                logger.warning(f"Conflict rescan failed account_id={account['account_id']}: {e}")
        logger.info(f"Conflict rescan job completed: {count} accounts rescanned")
        return {"message": f"Accounts rescanned: {count}", "count": count}
    except Exception as e:
        logger.error(f"Conflict rescan job failed: {e}")
        raise
