"""
Record Store - read/write access to account records plus change subscriptions.

RecordStore is the boundary every workflow component talks to:
- fetch(id, fields)            -> current field values (raises on failure)
- update(id, values)           -> write field values (raises on failure)
- notify_changed(id)           -> best-effort hint to other readers of the record
- subscribe(id, fields, ...)   -> Subscription delivering snapshot/failure events

MongoRecordStore backs it with the `accounts` collection. Subscriptions are
refreshed explicitly (refresh()) or by notify_changed() on the same record.
"""
from database import database
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union
import inspect
import logging

logger = logging.getLogger(__name__)


# Account field names used across the intake workflow
FIELD_NAME = "name"
FIELD_CREDIT_DECISION = "credit_decision"
FIELD_QUOTED_RETAINER = "quoted_retainer"
FIELD_REDUCED_RETAINER = "quoted_retainer_amount"
FIELD_CONFLICT_ALERT = "conflict_alert"
FIELD_CONFLICT_MESSAGE = "conflict_alert_message"
FIELD_CONFLICT_SCORE = "conflict_score"
FIELD_CONFLICT_DISMISSED = "conflict_alert_dismissed"
FIELD_CONFLICT_SIGNATURE = "conflict_alert_signature"

DECISION_FIELDS = [FIELD_CREDIT_DECISION, FIELD_QUOTED_RETAINER, FIELD_REDUCED_RETAINER, FIELD_NAME]
CONFLICT_FIELDS = [
    FIELD_CONFLICT_ALERT,
    FIELD_CONFLICT_MESSAGE,
    FIELD_CONFLICT_SCORE,
    FIELD_CONFLICT_DISMISSED,
    FIELD_CONFLICT_SIGNATURE,
]

SnapshotCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]
FailureCallback = Callable[[Exception], Union[None, Awaitable[None]]]


class RecordStoreError(Exception):
    """Fetch or update against the record store failed."""
    def __init__(self, message: str, record_id: Optional[str] = None):
        self.record_id = record_id
        self.message = message
        super().__init__(self.message)


class RecordNotFoundError(RecordStoreError):
    def __init__(self, record_id: str):
        super().__init__(f"Record not found: {record_id}", record_id=record_id)


async def _invoke(callback, *args):
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class Subscription:
    """Live view of one record's field set.

    Delivers each fetched snapshot to on_snapshot, or the error to on_failure.
    After cancel() nothing is delivered, including fetches already in flight.
    """

    def __init__(
        self,
        store: "RecordStore",
        record_id: str,
        fields: Iterable[str],
        on_snapshot: SnapshotCallback,
        on_failure: Optional[FailureCallback] = None,
    ):
        self.store = store
        self.record_id = record_id
        self.fields = list(fields)
        self._on_snapshot = on_snapshot
        self._on_failure = on_failure
        self.cancelled = False
        self.last_snapshot: Optional[Dict[str, Any]] = None
        self.last_error: Optional[Exception] = None

    async def refresh(self) -> Optional[Dict[str, Any]]:
        """Re-fetch the record and deliver the result. Returns the snapshot, or None on failure."""
        if self.cancelled:
            return None
        try:
            snapshot = await self.store.fetch(self.record_id, self.fields)
        except Exception as e:
            if self.cancelled:
                return None
            self.last_error = e
            logger.warning(f"Subscription fetch failed record_id={self.record_id}: {e}")
            if self._on_failure is not None:
                await _invoke(self._on_failure, e)
            return None
        if self.cancelled:
            return None
        self.last_snapshot = snapshot
        self.last_error = None
        await _invoke(self._on_snapshot, snapshot)
        return snapshot

    def cancel(self):
        if not self.cancelled:
            self.cancelled = True
            self.store._unregister(self)


class RecordStore:
    """Base record store: subscription bookkeeping shared by implementations."""

    def __init__(self):
        self._subscriptions: Dict[str, List[Subscription]] = {}

    async def fetch(self, record_id: str, fields: Iterable[str]) -> Dict[str, Any]:
        raise NotImplementedError

    async def update(self, record_id: str, values: Dict[str, Any]) -> None:
        raise NotImplementedError

    def subscribe(
        self,
        record_id: str,
        fields: Iterable[str],
        on_snapshot: SnapshotCallback,
        on_failure: Optional[FailureCallback] = None,
    ) -> Subscription:
        subscription = Subscription(self, record_id, fields, on_snapshot, on_failure)
        self._subscriptions.setdefault(record_id, []).append(subscription)
        return subscription

    def _unregister(self, subscription: Subscription):
        subs = self._subscriptions.get(subscription.record_id)
        if not subs:
            return
        if subscription in subs:
            subs.remove(subscription)
        if not subs:
            self._subscriptions.pop(subscription.record_id, None)

    def subscriber_count(self, record_id: str) -> int:
        return len(self._subscriptions.get(record_id, []))

    async def notify_changed(self, record_id: str) -> None:
        """Refresh every live subscription on the record. Never raises."""
        for subscription in list(self._subscriptions.get(record_id, [])):
            try:
                await subscription.refresh()
            except Exception as e:
                logger.warning(f"notify_changed delivery failed record_id={record_id}: {e}")


class MongoRecordStore(RecordStore):
    """Account records in MongoDB."""

    async def fetch(self, record_id: str, fields: Iterable[str]) -> Dict[str, Any]:
        db = database.get_db()
        projection = {"_id": 0, "account_id": 1}
        for field in fields:
            projection[field] = 1
        try:
            doc = await db.accounts.find_one({"account_id": record_id}, projection)
        except Exception as e:
            raise RecordStoreError(f"Failed to load record: {e}", record_id=record_id) from e
        if not doc:
            raise RecordNotFoundError(record_id)
        return doc

    async def update(self, record_id: str, values: Dict[str, Any]) -> None:
        db = database.get_db()
        update = dict(values)
        update["updated_at"] = datetime.now(timezone.utc).isoformat()
        try:
            result = await db.accounts.update_one(
                {"account_id": record_id},
                {"$set": update},
            )
        except Exception as e:
            raise RecordStoreError(f"Failed to update record: {e}", record_id=record_id) from e
        if result.matched_count == 0:
            raise RecordNotFoundError(record_id)


# Shared store for the process; workflow sessions subscribe through it
record_store = MongoRecordStore()
