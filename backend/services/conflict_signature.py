"""
Conflict alert signatures and re-arm logic.

A signature is a normalized form of the account's conflict score. When a user
dismisses the alert, the signature at that moment is written to the account
and to the session cache; a later score change produces a different signature
and re-arms (un-dismisses) the alert.
"""
import logging
from decimal import Context, Decimal
from typing import Any, Awaitable, Callable, Dict, Optional

from models import ToastSeverity
from models.conflict import (
    DEFAULT_CONFLICT_MESSAGE,
    ConflictAlertState,
    ConflictEvaluation,
    ConflictFields,
)
from services.record_store import (
    FIELD_CONFLICT_ALERT,
    FIELD_CONFLICT_DISMISSED,
    FIELD_CONFLICT_MESSAGE,
    FIELD_CONFLICT_SCORE,
    FIELD_CONFLICT_SIGNATURE,
    RecordStore,
)

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str, ToastSeverity], None]

ALERT_NOT_OPEN = "No conflict alert is open for this account."


class ConflictAlertNotOpenError(Exception):
    """Dismiss attempted while no alert is showing."""
    def __init__(self, message: str = ALERT_NOT_OPEN):
        self.message = message
        super().__init__(self.message)


def _canonical_number(value: Decimal) -> str:
    if value.is_zero():
        return "0"
    # Precision equal to the coefficient length keeps normalize() exact
    normalized = value.normalize(Context(prec=len(value.as_tuple().digits)))
    if abs(normalized.adjusted()) < 100:
        return format(normalized, "f")
    return str(normalized)


def build_signature(score: Any) -> str:
    """Signature for a conflict score.

    Numeric scores compare by exact value, so 5, 5.0 and "5" share a signature
    and large integers never collide. Anything that does not parse to a finite
    number falls back to its trimmed string form.
    """
    if score is None or score == "":
        return ""
    text = str(score).strip()
    try:
        number = Decimal(text)
        if not number.is_finite():
            return text
        return _canonical_number(number)
    except (ArithmeticError, ValueError):
        return text


def normalize_server_signature(raw: Any) -> str:
    """Only the last "|"-separated segment of a stored signature is significant (legacy composites)."""
    if not raw:
        return ""
    return str(raw).split("|")[-1].strip()


def conflict_fields_from_record(record: Dict[str, Any]) -> ConflictFields:
    return ConflictFields(
        alert_on=record.get(FIELD_CONFLICT_ALERT) is True,
        dismissed=record.get(FIELD_CONFLICT_DISMISSED) is True,
        message=record.get(FIELD_CONFLICT_MESSAGE) or DEFAULT_CONFLICT_MESSAGE,
        score=record.get(FIELD_CONFLICT_SCORE),
        server_signature=record.get(FIELD_CONFLICT_SIGNATURE),
    )


class SessionSignatureCache:
    """Last signature the user acted on, per record, for one workflow session.

    Lives only as long as the session. Used when the account carries no
    server signature (e.g. the dismissal write never reached the server).
    """

    def __init__(self):
        self._signatures: Dict[str, str] = {}

    def get(self, record_id: str) -> Optional[str]:
        return self._signatures.get(record_id)

    def set(self, record_id: str, signature: str):
        self._signatures[record_id] = signature

    def clear(self):
        self._signatures.clear()

    def __len__(self):
        return len(self._signatures)


class ConflictAlertTracker:
    """Decides, on every refresh of one account, whether to show its conflict alert."""

    def __init__(
        self,
        record_id: str,
        store: RecordStore,
        session_cache: SessionSignatureCache,
        notify: Optional[Notifier] = None,
        refresh: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        self.record_id = record_id
        self.store = store
        self.session_cache = session_cache
        self.state = ConflictAlertState()
        self.current_signature = ""
        self._notify = notify
        self._refresh = refresh
        self._refreshed_once = False
        self._evaluating = False
        self._unsaved_dismissal: Optional[str] = None

    def bind_refresh(self, refresh: Callable[[], Awaitable[Any]]):
        self._refresh = refresh

    async def evaluate(self, fields: ConflictFields) -> ConflictEvaluation:
        """Apply the show / re-arm rules to the latest alert fields."""
        # Prevent multiple alert instances (also blocks re-entry from our own refreshes)
        if self.state.modal_open or self._evaluating:
            return ConflictEvaluation.SUPPRESSED

        self._evaluating = True
        try:
            return await self._evaluate(fields)
        finally:
            self._evaluating = False

    async def _evaluate(self, fields: ConflictFields) -> ConflictEvaluation:
        message = fields.message or DEFAULT_CONFLICT_MESSAGE
        current_sig = build_signature(fields.score)
        server_sig = normalize_server_signature(fields.server_signature)
        session_sig = self.session_cache.get(self.record_id)
        self.current_signature = current_sig

        self.state.alert_on = fields.alert_on
        self.state.dismissed = fields.dismissed
        self.state.message = message
        self.state.score = fields.score

        if fields.alert_on and fields.dismissed:
            changed_vs_server = bool(server_sig) and server_sig != current_sig
            changed_vs_session = not server_sig and bool(session_sig) and session_sig != current_sig
            if changed_vs_server or changed_vs_session:
                await self._undismiss(current_sig)
                self._show(message, fields.score)
                return ConflictEvaluation.REARMED
            return ConflictEvaluation.REMAINS_DISMISSED

        if fields.alert_on and not fields.dismissed:
            if self._unsaved_dismissal is not None:
                if self._unsaved_dismissal == current_sig:
                    # Dismissed locally but the write never landed; retry it quietly
                    self.state.dismissed = True
                    await self._persist_dismissal(current_sig, retry=True)
                    return ConflictEvaluation.REMAINS_DISMISSED
                self._unsaved_dismissal = None
            self._show(message, fields.score)
            await self._refresh_once()
            return ConflictEvaluation.SHOWN

        return ConflictEvaluation.NO_ALERT

    def _show(self, message: str, score: Any):
        if self.state.modal_open:
            return
        self.state.message = message
        self.state.score = score
        self.state.modal_open = True
        logger.info(f"Conflict alert shown record_id={self.record_id} signature={self.current_signature!r}")

    async def _undismiss(self, current_sig: str):
        """Clear the dismissal and store the new signature. Local state proceeds even if the write fails."""
        self.state.dismissed = False
        self._unsaved_dismissal = None
        try:
            await self.store.update(self.record_id, {
                FIELD_CONFLICT_DISMISSED: False,
                FIELD_CONFLICT_SIGNATURE: current_sig,
            })
            await self.store.notify_changed(self.record_id)
            logger.info(f"Conflict alert re-armed record_id={self.record_id} signature={current_sig!r}")
        except Exception as e:
            self._toast_error("Failed to undismiss conflict alert", e)
        self.session_cache.set(self.record_id, current_sig)

    async def _refresh_once(self):
        if self._refreshed_once or self._refresh is None:
            return
        self._refreshed_once = True
        try:
            await self._refresh()
        except Exception as e:
            self._toast_error("Failed to refresh data", e)

    async def dismiss(self) -> bool:
        """Dismiss the open alert. Returns True when the dismissal was persisted.

        Raises ConflictAlertNotOpenError unless the alert is showing.
        """
        if not self.state.modal_open:
            raise ConflictAlertNotOpenError()
        current_sig = self.current_signature
        persisted = await self._persist_dismissal(current_sig)
        self.session_cache.set(self.record_id, current_sig)
        self.state.dismissed = True
        self.close()
        if persisted:
            self._toast("Success", "Conflict alert dismissed successfully", ToastSeverity.SUCCESS)
        return persisted

    async def _persist_dismissal(self, signature: str, retry: bool = False) -> bool:
        try:
            await self.store.update(self.record_id, {
                FIELD_CONFLICT_DISMISSED: True,
                FIELD_CONFLICT_SIGNATURE: signature,
            })
        except Exception as e:
            self._unsaved_dismissal = signature
            if retry:
                # The user was already told when the dismissal first failed
                logger.warning(f"Conflict dismissal retry failed record_id={self.record_id}: {e}")
            else:
                self._toast_error("Failed to dismiss conflict alert", e)
            return False
        self._unsaved_dismissal = None
        logger.info(f"Conflict alert dismissed record_id={self.record_id} signature={signature!r}")
        await self.store.notify_changed(self.record_id)
        return True

    def close(self):
        """Close the alert without dismissing it."""
        self.state.modal_open = False

    def _toast(self, title: str, message: str, severity: ToastSeverity):
        if self._notify is None:
            return
        try:
            self._notify(title, message, severity)
        except Exception as e:
            logger.warning(f"Toast delivery failed: {e}")

    def _toast_error(self, title: str, error: Exception):
        logger.error(f"ConflictAlert: {title} record_id={self.record_id}: {error}")
        message = getattr(error, "message", None) or str(error) or "An unexpected error occurred"
        self._toast(title, message, ToastSeverity.ERROR)
