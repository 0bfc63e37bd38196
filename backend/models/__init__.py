from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class AccountType(str, Enum):
    CLIENT = "Client"
    THIRD_PARTY = "Third Party"

class ApplicantType(str, Enum):
    """Who is applying for credit on behalf of the matter."""
    CLIENT = "Client"
    THIRD_PARTY = "Third Party"

class CreditCheckStatus(str, Enum):
    NOT_REQUESTED = "NOT_REQUESTED"
    REQUESTED = "REQUESTED"
    DECIDED = "DECIDED"

class ToastSeverity(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

class AuditAction(str, Enum):
    # Intake
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    THIRD_PARTY_CREATED = "THIRD_PARTY_CREATED"
    CONSENT_ACCEPTED = "CONSENT_ACCEPTED"

    # Credit
    CREDIT_CHECK_REQUESTED = "CREDIT_CHECK_REQUESTED"
    CREDIT_DECISION_RECORDED = "CREDIT_DECISION_RECORDED"
    CREDIT_POLL_COMPLETED = "CREDIT_POLL_COMPLETED"
    CREDIT_POLL_FAILED = "CREDIT_POLL_FAILED"

    # Conflicts
    CONFLICT_SCAN_COMPLETED = "CONFLICT_SCAN_COMPLETED"
    CONFLICT_ALERT_DISMISSED = "CONFLICT_ALERT_DISMISSED"
    CONFLICT_ALERT_REARMED = "CONFLICT_ALERT_REARMED"


# ============================================================================
# CORE MODELS
# ============================================================================

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    account_id: Optional[str] = None
    session_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Toast(BaseModel):
    """Dismissable user-visible notification."""
    title: str
    message: str
    severity: ToastSeverity = ToastSeverity.INFO
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
