"""
Conflict-of-interest alert models.
"""
from pydantic import BaseModel
from typing import Any, Optional, Union, List
from enum import Enum

DEFAULT_CONFLICT_MESSAGE = "Potential conflict detected. Please review."


class ConflictEvaluation(str, Enum):
    """Result of evaluating an account's alert fields."""
    SHOWN = "SHOWN"
    REARMED = "REARMED"
    REMAINS_DISMISSED = "REMAINS_DISMISSED"
    SUPPRESSED = "SUPPRESSED"    # An alert is already open for this record
    NO_ALERT = "NO_ALERT"


class ConflictFields(BaseModel):
    """Alert fields as stored on the account."""
    alert_on: bool = False
    dismissed: bool = False
    message: Optional[str] = None
    score: Optional[Union[float, int, str]] = None
    # Legacy records may hold a non-string signature
    server_signature: Optional[Any] = None


class ConflictAlertState(BaseModel):
    alert_on: bool = False
    dismissed: bool = False
    message: str = ""
    score: Optional[Union[float, int, str]] = None
    modal_open: bool = False


class ConflictEvaluationResponse(BaseModel):
    account_id: str
    evaluation: ConflictEvaluation
    state: ConflictAlertState
    current_signature: str


class ConflictMatch(BaseModel):
    id: str
    name: str
    subtitle: str = ""
    url: str


class ConflictScanResult(BaseModel):
    account_id: str
    conflict_score: int
    conflict_alert: bool
    matches: List[ConflictMatch]
