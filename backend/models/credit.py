"""
Credit decision models.

Polling configuration/state for the waiting screen, the decision snapshot read
on every poll tick, and the retainer view derived from it.
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from enum import Enum


class PollOutcome(str, Enum):
    """Why a poller completed."""
    DECISION_FOUND = "DECISION_FOUND"
    MAX_ATTEMPTS = "MAX_ATTEMPTS"


class PollStatus(str, Enum):
    IDLE = "IDLE"
    WAITING = "WAITING"      # Initial delay before the first tick
    POLLING = "POLLING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"        # Fetch failed; polling halted
    STOPPED = "STOPPED"      # Torn down before completion


class PollConfig(BaseModel):
    """Retry budget and timing for the decision poller."""
    max_attempts: int = Field(5, gt=0)
    interval_ms: int = Field(10000, gt=0)
    initial_delay_ms: int = Field(10000, ge=0)
    # Decision values that mean "still waiting" (compared case-insensitively)
    pending_sentinels: List[str] = Field(default_factory=lambda: ["Pending"])


class PollState(BaseModel):
    attempt_count: int = Field(0, ge=0)
    max_attempts: int = Field(..., gt=0)
    interval_ms: int = Field(..., gt=0)
    initial_delay_ms: int = Field(..., ge=0)
    has_completed: bool = False
    target_id: Optional[str] = None
    status: PollStatus = PollStatus.IDLE

    @classmethod
    def from_config(cls, config: PollConfig) -> "PollState":
        return cls(
            max_attempts=config.max_attempts,
            interval_ms=config.interval_ms,
            initial_delay_ms=config.initial_delay_ms,
        )


class DecisionSnapshot(BaseModel):
    """Decision fields read from an account on one poll tick."""
    model_config = ConfigDict(frozen=True)

    decision_label: Optional[str] = None
    quoted_amount: Optional[Decimal] = None
    reduced_amount: Optional[Decimal] = None
    account_name: Optional[str] = None


class PollCompletion(BaseModel):
    """The one-shot advance signal emitted when polling ends."""
    outcome: PollOutcome
    attempts: int
    target_id: Optional[str] = None
    snapshot: Optional[DecisionSnapshot] = None
    completed_at: datetime


class RetainerView(BaseModel):
    """What the retainer decision screen renders."""
    decision_label: Optional[str] = None
    account_name: str = ""
    is_qualified: bool
    show_frozen: bool
    show_failed: bool
    show_full: bool
    discount: Optional[Decimal] = None
    standard_amount: Decimal
    reduced_amount: Decimal


class CreditDecisionRequest(BaseModel):
    """Decision callback from the credit bureau integration."""
    credit_decision: str = Field(..., min_length=1)
    quoted_retainer: Optional[Decimal] = Field(None, ge=0)
    reduced_retainer: Optional[Decimal] = Field(None, ge=0)


class StartPollRequest(BaseModel):
    """Start the waiting screen for an account.

    account_id may be omitted while the parent account is still being
    resolved; ticks are skipped until it is set.
    """
    account_id: Optional[str] = None
    max_attempts: Optional[int] = Field(None, gt=0)
    interval_ms: Optional[int] = Field(None, gt=0)
    initial_delay_ms: Optional[int] = Field(None, ge=0)


class UpdatePollTargetRequest(BaseModel):
    account_id: str = Field(..., min_length=1)
