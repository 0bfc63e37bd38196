"""
Consent Models

Credit/terms consent captured during intake with:
- Versioned consent templates (one active at a time)
- Append-only acceptance records holding the exact HTML shown
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ConsentTemplate(BaseModel):
    """Versioned consent body shown on the consent screen."""
    template_id: str
    version: str
    consent_body: str
    is_active: bool = True
    # Set on every save; the newest active version wins
    activated_at: Optional[datetime] = None


class ConsentAcceptRequest(BaseModel):
    """Request to record consent acceptance.

    account_id or parent_account_id must be supplied; parent_account_id is
    resolved to the canonical account id when account_id is missing.
    """
    account_id: Optional[str] = None
    parent_account_id: Optional[str] = None
    third_party_account_id: Optional[str] = None
    version: Optional[str] = None
    html_snapshot: Optional[str] = None
    accepted_disclosures: bool = False
    accepted_terms: bool = False
    accepted_fcra: bool = False


class ConsentRecord(BaseModel):
    """Append-only consent acceptance."""
    consent_id: str
    account_id: str
    third_party_account_id: Optional[str] = None
    template_version: str
    html_snapshot: str = ""
    snapshot_hash: str
    accepted_disclosures: bool
    accepted_terms: bool
    accepted_fcra: bool
    created_at: datetime = Field(...)
