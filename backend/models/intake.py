"""
Intake request models: client application, third-party applicant, applicant type.
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional


class ClientApplication(BaseModel):
    """Primary client account created at the start of intake."""
    first_name: str = Field(..., min_length=1)
    middle_name: Optional[str] = None
    last_name: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    mobile_phone: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    credit_applicant: Optional[str] = None
    record_type_id: Optional[str] = None


class ThirdPartyApplication(BaseModel):
    """Third party paying the retainer on the client's behalf."""
    first_name: str = Field(..., min_length=1)
    middle_name: Optional[str] = None
    last_name: str = Field(..., min_length=1)
    birthdate: Optional[str] = None
    social_security_number: Optional[str] = None
    mobile_phone: Optional[str] = None
    email: Optional[EmailStr] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    annual_income: Optional[str] = None
    record_type_id: Optional[str] = None


class ThirdPartyRequest(BaseModel):
    parent_account_id: Optional[str] = None
    application: ThirdPartyApplication


class ApplicantTypeRequest(BaseModel):
    applicant_type: Optional[str] = None
