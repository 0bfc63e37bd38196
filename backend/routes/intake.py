"""Intake Routes - client and third-party account creation.

Endpoints:
- GET  /api/intake/applicant-types - Options for the applicant type picker
- POST /api/intake/applicant-type/validate - Validate the picked applicant type
- POST /api/intake/client - Create the client account
- POST /api/intake/third-party - Create the third-party applicant account
- GET  /api/intake/parent-account/{reference} - Resolve a parent account reference
- GET  /api/intake/accounts/{account_id}/timeline - Audit trail for an account
"""
from fastapi import APIRouter, HTTPException, Query, status
import logging

from models.intake import ApplicantTypeRequest, ClientApplication, ThirdPartyRequest
from services.intake_service import (
    IntakeService,
    IntakeValidationError,
    applicant_type_options,
    validate_applicant_type,
)
from utils.audit import get_audit_logs_for_account

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/intake", tags=["intake"])


@router.get("/applicant-types")
async def get_applicant_types():
    return {"options": applicant_type_options()}


@router.post("/applicant-type/validate")
async def validate_applicant_type_endpoint(data: ApplicantTypeRequest):
    """Applicant type must be picked before the flow continues."""
    is_valid, error = validate_applicant_type(data.applicant_type)
    if not is_valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error)
    return {"valid": True, "applicant_type": data.applicant_type.strip()}


@router.post("/client", status_code=status.HTTP_201_CREATED)
async def create_client(data: ClientApplication):
    try:
        return await IntakeService.create_client_account(data)
    except IntakeValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except Exception as e:
        logger.error(f"Client account creation error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create account"
        )


@router.post("/third-party", status_code=status.HTTP_201_CREATED)
async def create_third_party(data: ThirdPartyRequest):
    """Third-party applicant paying the client's retainer.

    parent_account_id may be the canonical account id or a legacy short id;
    it is normalized before being echoed back.
    """
    try:
        return await IntakeService.create_third_party_account(
            data.application,
            parent_reference=data.parent_account_id,
        )
    except IntakeValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except Exception as e:
        logger.error(f"Third-party account creation error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to submit application"
        )


@router.get("/parent-account/{reference}")
async def resolve_parent_account(reference: str):
    account_id = await IntakeService.get_parent_account_id(reference)
    return {"reference": reference, "account_id": account_id}


@router.get("/accounts/{account_id}/timeline")
async def get_account_timeline(account_id: str, limit: int = Query(50, ge=1, le=200)):
    logs = await get_audit_logs_for_account(account_id, limit=limit)
    return {"account_id": account_id, "events": logs}
