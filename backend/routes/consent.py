"""
Consent API Routes

Consent screen for the third-party applicant: fetch the active template,
record the acceptance with an HTML snapshot.
"""
from fastapi import APIRouter, HTTPException, status
import logging

from models.consent import ConsentAcceptRequest
from services.consent_service import (
    ConsentService,
    ConsentTemplateNotConfiguredError,
    ConsentValidationError,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/consent", tags=["consent"])


@router.get("/template")
async def get_active_template():
    try:
        template = await ConsentService.get_active_template()
    except ConsentTemplateNotConfiguredError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return template.model_dump(mode="json")


@router.post("/accept", status_code=status.HTTP_201_CREATED)
async def accept_consent(data: ConsentAcceptRequest):
    try:
        return await ConsentService.save_consent_with_snapshot(data)
    except ConsentValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except Exception as e:
        logger.error(f"Consent save error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save consent"
        )


@router.get("/accounts/{account_id}")
async def list_consent_records(account_id: str):
    records = await ConsentService.get_consent_records(account_id)
    return {"account_id": account_id, "records": records}
