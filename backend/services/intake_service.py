"""
Intake Service - account creation for the client intake flow.

Creates the client's account and, when someone else pays the retainer, the
third-party applicant's account. New accounts are scanned for conflicts
against existing accounts right after creation.
"""
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from database import database
from models import AccountType, ApplicantType, AuditAction, CreditCheckStatus
from models.intake import ClientApplication, ThirdPartyApplication
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

APPLICANT_TYPE_REQUIRED = "Please select Client or Third Party."


class IntakeValidationError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


def validate_applicant_type(applicant_type: Optional[str]) -> Tuple[bool, Optional[str]]:
    """
    Check the applicant type picked before the flow can continue.

    Returns:
        (is_valid, error_message)
    """
    value = (applicant_type or "").strip()
    if value not in {t.value for t in ApplicantType}:
        return False, APPLICANT_TYPE_REQUIRED
    return True, None


def applicant_type_options():
    return [{"label": t.value, "value": t.value} for t in ApplicantType]


def mask_ssn(ssn: Optional[str]) -> Optional[str]:
    """Keep only the last four digits: ***-**-1234"""
    digits = re.sub(r"\D", "", ssn or "")
    if not digits:
        return None
    return f"***-**-{digits[-4:]}"


def generate_account_id(now: datetime) -> str:
    return f"ACC-{now.strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


def _full_name(first: str, middle: Optional[str], last: str) -> str:
    return " ".join(p.strip() for p in (first, middle, last) if p and p.strip())


def _contact_fields(application) -> Dict[str, Any]:
    email = (application.email or "").strip().lower() or None
    return {
        "email": email,
        "mobile_phone": application.mobile_phone,
        "mobile_phone_digits": re.sub(r"\D", "", application.mobile_phone or "") or None,
        "street": application.street,
        "city": application.city,
        "state": application.state,
        "postal_code": application.postal_code,
    }


def _base_account_doc(account_type: AccountType, application, now: datetime) -> Dict[str, Any]:
    doc = {
        "account_id": generate_account_id(now),
        "account_type": account_type.value,
        "name": _full_name(application.first_name, application.middle_name, application.last_name),
        "first_name": application.first_name.strip(),
        "middle_name": application.middle_name,
        "last_name": application.last_name.strip(),
        "record_type_id": application.record_type_id,
        "credit_decision": None,
        "credit_check_status": CreditCheckStatus.NOT_REQUESTED.value,
        "conflict_alert": False,
        "conflict_alert_dismissed": False,
        "conflict_alert_signature": None,
        "conflict_score": None,
        "created_at": now.isoformat(),
        "updated_at": now.isoformat(),
    }
    doc.update(_contact_fields(application))
    return doc


async def _scan_new_account(account_id: str):
    # Imported here to keep intake usable without the conflict stack loaded
    from services.conflict_service import scan_account
    try:
        await scan_account(account_id)
    except Exception as e:
        # Conflict scan failure must not block account creation
        logger.error(f"Conflict scan after account creation failed account_id={account_id}: {e}")


class IntakeService:

    @staticmethod
    async def create_client_account(application: ClientApplication) -> Dict[str, Any]:
        db = database.get_db()
        now = datetime.now(timezone.utc)
        doc = _base_account_doc(AccountType.CLIENT, application, now)
        if application.credit_applicant:
            valid, error = validate_applicant_type(application.credit_applicant)
            if not valid:
                raise IntakeValidationError(error)
            doc["credit_applicant"] = application.credit_applicant.strip()

        await db.accounts.insert_one(doc)
        logger.info(f"Client account created account_id={doc['account_id']}")
        await create_audit_log(
            action=AuditAction.ACCOUNT_CREATED,
            account_id=doc["account_id"],
            resource_type="account",
            resource_id=doc["account_id"],
        )
        await _scan_new_account(doc["account_id"])
        return {"account_id": doc["account_id"], "name": doc["name"]}

    @staticmethod
    async def get_parent_account_id(reference: Optional[str]) -> Optional[str]:
        """
        Resolve an account reference (canonical id or legacy short id) to the
        canonical account_id. Unknown references come back unchanged.
        """
        if not reference:
            return None
        ref = reference.strip()
        db = database.get_db()
        try:
            doc = await db.accounts.find_one(
                {"$or": [{"account_id": ref}, {"legacy_id": ref}]},
                {"_id": 0, "account_id": 1},
            )
        except Exception as e:
            logger.error(f"Failed to normalize parent id, using original: {e}")
            return ref
        return doc["account_id"] if doc else ref

    @staticmethod
    async def create_third_party_account(
        application: ThirdPartyApplication,
        parent_reference: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create the third-party applicant. No parent link is stored on the new account."""
        db = database.get_db()
        now = datetime.now(timezone.utc)
        parent_account_id = await IntakeService.get_parent_account_id(parent_reference)

        doc = _base_account_doc(AccountType.THIRD_PARTY, application, now)
        doc.update({
            "birthdate": application.birthdate,
            "ssn_masked": mask_ssn(application.social_security_number),
            "annual_income": application.annual_income,
        })

        await db.accounts.insert_one(doc)
        logger.info(
            f"Third-party account created account_id={doc['account_id']} "
            f"parent_account_id={parent_account_id} ssn={doc['ssn_masked']}"
        )
        await create_audit_log(
            action=AuditAction.THIRD_PARTY_CREATED,
            account_id=doc["account_id"],
            resource_type="account",
            resource_id=doc["account_id"],
            metadata={"parent_account_id": parent_account_id},
        )
        await _scan_new_account(doc["account_id"])
        return {
            "third_party_id": doc["account_id"],
            "parent_account_id": parent_account_id,
            "message": "Application submitted successfully!",
        }
