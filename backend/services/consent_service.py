"""
Credit Consent Service

Consent captured on the third-party consent screen:
- One active, versioned consent template
- Append-only acceptance records holding the HTML the applicant saw
- snapshot_hash lets a later reviewer prove the stored snapshot is unaltered
"""
import hashlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from database import database
from models import AuditAction
from models.consent import ConsentAcceptRequest, ConsentRecord, ConsentTemplate
from services.intake_service import IntakeService
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)


TEMPLATE_NOT_CONFIGURED = "Active Consent Template is not configured."
ACCOUNT_ID_MISSING = "Account Id is missing."
TEMPLATE_NOT_AVAILABLE = "Consent template not available."
CHECKBOXES_REQUIRED = "Please accept all required consents before continuing."


class ConsentValidationError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ConsentTemplateNotConfiguredError(Exception):
    def __init__(self, message: str = TEMPLATE_NOT_CONFIGURED):
        self.message = message
        super().__init__(self.message)


def hash_snapshot(html_snapshot: str) -> str:
    return hashlib.sha256((html_snapshot or "").encode("utf-8")).hexdigest()


def generate_consent_id() -> str:
    return f"CONS-{uuid.uuid4().hex[:12].upper()}"


class ConsentService:

    @staticmethod
    async def get_active_template() -> ConsentTemplate:
        """Newest active template; raises when none is configured."""
        db = database.get_db()
        doc = await db.consent_templates.find_one(
            {"is_active": True},
            {"_id": 0},
            sort=[("activated_at", -1)],
        )
        if not doc:
            raise ConsentTemplateNotConfiguredError()
        return ConsentTemplate(**doc)

    @staticmethod
    async def upsert_template(template: ConsentTemplate) -> ConsentTemplate:
        """Store a template version. Activating it deactivates every other version."""
        db = database.get_db()
        template = template.model_copy(update={"activated_at": datetime.now(timezone.utc)})
        if template.is_active:
            await db.consent_templates.update_many(
                {"template_id": {"$ne": template.template_id}, "is_active": True},
                {"$set": {"is_active": False}},
            )
        await db.consent_templates.update_one(
            {"template_id": template.template_id},
            {"$set": template.model_dump(mode="json")},
            upsert=True,
        )
        logger.info(f"Consent template saved template_id={template.template_id} version={template.version}")
        return template

    @staticmethod
    async def save_consent_with_snapshot(request: ConsentAcceptRequest) -> Dict[str, Any]:
        """Validate and record an acceptance."""
        account_id: Optional[str] = (request.account_id or "").strip() or None
        if not account_id and request.parent_account_id:
            account_id = await IntakeService.get_parent_account_id(request.parent_account_id)
        if not account_id:
            raise ConsentValidationError(ACCOUNT_ID_MISSING)

        version = (request.version or "").strip()
        if not version:
            raise ConsentValidationError(TEMPLATE_NOT_AVAILABLE)

        if not (request.accepted_disclosures and request.accepted_terms and request.accepted_fcra):
            raise ConsentValidationError(CHECKBOXES_REQUIRED)

        html_snapshot = request.html_snapshot or ""
        record = ConsentRecord(
            consent_id=generate_consent_id(),
            account_id=account_id,
            third_party_account_id=request.third_party_account_id,
            template_version=version,
            html_snapshot=html_snapshot,
            snapshot_hash=hash_snapshot(html_snapshot),
            accepted_disclosures=True,
            accepted_terms=True,
            accepted_fcra=True,
            created_at=datetime.now(timezone.utc),
        )

        db = database.get_db()
        await db.consent_records.insert_one(record.model_dump(mode="json"))
        logger.info(f"Consent recorded consent_id={record.consent_id} account_id={account_id} version={version}")

        await create_audit_log(
            action=AuditAction.CONSENT_ACCEPTED,
            account_id=account_id,
            resource_type="consent",
            resource_id=record.consent_id,
            metadata={
                "template_version": version,
                "snapshot_hash": record.snapshot_hash,
                "third_party_account_id": request.third_party_account_id,
            },
        )
        return {
            "success": True,
            "consent_id": record.consent_id,
            "snapshot_hash": record.snapshot_hash,
        }

    @staticmethod
    async def get_consent_records(account_id: str, limit: int = 20):
        db = database.get_db()
        cursor = db.consent_records.find(
            {"account_id": account_id},
            {"_id": 0, "html_snapshot": 0},
        ).sort("created_at", -1).limit(limit)
        return await cursor.to_list(length=limit)
