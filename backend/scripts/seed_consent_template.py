"""
Seed / rotate the active consent template

Stores a consent template version and makes it the active one; every other
version is deactivated.

Usage (from backend/):
  python -m scripts.seed_consent_template --version 1.0 --body-file consent.html
  python -m scripts.seed_consent_template --version 1.1 --body "<p>...</p>"
"""

import asyncio
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import database
from models.consent import ConsentTemplate
from services.consent_service import ConsentService
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_BODY = (
    "<p>By continuing you authorize us to obtain a consumer credit report for "
    "the purpose of determining your retainer. You acknowledge receipt of the "
    "disclosures, the terms of engagement and your rights under the Fair Credit "
    "Reporting Act.</p>"
)


async def seed_template(version: str, body: str) -> ConsentTemplate:
    await database.connect()
    try:
        template = ConsentTemplate(
            template_id=f"consent-v{version}",
            version=version,
            consent_body=body,
            is_active=True,
        )
        await ConsentService.upsert_template(template)
        logger.info("Active consent template is now version %s", version)
        return template
    finally:
        await database.close()


def main():
    parser = argparse.ArgumentParser(description="Store and activate a consent template version")
    parser.add_argument("--version", required=True, help="Template version label, e.g. 1.0")
    parser.add_argument("--body", help="Consent HTML body")
    parser.add_argument("--body-file", help="Path to a file holding the consent HTML body")
    args = parser.parse_args()
    if args.body and args.body_file:
        parser.error("Use either --body or --body-file, not both")
    body = DEFAULT_BODY
    if args.body_file:
        body = Path(args.body_file).read_text(encoding="utf-8")
    elif args.body:
        body = args.body
    asyncio.run(seed_template(args.version, body))
    return 0


if __name__ == "__main__":
    sys.exit(main())
