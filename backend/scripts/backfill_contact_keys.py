"""
Backfill conflict-matching keys on imported accounts

Conflict matching looks accounts up by lowercased email and by the digits of
the mobile phone (mobile_phone_digits). Accounts imported from the legacy
system carry neither; this sets both.

Usage (from backend/):
  python -m scripts.backfill_contact_keys
  python -m scripts.backfill_contact_keys --dry-run
"""

import asyncio
import argparse
import re
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import get_db_context
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def contact_keys(account: dict) -> dict:
    keys = {}
    digits = re.sub(r"\D", "", account.get("mobile_phone") or "")
    if digits and account.get("mobile_phone_digits") != digits:
        keys["mobile_phone_digits"] = digits
    email = (account.get("email") or "").strip().lower()
    if email and account.get("email") != email:
        keys["email"] = email
    return keys


async def backfill(dry_run: bool = False) -> int:
    updated = 0
    async with get_db_context() as db:
        cursor = db.accounts.find(
            {"$or": [
                {"mobile_phone": {"$ne": None}, "mobile_phone_digits": {"$exists": False}},
                {"email": {"$regex": "[A-Z]"}},
            ]},
            {"_id": 0, "account_id": 1, "mobile_phone": 1, "mobile_phone_digits": 1, "email": 1},
        )
        async for account in cursor:
            keys = contact_keys(account)
            if not keys:
                continue
            if dry_run:
                logger.info("Would update %s: %s", account["account_id"], sorted(keys))
            else:
                await db.accounts.update_one({"account_id": account["account_id"]}, {"$set": keys})
            updated += 1
    logger.info("%s %d accounts", "Would update" if dry_run else "Updated", updated)
    return updated


def main():
    parser = argparse.ArgumentParser(description="Backfill conflict-matching keys on accounts")
    parser.add_argument("--dry-run", action="store_true", help="Report without writing")
    args = parser.parse_args()
    asyncio.run(backfill(dry_run=args.dry_run))
    return 0


if __name__ == "__main__":
    sys.exit(main())
