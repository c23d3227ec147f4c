"""Seed the database with the primary user and an optional whitelist file.

Usage:
    python -m sms_assistant.seed [--file seed.json]

The seed file is JSON:

    {
      "users": [{"name": "Natalie", "phone_number": "+15555551234", "email": null}],
      "contacts": [{"name": "Natalie", "phone_number": "+15555551234", "relationship": "family"}],
      "permissions": [{"phone_number": "+15555551234", "permission_type": "location"}],
      "grocery_share": ["+15555551234"]
    }

Contacts belong to the primary user, permissions are granted by the primary
user, and grocery_share lists the users the primary user's grocery list is
shared with. Running the seed twice changes nothing.
"""
import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from sms_assistant.config import get_settings
from sms_assistant.lists import ListService
from sms_assistant.logging_utils import setup_logging
from sms_assistant.models import PermissionKind
from sms_assistant.permissions import PermissionGuard
from sms_assistant.repository import Repository
from sms_assistant.storage import SessionLocal, init_db
from sms_assistant.utils import normalize_phone_number

logger = logging.getLogger(__name__)


def seed_database(repo: Repository, primary_phone: str, primary_name: str, data: Optional[dict] = None) -> dict:
    """Apply the seed; returns counts of what was created."""
    data = data or {}
    summary = {"users": 0, "contacts": 0, "permissions": 0, "list_shares": 0}

    primary, created = repo.get_or_create_user(
        normalize_phone_number(primary_phone), primary_name, is_primary_user=True
    )
    summary["users"] += int(created)

    for entry in data.get("users", []):
        _, created = repo.get_or_create_user(
            normalize_phone_number(entry["phone_number"]),
            entry["name"],
            email=entry.get("email"),
        )
        summary["users"] += int(created)

    for entry in data.get("contacts", []):
        if repo.get_contact_by_name(primary.id, entry["name"]) is not None:
            continue
        repo.add_contact(
            primary.id,
            entry["name"],
            phone_number=entry.get("phone_number"),
            email=entry.get("email"),
            relationship=entry.get("relationship"),
            notes=entry.get("notes"),
        )
        summary["contacts"] += 1

    guard = PermissionGuard(repo)
    for entry in data.get("permissions", []):
        user = repo.get_user_by_phone(normalize_phone_number(entry["phone_number"]))
        if user is None:
            logger.warning(f"Skipping permission for unknown user {entry['phone_number']}")
            continue
        kind = PermissionKind(entry["permission_type"])
        existing = repo.get_permission(user.id, primary.id, kind)
        if existing is not None and existing.is_active:
            continue
        expires_at = entry.get("expires_at")
        guard.grant(
            user.id,
            primary.id,
            kind,
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )
        summary["permissions"] += 1

    shared_with = data.get("grocery_share", [])
    if shared_with:
        grocery = ListService(repo).get_or_create_grocery_list(primary.id)
        for phone in shared_with:
            user = repo.get_user_by_phone(normalize_phone_number(phone))
            if user is None:
                logger.warning(f"Skipping list share for unknown user {phone}")
                continue
            if repo.get_list_share(grocery.id, user.id) is not None:
                continue
            repo.upsert_list_share(grocery, user.id, can_edit=True)
            summary["list_shares"] += 1

    return summary


def build_parser():
    p = argparse.ArgumentParser(prog="sms_assistant.seed", description="Seed users, contacts and permissions")
    p.add_argument("--file", "-f", type=Path, help="JSON seed file", default=None)
    return p


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    if not settings.PRIMARY_USER_PHONE:
        logger.error("PRIMARY_USER_PHONE is not set")
        return 2

    data = None
    if args.file is not None:
        try:
            data = json.loads(args.file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read seed file {args.file}: {e}")
            return 1

    init_db()
    db = SessionLocal()
    try:
        summary = seed_database(Repository(db), settings.PRIMARY_USER_PHONE, settings.PRIMARY_USER_NAME, data)
    finally:
        db.close()

    logger.info("Seeding complete", extra=summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
