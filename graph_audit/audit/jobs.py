"""
Shared mailbox audits.

All three enrich candidates with their mailbox purpose and flag those whose
mailbox is shared; they differ in the listing and the pre-filter:
  - licenses:   users holding at least one license
  - blockstatus: users whose sign-in is not blocked
  - adminroles: users holding a directory role
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional
from urllib.parse import quote

from ..config import DEFAULT_PAGE_SIZE, RetryPolicy
from ..graph.client import GraphClient
from .models import DirectoryRecord
from .pagination import fetch_all
from .pipeline import AuditJob

logger = logging.getLogger("graph_audit.audit.jobs")

SHARED_PURPOSE = "shared"


def user_path(key: str) -> str:
    """Quote a UPN or object id for use in a users/{id} path."""
    return quote(key, safe="@")


def _odata_type(item: dict) -> str:
    return (item.get("@odata.type") or "").split(".")[-1]


# ── Parsers ────────────────────────────────────────────────────────────────

def parse_user(item: dict) -> DirectoryRecord:
    upn = item["userPrincipalName"]
    if not isinstance(upn, str) or not upn:
        raise ValueError("userPrincipalName is empty")
    licenses = item.get("assignedLicenses") or []
    if not isinstance(licenses, list):
        raise TypeError("assignedLicenses is not a list")
    return DirectoryRecord(
        key=upn,
        attributes={
            "id": item.get("id"),
            "userPrincipalName": upn,
            "assignedLicenses": [lic.get("skuId") for lic in licenses],
            "accountEnabled": item.get("accountEnabled"),
        },
    )


def parse_role(item: dict) -> DirectoryRecord:
    return DirectoryRecord(
        key=item["id"],
        attributes={"displayName": item.get("displayName") or item["id"]},
    )


def parse_member(item: dict) -> DirectoryRecord:
    upn = item.get("userPrincipalName")
    return DirectoryRecord(
        key=upn or item["id"],
        attributes={
            "id": item["id"],
            "displayName": item.get("displayName"),
            "userPrincipalName": upn,
            "type": _odata_type(item),
        },
    )


# ── Fetchers ───────────────────────────────────────────────────────────────

def _fetch_users(select: str):
    async def fetch(client: GraphClient, cancel: Optional[asyncio.Event]) -> list[DirectoryRecord]:
        return await fetch_all(
            client,
            client.build_url("users"),
            parse_user,
            params={"$select": select, "$top": str(DEFAULT_PAGE_SIZE)},
            cancel=cancel,
        )
    return fetch


async def fetch_role_members(
    client: GraphClient, cancel: Optional[asyncio.Event]
) -> list[DirectoryRecord]:
    """
    Fetch every directory role, then each role's members, one listing at a time.
    A principal holding several roles becomes a single record listing them all,
    positioned where it was first seen.
    """
    roles = await fetch_all(client, client.build_url("directoryRoles"), parse_role, cancel=cancel)
    members: dict[str, DirectoryRecord] = {}

    for role in roles:
        role_name = role.get("displayName")
        role_members = await fetch_all(
            client,
            client.build_url(f"directoryRoles/{role.key}/members"),
            parse_member,
            cancel=cancel,
        )
        logger.debug(f"Role {role_name}: {len(role_members)} member(s)")
        for member in role_members:
            existing = members.get(member.key)
            base = existing.attributes if existing else member.attributes
            held = (existing.get("roles") if existing else []) + [role_name]
            members[member.key] = DirectoryRecord(member.key, {**base, "roles": held})

    return list(members.values())


# ── Enrichment & predicates ────────────────────────────────────────────────

async def fetch_mailbox_purpose(
    client: GraphClient, record: DirectoryRecord, retry: RetryPolicy
) -> Optional[str]:
    """Return the mailbox `userPurpose` (e.g. "user", "shared") for a record."""
    data = await client.get(f"users/{user_path(record.key)}/mailboxSettings", retry=retry)
    if not isinstance(data, dict):
        raise ValueError("mailboxSettings response is not a JSON object")
    return data.get("userPurpose")


def is_shared_mailbox(record: DirectoryRecord, purpose: Any) -> bool:
    return isinstance(purpose, str) and purpose.lower() == SHARED_PURPOSE


def has_license(record: DirectoryRecord) -> bool:
    return bool(record.get("assignedLicenses"))


def sign_in_enabled(record: DirectoryRecord) -> bool:
    return record.get("accountEnabled") is True


def is_user_member(record: DirectoryRecord) -> bool:
    return bool(record.get("userPrincipalName"))


# ── Jobs ───────────────────────────────────────────────────────────────────

shared_mailbox_license_job = AuditJob(
    name="shared_mailbox_licenses",
    description="Shared mailboxes that have licenses assigned",
    fetch=_fetch_users("id,userPrincipalName,assignedLicenses"),
    prefilter=has_license,
    enrich=fetch_mailbox_purpose,
    predicate=is_shared_mailbox,
    describe=lambda r: (
        f"{r.key} is a shared mailbox with {len(r.get('assignedLicenses'))} license(s)"
    ),
)

shared_mailbox_blockstatus_job = AuditJob(
    name="shared_mailbox_blockstatus",
    description="Shared mailboxes whose sign-in is not blocked",
    fetch=_fetch_users("id,userPrincipalName,accountEnabled"),
    prefilter=sign_in_enabled,
    enrich=fetch_mailbox_purpose,
    predicate=is_shared_mailbox,
    describe=lambda r: f"{r.key} is a shared mailbox with sign-in enabled",
)

shared_mailbox_adminrole_job = AuditJob(
    name="shared_mailbox_adminroles",
    description="Shared mailboxes that hold a directory role",
    fetch=fetch_role_members,
    prefilter=is_user_member,
    enrich=fetch_mailbox_purpose,
    predicate=is_shared_mailbox,
    describe=lambda r: (
        f"{r.key} is a shared mailbox with an admin role ({', '.join(r.get('roles') or [])})"
    ),
)

ALL_JOBS = {
    "audit-licenses": shared_mailbox_license_job,
    "audit-blockstatus": shared_mailbox_blockstatus_job,
    "audit-adminroles": shared_mailbox_adminrole_job,
}
