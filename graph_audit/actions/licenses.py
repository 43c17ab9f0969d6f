"""
License removal and subscription availability.
"""

from __future__ import annotations

import logging
from typing import Sequence

from ..audit.jobs import user_path
from ..audit.models import DirectoryRecord
from ..audit.pagination import fetch_all
from ..graph.client import GraphClient

logger = logging.getLogger("graph_audit.actions.licenses")

ALL_SKUS = "*"


async def get_assigned_licenses(client: GraphClient, upn: str) -> list[str]:
    """Return the skuIds assigned to a user."""
    data = await client.get(f"users/{user_path(upn)}", params={"$select": "assignedLicenses"})
    return [lic["skuId"] for lic in data.get("assignedLicenses") or []]


async def remove_all_licenses(client: GraphClient, upn: str) -> list[str]:
    """Remove every license from a user. Returns the skuIds removed."""
    sku_ids = await get_assigned_licenses(client, upn)
    if not sku_ids:
        logger.info(f"No licenses assigned to {upn}")
        return []

    await client.post(
        f"users/{user_path(upn)}/assignLicense",
        json_body={"addLicenses": [], "removeLicenses": sku_ids},
    )
    logger.info(f"Removed {len(sku_ids)} license(s) from {upn}")
    return sku_ids


def parse_sku(item: dict) -> DirectoryRecord:
    prepaid = item.get("prepaidUnits") or {}
    return DirectoryRecord(
        key=item["skuPartNumber"],
        attributes={
            "skuId": item.get("skuId"),
            "enabled": int(prepaid.get("enabled") or 0),
            "consumed": int(item.get("consumedUnits") or 0),
        },
    )


def wants_sku(requested: Sequence[str], sku_part_number: str) -> bool:
    if list(requested) == [ALL_SKUS]:
        return True
    return sku_part_number in requested


async def sku_availability(client: GraphClient, requested: Sequence[str]) -> list[dict]:
    """Remaining units per subscribed SKU, filtered to `requested` ("*" for all)."""
    skus = await fetch_all(client, client.build_url("subscribedSkus"), parse_sku)
    return [
        {
            "skuPartNumber": sku.key,
            "remainingUnits": sku.get("enabled") - sku.get("consumed"),
        }
        for sku in skus
        if wants_sku(requested, sku.key)
    ]
