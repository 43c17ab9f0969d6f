"""
Force MFA re-registration by deleting a user's software OATH methods.
"""

from __future__ import annotations

import logging

from ..audit.jobs import user_path
from ..audit.models import DirectoryRecord
from ..audit.pagination import fetch_all
from ..graph.client import GraphClient

logger = logging.getLogger("graph_audit.actions.mfa")

SOFTWARE_OATH_TYPE = "#microsoft.graph.softwareOathAuthenticationMethod"


def parse_method(item: dict) -> DirectoryRecord:
    return DirectoryRecord(key=item["id"], attributes={"type": item["@odata.type"]})


async def list_authentication_methods(client: GraphClient, upn: str) -> list[DirectoryRecord]:
    return await fetch_all(
        client,
        client.build_url(f"users/{user_path(upn)}/authentication/methods"),
        parse_method,
    )


async def require_mfa_reregistration(client: GraphClient, upn: str) -> list[str]:
    """
    Delete every software OATH method registered to the user.
    Other method types are left alone. Returns the ids that were deleted
    (or would have been, under dry run).
    """
    methods = await list_authentication_methods(client, upn)
    removed = []
    for method in methods:
        method_type = method.get("type")
        if method_type != SOFTWARE_OATH_TYPE:
            logger.debug(f"Ignoring unsupported method type: {method_type}")
            continue
        await client.delete(
            f"users/{user_path(upn)}/authentication/softwareOathMethods/{method.key}"
        )
        logger.info(f"Deleted authentication method {method.key} for {upn}")
        removed.append(method.key)

    if not removed:
        logger.info(f"No software OATH methods registered for {upn}")
    return removed
