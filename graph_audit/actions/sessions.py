"""
Sign-in session revocation.
"""

from __future__ import annotations

import logging

from ..audit.jobs import user_path
from ..graph.client import GraphClient

logger = logging.getLogger("graph_audit.actions.sessions")


async def revoke_sign_in_sessions(client: GraphClient, upn: str) -> bool:
    """
    Invalidate every refresh token issued to the user.
    Returns False when the request was suppressed by dry run.
    """
    endpoint = f"users/{user_path(upn)}/revokeSignInSessions"
    logger.debug(f"Revoking sign-in sessions at {endpoint}")
    await client.post(endpoint, json_body={})
    if client.guardian.dry_run:
        return False
    logger.info(f"Sign-in sessions revoked for {upn}.")
    return True
