"""
Mail tools: send a message as a user, and search a mailbox by subject with
an optional spoofing check (reply-to and sender compared against from).
"""

from __future__ import annotations

import logging
import re
from typing import Any

from ..audit.jobs import user_path
from ..graph.client import GraphClient

logger = logging.getLogger("graph_audit.actions.mail")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
UNKNOWN = "Unknown"


def validate_email(address: str) -> str:
    if not EMAIL_PATTERN.match(address):
        raise ValueError(f"Invalid email: {address}")
    return address


def build_message(recipient: str, subject: str, body: str) -> dict:
    return {
        "message": {
            "subject": subject,
            "body": {"contentType": "Text", "content": body},
            "toRecipients": [{"emailAddress": {"address": recipient}}],
        },
        "saveToSentItems": True,
    }


async def send_mail(client: GraphClient, sender: str, recipient: str, subject: str, body: str) -> bool:
    """Send a plain-text message from `sender`. False when suppressed by dry run."""
    validate_email(recipient)
    await client.post(
        f"users/{user_path(sender)}/sendMail",
        json_body=build_message(recipient, subject, body),
    )
    if client.guardian.dry_run:
        return False
    logger.info(f"Email sent to {recipient}")
    return True


async def search_messages(client: GraphClient, upn: str, subject: str) -> dict:
    """Search a mailbox for messages whose subject matches."""
    return await client.get(
        f"users/{user_path(upn)}/messages",
        params={"$search": f'"subject:{subject}"'},
    )


def _address(container: Any) -> str:
    if not isinstance(container, dict):
        return UNKNOWN
    return (container.get("emailAddress") or {}).get("address") or UNKNOWN


def spoof_summary(messages: dict) -> list[dict]:
    """
    Per message: subject, from, sender, reply-to addresses, and whether
    each of them agrees with the from address.
    """
    summary = []
    for message in messages.get("value") or []:
        from_address = _address(message.get("from"))
        sender_address = _address(message.get("sender"))
        reply_to = [_address(r) for r in message.get("replyTo") or []]
        summary.append({
            "subject": message.get("subject") or UNKNOWN,
            "from": from_address,
            "sender": sender_address,
            "sender_matches_from": sender_address == from_address,
            "reply_to": [
                {"address": addr, "matches_from": addr == from_address}
                for addr in reply_to
            ],
        })
        if sender_address != from_address:
            logger.warning(
                f"Sender and From addresses do not match. Sender: {sender_address}, From: {from_address}"
            )
    return summary
