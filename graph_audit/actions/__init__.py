"""Single-target tools built on the same Graph client."""

from .sessions import revoke_sign_in_sessions
from .mfa import require_mfa_reregistration
from .licenses import remove_all_licenses, sku_availability
from .mail import send_mail, search_messages, spoof_summary

__all__ = [
    "revoke_sign_in_sessions",
    "require_mfa_reregistration",
    "remove_all_licenses",
    "sku_availability",
    "send_mail",
    "search_messages",
    "spoof_summary",
]
