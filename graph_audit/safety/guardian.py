"""
Safety Guardian — Gates every write request against an explicit allow-list.
Audits run with an empty allow-list and are therefore strictly read-only;
action tools allow only the endpoint they exist to call, and can run dry.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

logger = logging.getLogger("graph_audit.safety")

# ─── Write Methods ───────────────────────────────────────────────────────────

READ_METHODS = {"GET", "HEAD", "OPTIONS"}
WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Write endpoints each action tool is permitted to call
WRITE_ACTIONS = {
    "revoke_sessions": re.compile(r"/users/[^/]+/revokeSignInSessions$", re.IGNORECASE),
    "delete_software_oath": re.compile(
        r"/users/[^/]+/authentication/softwareOathMethods/[^/]+$", re.IGNORECASE
    ),
    "assign_license": re.compile(r"/users/[^/]+/assignLicense$", re.IGNORECASE),
    "send_mail": re.compile(r"/users/[^/]+/sendMail$", re.IGNORECASE),
}


class SafetyViolation(Exception):
    """Raised when a write outside the allow-list is attempted."""
    pass


class SafetyGuardian:
    """
    Validates every outbound HTTP request before it is sent.
    Keeps a record of violations and of writes suppressed by dry run.
    """

    def __init__(self, allowed_actions: Iterable[str] = (), dry_run: bool = False):
        unknown = [a for a in allowed_actions if a not in WRITE_ACTIONS]
        if unknown:
            raise ValueError(f"Unknown write action(s): {', '.join(unknown)}")
        self.allowed_actions = tuple(allowed_actions)
        self.dry_run = dry_run
        self.violations: list[dict] = []
        self.skipped_writes: list[dict] = []
        self.checks_performed: int = 0

    @property
    def read_only(self) -> bool:
        return not self.allowed_actions

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Decide whether a request may be sent.
        Returns True to send, False when a permitted write is suppressed by
        dry run, and raises SafetyViolation for anything else.
        """
        self.checks_performed += 1
        method_upper = method.upper()

        if method_upper in READ_METHODS:
            return True

        path = url.split("?", 1)[0]
        if method_upper in WRITE_METHODS:
            for action in self.allowed_actions:
                if WRITE_ACTIONS[action].search(path):
                    if self.dry_run:
                        self.skipped_writes.append(self._event(method_upper, url, action))
                        logger.warning(f"[dry-run] Skipping {method_upper} {url}")
                        return False
                    return True

        self._record_violation(method_upper, url, "Write outside allow-list")
        raise SafetyViolation(
            f"SAFETY VIOLATION: {method_upper} {url} is not an allowed write"
        )

    @staticmethod
    def _event(method: str, url: str, reason: str) -> dict:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": method,
            "url": url,
            "reason": reason,
        }

    def _record_violation(self, method: str, url: str, reason: str):
        self.violations.append(self._event(method, url, reason))
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the guardian's activity summary."""
        return {
            "mode": "READ-ONLY" if self.read_only else "ALLOW-LISTED WRITES",
            "allowed_actions": list(self.allowed_actions),
            "dry_run": self.dry_run,
            "checks_performed": self.checks_performed,
            "violations": self.violations,
            "skipped_writes": self.skipped_writes,
        }
