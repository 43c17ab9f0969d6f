"""
Graph Audit Tools
=================
Command-line utilities that authenticate to Microsoft Entra ID with client
credentials and use Microsoft Graph to audit directory objects (shared
mailboxes holding licenses, admin roles, or unblocked sign-in) and to act on
single users (revoke sessions, reset MFA registrations, remove licenses,
send and inspect mail).

Audits are read-only. Action tools may only call the write endpoint they
exist for, and all of them support --dry-run.
"""

__version__ = "1.0.0"
