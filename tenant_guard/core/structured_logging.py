"""Structured logging helpers (PII-safe)."""

import hashlib
import ipaddress
from typing import Any


def hash_email(email: str) -> str:
    """SHA256 of the normalized email, for logs and audit details."""
    return hashlib.sha256(email.lower().strip().encode()).hexdigest()


def mask_ip(ip: str | None) -> str | None:
    """Mask an IP to /24 (IPv4) or /64 (IPv6)."""
    if not ip:
        return None
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return None
    prefix = 24 if addr.version == 4 else 64
    network = ipaddress.ip_network(f"{addr}/{prefix}", strict=False)
    return str(network.network_address)


def build_log_context(
    *,
    user_id: str | None = None,
    org_id: str | None = None,
    session_id: str | None = None,
    email: str | None = None,
    ip_address: str | None = None,
    operation: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = str(user_id)
    if org_id:
        context["org_id"] = str(org_id)
    if session_id:
        context["session_id"] = str(session_id)
    if email:
        context["email_hash"] = hash_email(email)[:16]
    if ip_address:
        context["ip_prefix"] = mask_ip(ip_address)
    if operation:
        context["operation"] = operation
    return context
