"""Structured logging helpers (PHI-safe)."""

from typing import Any


def build_log_context(
    *,
    tenant_id: str | None = None,
    user_id: str | None = None,
    requisition_id: str | None = None,
    job_id: str | None = None,
    client: str | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict."""
    context: dict[str, Any] = {}
    if tenant_id:
        context["tenant_id"] = str(tenant_id)
    if user_id:
        context["user_id"] = str(user_id)
    if requisition_id:
        context["requisition_id"] = str(requisition_id)
    if job_id:
        context["job_id"] = str(job_id)
    if client:
        context["client"] = client
    return context


def mask_token(token: str | None) -> str:
    """Show only the head of a device token in logs."""
    if not token:
        return ""
    if len(token) <= 12:
        return "***"
    return f"{token[:12]}..."
