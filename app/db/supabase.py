"""
Supabase client for the sync jobs and the reconciliation reads.

The sync jobs upsert under RLS, so the backend must run with a service-role
key; a publishable/anon key is reported once at first use.
"""
import base64
import json
import logging

from supabase import Client, create_client

from app.config import settings

_client: Client | None = None

logger = logging.getLogger(__name__)


def key_role(key: str) -> str | None:
    """'service_role', 'anon'/'publishable' or None when the key is unrecognised."""
    if key.startswith("sb_secret_"):
        return "service_role"
    if key.startswith(("sb_publishable_", "sbp_")):
        return "publishable"

    # Legacy JWT keys carry the role in the payload
    parts = key.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        role = json.loads(base64.urlsafe_b64decode(payload).decode("utf-8")).get("role")
    except (ValueError, UnicodeDecodeError, AttributeError):
        return None
    return role if isinstance(role, str) else None


def get_db() -> Client:
    global _client
    if _client is None:
        key = settings.supabase_service_role_key or settings.supabase_key
        role = key_role(key)
        if role != "service_role":
            logger.critical(
                "Supabase key role is %s, not service_role: omie_* upserts and sync_state "
                "writes may be rejected by RLS. Set SUPABASE_SERVICE_ROLE_KEY.",
                role or "unknown",
            )
        _client = create_client(settings.supabase_url, key)
    return _client


def paginate(query_builder, page_limit: int = 1000) -> list[dict]:
    """Drain a select query with .range() windows (PostgREST caps rows per call)."""
    rows = []
    start = 0
    while True:
        batch = query_builder.range(start, start + page_limit - 1).execute().data or []
        rows.extend(batch)
        if len(batch) < page_limit:
            break
        start += page_limit
    return rows
