"""
Per-source sync checkpoints (table sync_state, one row per source).

The checkpoint bounds the next incremental fetch window. Writes never move a
checkpoint backwards: when two sync requests overlap, the one finishing last
with an older value leaves the newer checkpoint in place.
"""
import logging
from datetime import datetime, timezone

from app.db.supabase import get_db

logger = logging.getLogger(__name__)

TABLE = "sync_state"


def parse_timestamp(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.warning("sync_state: unparseable timestamp %r", value)
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def get_last_sync_at(source: str, db=None) -> datetime | None:
    db = db or get_db()
    result = db.table(TABLE).select("last_sync_at").eq("source", source).limit(1).execute()
    rows = result.data or []
    if not rows:
        return None
    return parse_timestamp(rows[0].get("last_sync_at"))


def set_last_sync_at(source: str, ts: datetime, db=None) -> datetime:
    """Upsert the checkpoint for source. Returns the checkpoint now in effect."""
    db = db or get_db()
    ts = parse_timestamp(ts)
    current = get_last_sync_at(source, db=db)
    if current is not None and ts < current:
        logger.warning(
            "sync_state %s: keeping %s, refusing to rewind to %s",
            source, current.isoformat(), ts.isoformat(),
        )
        return current

    db.table(TABLE).upsert(
        {
            "source": source,
            "last_sync_at": ts.isoformat(),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        },
        on_conflict="source",
    ).execute()
    logger.info("sync_state %s: checkpoint -> %s", source, ts.isoformat())
    return ts
