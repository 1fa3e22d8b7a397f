"""
Omie financial movements (financas/mf ListarMovimentos) -> omie_mf_movements.

Incremental: the checkpoint becomes the dDtAltDe filter (DD/MM/YYYY, Brasília
day granularity), so every run re-reads the checkpoint day and relies on the
cod_mov_cc upsert for idempotency. Pages are upserted as they arrive instead of
being accumulated in memory.

The new checkpoint is min(now, newest dDtAlt seen), never the wall-clock
completion time: a movement altered while the job runs is still inside the
next run's window. A truncated listing (page cap hit, or a later page that came
back empty or unreadable) keeps the checkpoint at the window start.
"""
import logging

from app.config import settings
from app.db.supabase import get_db
from app.models.omie_records import decode_movement, to_omie_date
from app.services.omie_paged import MF_PAGING, OmieCall, PageProgress, iter_pages
from app.services.omie_sync import (
    advance_checkpoint,
    decode_all,
    dedupe,
    max_altered_at,
    resolve_since,
    upsert_batches,
)

logger = logging.getLogger(__name__)

SOURCE = "omie_mf_movements"
TABLE = "omie_mf_movements"
ENDPOINT = "/financas/mf/"
CALL = "ListarMovimentos"
LOOKBACK_DAYS = 7
PAGE_SIZE = 200


async def sync_omie_mf_movements(
    full_sync: bool = False,
    force_days: int | None = None,
    db=None,
    omie_call: OmieCall | None = None,
) -> dict:
    db = db or get_db()
    since = resolve_since(SOURCE, LOOKBACK_DAYS, full_sync, force_days, db=db)

    base_params = {}
    if since is not None:
        base_params["dDtAltDe"] = to_omie_date(since)

    logger.info("mf_movements: fetching since %s", base_params.get("dDtAltDe", "<full>"))

    fetched = 0
    pages = 0
    upserted = 0
    skipped = 0
    valor_defaulted = 0
    newest = None
    progress = PageProgress()

    async for page_items in iter_pages(
        ENDPOINT,
        CALL,
        base_params,
        paging=MF_PAGING,
        omie_call=omie_call,
        page_size=PAGE_SIZE,
        progress=progress,
    ):
        pages += 1
        fetched += len(page_items)

        rows, page_skipped = decode_all(page_items, decode_movement)
        if page_skipped:
            logger.warning("mf_movements: page %d dropped %d records without cod_mov_cc", pages, page_skipped)
        skipped += page_skipped

        rows = dedupe(rows, "cod_mov_cc")
        defaulted = [r["cod_mov_cc"] for r in rows if r["valor_defaulted"]]
        if defaulted:
            logger.warning(
                "mf_movements: page %d has %d movements without a numeric amount, stored as 0 (cod_mov_cc %s)",
                pages, len(defaulted), defaulted[:20],
            )
        valor_defaulted += len(defaulted)

        newest = max_altered_at(rows, newest)
        if rows:
            upserted += upsert_batches(db, TABLE, rows, "cod_mov_cc", settings.sync_upsert_batch_size)

    new_sync_at = advance_checkpoint(
        SOURCE, newest, since, filtered=since is not None, truncated=progress.truncated, db=db
    )
    result = {
        "fetched": fetched,
        "pages": pages,
        "truncated": progress.truncated,
        "upserted": upserted,
        "skipped": skipped,
        "valorDefaulted": valor_defaulted,
        "since": since.isoformat() if since else None,
        "newSyncAt": new_sync_at.isoformat() if new_sync_at else None,
    }
    logger.info("mf_movements: %s", result)
    return result
