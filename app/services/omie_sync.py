"""
Omie cadastro sync jobs: categories, parties, projects, accounts payable.

Each job maps one Omie listing to one Supabase table:
  1. read checkpoint (sync_state) or fall back to the job's lookback window
  2. fetch every page (these endpoints ignore/misbehave with a since filter,
     so they always do a full fetch)
  3. decode records via app.models.omie_records, drop rows without a key
  4. upsert in batches on the primary key
  5. advance the checkpoint to min(now, newest record alteration seen), or
     hold it at the window start when the listing came back truncated

Exposed functions:
  sync_omie_categories() / sync_omie_parties() / sync_omie_projects() /
  sync_omie_accounts_payable()
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import httpx
from postgrest.exceptions import APIError

from app.config import settings
from app.db.supabase import get_db
from app.models import omie_records
from app.services.errors import SyncUpsertError
from app.services.omie_paged import OmieCall, fetch_all_paged
from app.services.sync_state import get_last_sync_at, parse_timestamp, set_last_sync_at

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityJob:
    source: str
    table: str
    conflict_key: str
    endpoint_path: str
    call: str
    decode: Callable[[dict], dict | None]
    lookback_days: int
    page_size: int = 200


CATEGORIES = EntityJob(
    source="omie_categories",
    table="omie_categories",
    conflict_key="omie_code",
    endpoint_path="/geral/categorias/",
    call="ListarCategorias",
    decode=omie_records.decode_category,
    lookback_days=30,  # categories rarely change
)

PARTIES = EntityJob(
    source="omie_parties",
    table="omie_parties",
    conflict_key="omie_code",
    endpoint_path="/geral/clientes/",
    call="ListarClientes",
    decode=omie_records.decode_party,
    lookback_days=7,
)

PROJECTS = EntityJob(
    source="omie_projects",
    table="omie_projects",
    conflict_key="omie_internal_code",
    endpoint_path="/geral/projetos/",
    call="ListarProjetos",
    decode=omie_records.decode_project,
    lookback_days=30,
)

ACCOUNTS_PAYABLE = EntityJob(
    source="omie_accounts_payable",
    table="omie_accounts_payable",
    conflict_key="omie_payable_id",
    endpoint_path="/financas/contapagar/",
    call="ListarContasPagar",
    decode=omie_records.decode_payable,
    lookback_days=5,  # payables change a lot: short window, frequent runs
)


def resolve_since(
    source: str,
    lookback_days: int,
    full_sync: bool = False,
    force_days: int | None = None,
    db=None,
) -> datetime | None:
    """Lower bound of the fetch window. None means no bound (full sync)."""
    now = datetime.now(timezone.utc)
    if full_sync:
        return None
    if force_days is not None:
        return now - timedelta(days=force_days)
    last = get_last_sync_at(source, db=db)
    return last or now - timedelta(days=lookback_days)


def next_checkpoint(max_observed: datetime | None, since: datetime | None, filtered: bool) -> datetime:
    """min(now, newest record alteration). Without any alteration stamp, a
    filtered fetch keeps its lower bound and an unfiltered one uses now."""
    now = datetime.now(timezone.utc)
    if max_observed is None:
        return since if (filtered and since is not None) else now
    return min(now, max_observed)


def advance_checkpoint(
    source: str,
    max_observed: datetime | None,
    since: datetime | None,
    filtered: bool,
    truncated: bool,
    db=None,
) -> datetime | None:
    """Write the run's checkpoint and return the one now in effect.

    A truncated listing never moves the checkpoint past `since`: records on the
    pages that were not fetched must stay inside the next window.
    """
    if truncated:
        logger.warning(
            "%s: listing truncated, checkpoint held at %s",
            source, since.isoformat() if since else "<unchanged>",
        )
        if since is None:
            return get_last_sync_at(source, db=db)
        return set_last_sync_at(source, since, db=db)
    return set_last_sync_at(source, next_checkpoint(max_observed, since, filtered), db=db)


def max_altered_at(rows: list[dict], current: datetime | None = None) -> datetime | None:
    newest = current
    for row in rows:
        ts = parse_timestamp(row.get("omie_altered_at"))
        if ts is not None and (newest is None or ts > newest):
            newest = ts
    return newest


def upsert_batches(db, table: str, rows: list[dict], conflict_key: str, batch_size: int | None = None) -> int:
    """Upsert rows in batches. A failing batch aborts with SyncUpsertError."""
    batch_size = batch_size or settings.sync_upsert_batch_size
    written_at = datetime.now(timezone.utc).isoformat()
    upserted = 0
    for i in range(0, len(rows), batch_size):
        chunk = [{**row, "updated_at": written_at} for row in rows[i : i + batch_size]]
        try:
            db.table(table).upsert(chunk, on_conflict=conflict_key).execute()
        except (APIError, httpx.HTTPError) as exc:
            message = getattr(exc, "message", None) or str(exc)
            logger.error("%s: upsert batch %d failed: %s", table, i // batch_size + 1, message)
            raise SyncUpsertError(table, message) from exc
        upserted += len(chunk)
    return upserted


def decode_all(rows: list[dict], decode: Callable[[dict], dict | None]) -> tuple[list[dict], int]:
    """Decode raw records, dropping those without a primary key. Returns (rows, skipped)."""
    decoded = []
    skipped = 0
    for record in rows:
        row = decode(record) if isinstance(record, dict) else None
        if row is None:
            skipped += 1
            continue
        decoded.append(row)
    return decoded, skipped


def dedupe(rows: list[dict], key: str) -> list[dict]:
    """Keep the last row per key (one upsert statement cannot touch a key twice)."""
    by_key: dict = {}
    for row in rows:
        by_key[row[key]] = row
    return list(by_key.values())


async def run_entity_job(
    job: EntityJob,
    full_sync: bool = False,
    force_days: int | None = None,
    db=None,
    omie_call: OmieCall | None = None,
) -> dict:
    db = db or get_db()
    since = resolve_since(job.source, job.lookback_days, full_sync, force_days, db=db)

    logger.info("%s: fetching %s:%s", job.source, job.endpoint_path, job.call)
    fetched = await fetch_all_paged(
        job.endpoint_path,
        job.call,
        {},
        omie_call=omie_call,
        page_size=job.page_size,
    )
    items = fetched["items"]

    rows, skipped = decode_all(items, job.decode)
    rows = dedupe(rows, job.conflict_key)
    if skipped:
        logger.warning("%s: dropped %d records without %s", job.source, skipped, job.conflict_key)

    upserted = upsert_batches(db, job.table, rows, job.conflict_key) if rows else 0

    new_sync_at = advance_checkpoint(
        job.source, max_altered_at(rows), since, filtered=False, truncated=fetched["truncated"], db=db
    )
    result = {
        "fetched": len(items),
        "pages": fetched["pages"],
        "truncated": fetched["truncated"],
        "upserted": upserted,
        "skipped": skipped,
        "since": since.isoformat() if since else None,
        "newSyncAt": new_sync_at.isoformat() if new_sync_at else None,
    }
    logger.info("%s: %s", job.source, result)
    return result


async def sync_omie_categories(full_sync: bool = False, force_days: int | None = None, db=None, omie_call=None) -> dict:
    return await run_entity_job(CATEGORIES, full_sync, force_days, db=db, omie_call=omie_call)


async def sync_omie_parties(full_sync: bool = False, force_days: int | None = None, db=None, omie_call=None) -> dict:
    return await run_entity_job(PARTIES, full_sync, force_days, db=db, omie_call=omie_call)


async def sync_omie_projects(full_sync: bool = False, force_days: int | None = None, db=None, omie_call=None) -> dict:
    return await run_entity_job(PROJECTS, full_sync, force_days, db=db, omie_call=omie_call)


async def sync_omie_accounts_payable(
    full_sync: bool = False, force_days: int | None = None, db=None, omie_call=None
) -> dict:
    return await run_entity_job(ACCOUNTS_PAYABLE, full_sync, force_days, db=db, omie_call=omie_call)
