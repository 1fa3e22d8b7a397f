"""
Sync orchestrator: runs every job in a fixed order, best effort.

Order: spreadsheet-backed jobs first (registered by the host application via
set_excel_jobs(); their ingestion lives outside this service), then Omie
categories -> parties -> projects -> accounts payable -> movements.

A failing step is recorded as {"name", "ok": False, "ms", "error"} and the
remaining steps still run. The result carries no overall success flag;
callers inspect `steps`.

Exposed functions:
  run_full_sync()          — all jobs (called by POST /cron/sync-all)
  run_entity_sync()        — one job by name (POST /sync/omie/{entity})
  get_last_sync_result()   — in-memory result of the last full run
"""
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable

from app.services.errors import UnknownEntityError
from app.services.omie_movements_sync import sync_omie_mf_movements
from app.services.omie_sync import (
    sync_omie_accounts_payable,
    sync_omie_categories,
    sync_omie_parties,
    sync_omie_projects,
)

logger = logging.getLogger(__name__)

SyncJob = Callable[..., Awaitable[dict]]

OMIE_JOBS: dict[str, SyncJob] = {
    "omie_categories": sync_omie_categories,
    "omie_parties": sync_omie_parties,
    "omie_projects": sync_omie_projects,
    "omie_accounts_payable": sync_omie_accounts_payable,
    "omie_mf_movements": sync_omie_mf_movements,
}

# Short names accepted by run_entity_sync
ENTITY_ALIASES = {
    "categories": "omie_categories",
    "parties": "omie_parties",
    "projects": "omie_projects",
    "accounts_payable": "omie_accounts_payable",
    "movements": "omie_mf_movements",
    "mf": "omie_mf_movements",
}

_excel_jobs: dict[str, Callable[[], Awaitable[dict]]] = {}

_last_sync_result: dict = {}


def set_excel_jobs(**jobs: Callable[[], Awaitable[dict]]) -> None:
    """Wire spreadsheet jobs (e.g. excel_operations=..., excel_notifications=...)."""
    _excel_jobs.clear()
    _excel_jobs.update(jobs)


def _job_sequence() -> list[tuple[str, Callable[[], Awaitable[dict]]]]:
    return list(_excel_jobs.items()) + list(OMIE_JOBS.items())


async def _run_step(name: str, fn: Callable[[], Awaitable[dict]]) -> dict:
    t0 = time.monotonic()
    try:
        out = await fn()
    except Exception as e:
        ms = int((time.monotonic() - t0) * 1000)
        logger.exception("sync_all: step %s failed after %dms", name, ms)
        return {"name": name, "ok": False, "ms": ms, "error": str(e) or type(e).__name__}
    ms = int((time.monotonic() - t0) * 1000)
    return {"name": name, "ok": True, "ms": ms, **(out or {})}


async def run_full_sync(jobs: list[tuple[str, Callable[[], Awaitable[dict]]]] | None = None) -> dict:
    started_at = datetime.now(timezone.utc).isoformat()
    sequence = jobs if jobs is not None else _job_sequence()
    logger.info("sync_all: starting %d steps", len(sequence))

    steps = []
    for name, fn in sequence:
        steps.append(await _run_step(name, fn))

    result = {
        "startedAt": started_at,
        "finishedAt": datetime.now(timezone.utc).isoformat(),
        "steps": steps,
    }
    failed = [s["name"] for s in steps if not s["ok"]]
    logger.info("sync_all: done, %d ok, failed=%s", len(steps) - len(failed), failed)

    _last_sync_result.clear()
    _last_sync_result.update(result)
    return result


async def run_entity_sync(entity_name: str, full_sync: bool = False, force_days: int | None = None) -> dict:
    name = ENTITY_ALIASES.get(entity_name, entity_name)
    job = OMIE_JOBS.get(name)
    if job is None:
        raise UnknownEntityError(entity_name)
    return await job(full_sync=full_sync, force_days=force_days)


def get_last_sync_result() -> dict:
    if _last_sync_result:
        return dict(_last_sync_result)
    return {"status": "never_run"}
