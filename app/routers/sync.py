"""
Sync triggers: one Omie entity on demand, the full chain for the cron, and the
last orchestrator result. Protected by the X-Admin-Key shared secret.
"""
import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Header, Query

from app.config import settings
from app.services.errors import UnknownEntityError
from app.services.sync_all import get_last_sync_result, run_entity_sync, run_full_sync

logger = logging.getLogger(__name__)
router = APIRouter(tags=["sync"])


async def require_admin_key(x_admin_key: str = Header(...)):
    """Dependency: compare X-Admin-Key with the configured secret."""
    if not settings.admin_api_key or not hmac.compare_digest(x_admin_key, settings.admin_api_key):
        raise HTTPException(status_code=401, detail="Invalid admin key")
    return True


@router.post("/sync/omie/{entity}", dependencies=[Depends(require_admin_key)])
async def sync_omie_entity(
    entity: str,
    full_sync: bool = Query(False, description="Ignore the checkpoint and fetch everything"),
    force_days: int | None = Query(None, ge=1, description="Re-read the last N days"),
):
    try:
        result = await run_entity_sync(entity, full_sync=full_sync, force_days=force_days)
    except UnknownEntityError:
        raise HTTPException(status_code=404, detail=f"Unknown entity '{entity}'")
    except Exception as e:
        logger.exception("sync %s failed", entity)
        return {"ok": False, "entity": entity, "error": str(e) or type(e).__name__}
    return {"ok": True, "entity": entity, **result}


@router.post("/cron/sync-all", dependencies=[Depends(require_admin_key)])
async def cron_sync_all():
    return await run_full_sync()


@router.get("/sync/status", dependencies=[Depends(require_admin_key)])
async def sync_status():
    return get_last_sync_result()
