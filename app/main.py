"""
Omie Investor Sync - Omie ERP -> Supabase mirror + investor reconciliation API.
Sync jobs are triggered externally (cron hits POST /cron/sync-all).
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.routers import health, operations, sync

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
# Silence httpx per-request logs (one line per Omie page otherwise)
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Omie Investor Sync",
    description="Sincronização Omie -> Supabase + API de operações do investidor",
    version="1.0.0",
)

# CORS for the investor app
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(sync.router)
app.include_router(operations.router)
