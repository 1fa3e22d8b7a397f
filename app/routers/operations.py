"""
Investor API - operations, per-operation financials/costs and the statement.

The investor's CPF/CNPJ is set on request.state by the auth middleware in front
of this service. Each request resolves its own InvestorScope through the
investor_scope dependency; nothing is cached across requests.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from app.db.supabase import get_db
from app.services import reconciliation
from app.services.errors import ReconciliationError
from app.services.reconciliation import InvestorScope

logger = logging.getLogger(__name__)
router = APIRouter(tags=["investor"])


def investor_document(request: Request) -> str:
    cpf_cnpj = getattr(request.state, "cpf_cnpj", None)
    if not cpf_cnpj:
        raise HTTPException(status_code=401, detail="Investor not authenticated")
    return cpf_cnpj


def investor_scope(cpf_cnpj: str = Depends(investor_document)) -> InvestorScope:
    return reconciliation.resolve_investor_scope(get_db(), cpf_cnpj)


def _error_response(e: ReconciliationError) -> JSONResponse:
    logger.info("reconciliation %s: %s", e.code, e.message)
    return JSONResponse(e.to_dict(), status_code=e.status_code)


@router.get("/operations")
async def list_operations(scope: InvestorScope = Depends(investor_scope)):
    operations = reconciliation.list_operations_for_investor(get_db(), scope.document, scope=scope)
    return {"ok": True, "operations": operations}


@router.get("/operation-financial/{operation_id}")
async def operation_financial(
    operation_id: str,
    roi_expected: float | None = Query(None, description="Expected ROI, 30 or 0.30"),
    scope: InvestorScope = Depends(investor_scope),
):
    try:
        return reconciliation.get_operation_financial(get_db(), operation_id, roi_expected, scope=scope)
    except ReconciliationError as e:
        return _error_response(e)


@router.get("/operation-costs/{operation_id}")
async def operation_costs(operation_id: str, scope: InvestorScope = Depends(investor_scope)):
    try:
        costs = reconciliation.get_operation_costs(get_db(), operation_id, scope=scope)
    except ReconciliationError as e:
        return _error_response(e)
    return {"ok": True, **costs}


@router.get("/financial/statement")
async def financial_statement(
    start: str = Query(..., description="YYYY-MM-DD"),
    end: str = Query(..., description="YYYY-MM-DD"),
    scope: InvestorScope = Depends(investor_scope),
):
    try:
        return reconciliation.get_investor_statement(get_db(), scope.document, start, end, scope=scope)
    except ReconciliationError as e:
        return _error_response(e)
