"""
Read-time joins from investor identity to operation financials.

There is no foreign-key chain between the four keyspaces, so every request
walks it:

  CPF/CNPJ --omie_parties--> client codes (omie_code)
           --omie_mf_movements.cod_cliente--> project codes (cod_projeto)
           --omie_projects.omie_internal_code--> project names
           --operations.name--> operations

The resulting name set is what an investor may see. InvestorScope holds the
resolved chain for one request and exposes it as can_view().

Exposed functions:
  resolve_investor_scope()        — build the scope for a CPF/CNPJ
  investor_can_view()             — capability predicate for one operation
  get_operation_financial()       — invested / expected / realized / ROI
  get_operation_costs()           — cost total + category/supplier breakdown
  list_operations_for_investor()  — visible operations with figures inlined
  get_investor_statement()        — dated signed lines for a period
"""
import logging
import re
import unicodedata
import uuid
from dataclasses import dataclass, field

from app.db.supabase import paginate
from app.services import aggregation
from app.services.aggregation import clean_str, normalize_for_compare, to_display
from app.services.errors import ReconciliationError

logger = logging.getLogger(__name__)

_IN_CHUNK = 100

MOVEMENT_COLUMNS = "cod_mov_cc, cod_cliente, cod_projeto, cod_categoria, natureza, valor"
STATEMENT_COLUMNS = (
    "cod_mov_cc, dt_pagamento, dt_emissao, dt_venc, valor, descricao, "
    "natureza, tp_lancamento, cod_cliente, cod_categoria, cod_projeto"
)


def only_digits(value) -> str:
    return re.sub(r"\D", "", str(value or ""))


def norm_name(value) -> str:
    """Case/accent/whitespace-insensitive form used to match operation and project names."""
    nfkd = unicodedata.normalize("NFKD", str(value or "").strip())
    ascii_text = "".join(c for c in nfkd if not unicodedata.combining(c))
    return re.sub(r"\s+", " ", ascii_text.lower())


def _select_in(db, table: str, columns: str, column: str, values: list, **filters) -> list[dict]:
    """Select rows where column IN values, chunked to keep URLs short."""
    rows: list[dict] = []
    for i in range(0, len(values), _IN_CHUNK):
        chunk = values[i : i + _IN_CHUNK]
        q = db.table(table).select(columns).in_(column, chunk)
        for key, value in filters.items():
            q = q.eq(key, value)
        rows.extend(paginate(q))
    return rows


# ── Investor identity ────────────────────────────────────────


def find_parties_by_document(db, cpf_cnpj: str) -> list[dict]:
    """Party rows for a CPF/CNPJ stored masked, unmasked or inconsistently formatted.

    Strategies in order, first non-empty wins: exact raw, exact digits, ILIKE %digits%.
    """
    raw = clean_str(cpf_cnpj)
    digits = only_digits(raw)
    if not digits:
        return []

    strategies = [
        ("raw", lambda: db.table("omie_parties").select("omie_code, name, cpf_cnpj").eq("cpf_cnpj", raw)),
        ("digits", lambda: db.table("omie_parties").select("omie_code, name, cpf_cnpj").eq("cpf_cnpj", digits)),
        ("ilike", lambda: db.table("omie_parties").select("omie_code, name, cpf_cnpj").ilike("cpf_cnpj", f"%{digits}%")),
    ]
    for label, build in strategies:
        rows = build().execute().data or []
        if rows:
            logger.debug("party lookup matched by %s: %d rows", label, len(rows))
            return rows

    # Masked storage ("11.222.333/0001-81") never contains the bare digit run:
    # allow any separator between digits, then compare digit-only forms.
    spread = "%" + "%".join(digits) + "%"
    candidates = (
        db.table("omie_parties").select("omie_code, name, cpf_cnpj")
        .ilike("cpf_cnpj", spread).execute().data or []
    )
    return [r for r in candidates if only_digits(r.get("cpf_cnpj")) == digits]


def omie_codes_for_document(db, cpf_cnpj: str) -> list[str]:
    codes = []
    for row in find_parties_by_document(db, cpf_cnpj):
        c = clean_str(row.get("omie_code"))
        if c and c not in codes:
            codes.append(c)
    return codes


def project_codes_for_clients(db, client_codes: list[str]) -> list[str]:
    rows = _select_in(db, "omie_mf_movements", "cod_projeto", "cod_cliente", client_codes)
    codes = []
    for row in rows:
        c = clean_str(row.get("cod_projeto"))
        if c and c not in codes:
            codes.append(c)
    return codes


def project_names_for_codes(db, project_codes: list[str]) -> dict[str, str]:
    """omie_internal_code -> project name."""
    rows = _select_in(db, "omie_projects", "omie_internal_code, name", "omie_internal_code", project_codes)
    names = {}
    for row in rows:
        c = clean_str(row.get("omie_internal_code"))
        n = clean_str(row.get("name"))
        if c and n:
            names[c] = n
    return names


@dataclass
class InvestorScope:
    document: str
    client_codes: list[str] = field(default_factory=list)
    project_names: dict[str, str] = field(default_factory=dict)

    @property
    def visible_names(self) -> set[str]:
        return {norm_name(n) for n in self.project_names.values()}

    def project_codes_for(self, operation_name: str) -> list[str]:
        target = norm_name(operation_name)
        return [code for code, name in self.project_names.items() if norm_name(name) == target]

    def can_view(self, operation: dict) -> bool:
        name = clean_str(operation.get("name"))
        return bool(name) and norm_name(name) in self.visible_names

    def require_client_codes(self) -> list[str]:
        if not self.client_codes:
            raise ReconciliationError(
                "OMIE_PARTY_NOT_FOUND_FOR_CPF",
                "No Omie party registered for this CPF/CNPJ",
                status_code=404,
                cpf=self.document,
            )
        return self.client_codes


def resolve_investor_scope(db, cpf_cnpj: str) -> InvestorScope:
    scope = InvestorScope(document=clean_str(cpf_cnpj))
    scope.client_codes = omie_codes_for_document(db, cpf_cnpj)
    if not scope.client_codes:
        logger.info("investor scope: no party for document ending %s", only_digits(cpf_cnpj)[-4:])
        return scope
    project_codes = project_codes_for_clients(db, scope.client_codes)
    if project_codes:
        scope.project_names = project_names_for_codes(db, project_codes)
    logger.info(
        "investor scope: %d client codes, %d projects",
        len(scope.client_codes), len(scope.project_names),
    )
    return scope


def investor_can_view(db, cpf_cnpj: str, operation_id: str, scope: InvestorScope | None = None) -> bool:
    scope = scope or resolve_investor_scope(db, cpf_cnpj)
    try:
        operation = get_operation(db, operation_id)
    except ReconciliationError:
        return False
    return scope.can_view(operation)


# ── Operations and projects ──────────────────────────────────


def _check_operation_id(operation_id: str) -> str:
    op_id = clean_str(operation_id)
    try:
        uuid.UUID(op_id)
    except ValueError:
        raise ReconciliationError(
            "INVALID_OPERATION_ID", "operationId must be a UUID", status_code=400, operationId=op_id
        ) from None
    return op_id


def get_operation(db, operation_id: str) -> dict:
    op_id = _check_operation_id(operation_id)
    rows = db.table("operations").select("*").eq("id", op_id).limit(1).execute().data or []
    if not rows:
        raise ReconciliationError("OPERATION_NOT_FOUND", "Operation not found", status_code=404)
    operation = rows[0]
    if not clean_str(operation.get("name")):
        raise ReconciliationError("OPERATION_NAME_EMPTY", "Operation has no name", status_code=400)
    return operation


def _score(project_name: str, target: str) -> int:
    n = norm_name(project_name)
    if n == target:
        return 3
    if n and (target in n or n in target):
        return 2
    return 1


def resolve_project_for_operation(db, operation_name: str) -> dict | None:
    """Best omie_projects row for an operation name.

    Exact name first; otherwise ILIKE candidates scored 3 (same normalized
    name) / 2 (one contains the other) / 1.
    """
    name = clean_str(operation_name)
    exact = (
        db.table("omie_projects").select("omie_internal_code, name").eq("name", name).limit(1).execute().data or []
    )
    if exact and clean_str(exact[0].get("omie_internal_code")):
        return exact[0]

    candidates = (
        db.table("omie_projects").select("omie_internal_code, name")
        .ilike("name", f"%{name}%").limit(20).execute().data or []
    )
    candidates = [c for c in candidates if clean_str(c.get("omie_internal_code"))]
    if not candidates:
        return None
    target = norm_name(name)
    return max(candidates, key=lambda c: _score(c.get("name"), target))


def _require_project_code(db, operation: dict) -> tuple[str, dict]:
    name = clean_str(operation.get("name"))
    project = resolve_project_for_operation(db, name)
    if project is None:
        raise ReconciliationError(
            "OMIE_PROJECT_NOT_FOUND_BY_NAME",
            "No Omie project matches the operation name",
            status_code=404,
            operationName=name,
        )
    return clean_str(project.get("omie_internal_code")), project


def load_project_movements(db, project_codes: list[str], client_codes: list[str] | None = None,
                           columns: str = MOVEMENT_COLUMNS) -> list[dict]:
    rows = _select_in(db, "omie_mf_movements", columns, "cod_projeto", project_codes)
    if client_codes is not None:
        allowed = set(client_codes)
        rows = [r for r in rows if clean_str(r.get("cod_cliente")) in allowed]
    return rows


def load_category_names(db) -> dict[str, str]:
    """omie_code (raw and normalized) -> display name."""
    try:
        rows = paginate(db.table("omie_categories").select("omie_code, name, description"))
    except Exception:
        logger.exception("category names unavailable, falling back to raw codes")
        return {}
    names = {}
    for row in rows:
        raw = clean_str(row.get("omie_code"))
        if not raw:
            continue
        label = clean_str(row.get("name")) or clean_str(row.get("description"))
        if not label:
            continue
        names[raw] = label
        key = normalize_for_compare(raw)
        if key:
            names.setdefault(key, label)
    return names


def load_party_names(db, party_codes: list[str]) -> dict[str, str]:
    rows = _select_in(db, "omie_parties", "omie_code, name", "omie_code", party_codes)
    names = {}
    for row in rows:
        c = clean_str(row.get("omie_code"))
        if c:
            names[c] = clean_str(row.get("name")) or c
    return names


# ── Public operations ────────────────────────────────────────


def get_operation_financial(db, operation_id: str, roi_expected_percent, scope: InvestorScope | None = None) -> dict:
    """Financial summary of one operation.

    With a scope, sums only the investor's own movements and refuses operations
    outside the scope.
    """
    client_codes = scope.require_client_codes() if scope is not None else None
    operation = get_operation(db, operation_id)
    if scope is not None and not scope.can_view(operation):
        raise ReconciliationError("FORBIDDEN", "Operation not visible for this investor", status_code=403)

    project_code, project = _require_project_code(db, operation)
    rows = load_project_movements(db, [project_code], client_codes)
    if roi_expected_percent is None:
        roi_expected_percent = operation.get("expected_roi")
    summary = aggregation.summarize_financial(rows, roi_expected_percent)

    return {
        "ok": True,
        "operationId": operation["id"],
        "operationName": clean_str(operation.get("name")),
        "projectInternalCode": project_code,
        "amountInvested": to_display(summary["amountInvested"]),
        "expectedProfit": to_display(summary["expectedProfit"]),
        "realizedProfit": to_display(summary["realizedProfit"]),
        "realizedRoiPercent": to_display(summary["realizedRoiPercent"]),
        "roiExpectedPercent": to_display(summary["roiExpectedPercent"]),
        "debug": {
            "clientCodes": client_codes,
            "investedRowsMatched": summary["investedRowsMatched"],
            "realizedRowsMatched": summary["realizedRowsMatched"],
            "matchedProjectName": project.get("name"),
        },
    }


def get_operation_costs(db, operation_id: str, scope: InvestorScope | None = None) -> dict:
    operation = get_operation(db, operation_id)
    if scope is not None and not scope.can_view(operation):
        raise ReconciliationError("FORBIDDEN", "Operation not visible for this investor", status_code=403)

    project = resolve_project_for_operation(db, operation["name"])
    project_code = clean_str(project.get("omie_internal_code")) if project else ""
    if not project_code:
        return {"totalCosts": 0.0, "categories": []}

    rows = [r for r in load_project_movements(db, [project_code]) if aggregation.is_cost(r)]
    party_codes = sorted({clean_str(r.get("cod_cliente")) for r in rows if clean_str(r.get("cod_cliente"))})
    breakdown = aggregation.build_cost_breakdown(
        rows,
        category_names=load_category_names(db) if rows else {},
        party_names=load_party_names(db, party_codes) if party_codes else {},
    )
    return aggregation.display_cost_breakdown(breakdown)


def _normalize_status(raw) -> str:
    s = clean_str(raw).lower()
    if "andamento" in s:
        return "em_andamento"
    if "final" in s or "conclu" in s:
        return "concluida"
    return clean_str(raw) or "em_andamento"


def _operation_view(op: dict, invested, realized, costs) -> dict:
    return {
        "id": op.get("id"),
        "propertyName": op.get("name"),
        "city": op.get("city"),
        "state": op.get("state"),
        "status": _normalize_status(op.get("status")),
        "amountInvested": to_display(invested),
        "realizedProfit": to_display(realized),
        "totalCosts": to_display(costs),
        "roi": op.get("expected_roi") or 0,
        "estimatedTerm": op.get("estimated_term_months") or "",
        "realizedTerm": op.get("realized_term_months") or "",
        "documents": {
            "cartaArrematacao": op.get("link_arrematacao") or "",
            "matriculaConsolidada": op.get("link_matricula") or "",
            "contratoScp": op.get("link_contrato_scp") or "",
        },
        "auction_date": op.get("auction_date"),
        "itbi_date": op.get("itbi_date"),
        "deed_date": op.get("deed_date"),
        "registry_date": op.get("registry_date"),
        "vacancy_date": op.get("vacancy_date"),
        "construction_date": op.get("construction_date"),
        "listed_to_broker_date": op.get("listed_to_broker_date"),
        "sale_contract_date": op.get("sale_contract_date"),
        "sale_receipt_date": op.get("sale_receipt_date"),
    }


def list_operations_for_investor(db, cpf_cnpj: str, scope: InvestorScope | None = None) -> list[dict]:
    """Operations visible to the investor, with invested/realized (own movements)
    and total costs (whole project) inlined."""
    scope = scope or resolve_investor_scope(db, cpf_cnpj)
    if not scope.project_names:
        return []

    # can_view compares normalized names; an IN filter would be exact-match
    operations = [op for op in paginate(db.table("operations").select("*")) if scope.can_view(op)]
    if not operations:
        return []

    movements = load_project_movements(db, list(scope.project_names.keys()))
    by_project: dict[str, list[dict]] = {}
    for row in movements:
        by_project.setdefault(clean_str(row.get("cod_projeto")), []).append(row)

    own = set(scope.client_codes)
    result = []
    for op in operations:
        rows = [r for code in scope.project_codes_for(op.get("name")) for r in by_project.get(code, [])]
        own_rows = [r for r in rows if clean_str(r.get("cod_cliente")) in own]
        invested, _ = aggregation.sum_category(own_rows, aggregation.INVESTED_CATEGORY)
        realized, _ = aggregation.sum_category(own_rows, aggregation.REALIZED_CATEGORY)
        result.append(_operation_view(op, invested, realized, aggregation.total_costs(rows)))
    return result


_YMD = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def get_investor_statement(db, cpf_cnpj: str, start: str, end: str, scope: InvestorScope | None = None) -> dict:
    start, end = clean_str(start), clean_str(end)
    if not _YMD.match(start) or not _YMD.match(end) or start > end:
        raise ReconciliationError(
            "INVALID_DATE_RANGE", "Send start and end as YYYY-MM-DD", status_code=400, start=start, end=end
        )
    scope = scope or resolve_investor_scope(db, cpf_cnpj)
    client_codes = scope.require_client_codes()

    rows = _select_in(db, "omie_mf_movements", STATEMENT_COLUMNS, "cod_cliente", client_codes)
    statement = aggregation.build_statement(rows, start, end)
    totals = statement["totals"]
    return {
        "ok": True,
        "start": start,
        "end": end,
        "items": [{**item, "amount": to_display(item["amount"])} for item in statement["items"]],
        "totals": {key: to_display(value) for key, value in totals.items()},
    }
