#!/usr/bin/env python3
"""
Test script for reconciliation.py (investor -> parties -> projects -> operations).

Usage:
    python3 testes/test_reconciliation.py
    pytest testes/test_reconciliation.py

What it tests:
1. CPF/CNPJ lookup tolerant to masked/unmasked storage
2. InvestorScope: which operations an investor can see
3. Operation financials scoped to the investor's own movements
4. Error codes: party not found, invalid id, operation not found, empty name,
   project not found, forbidden, invalid date range
5. Operation costs with category and supplier names
6. Operation list with figures inlined, and the dated statement

Storage is testes/fake_supabase.FakeDB seeded with one small portfolio.
"""
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "testes"))

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from fake_supabase import FakeDB  # noqa: E402

from app.services import reconciliation  # noqa: E402
from app.services.errors import ReconciliationError  # noqa: E402

GREEN = "\033[92m"
RED = "\033[91m"
RESET = "\033[0m"

OP_JARDINS = "6f1c2b1e-3a4d-4f5e-8a9b-0c1d2e3f4a5b"
OP_CENTRO = "7a2d3c4b-5e6f-4a1b-9c8d-1e2f3a4b5c6d"
OP_NO_PROJECT = "8b3e4d5c-6f7a-4b2c-8d9e-2f3a4b5c6d7e"
OP_NO_NAME = "9c4f5e6d-7a8b-4c3d-9e0f-3a4b5c6d7e8f"
OP_MISSING = "0d5a6f7e-8b9c-4d4e-8f1a-4b5c6d7e8f9a"

ANA = "123.456.789-00"
BRUNO = "98765432100"


def _mov(cod, cliente, projeto, categ, valor, natureza="R", pago=None):
    return {
        "cod_mov_cc": cod,
        "cod_cliente": cliente,
        "cod_projeto": projeto,
        "cod_categoria": categ,
        "valor": valor,
        "natureza": natureza,
        "dt_pagamento": pago,
        "descricao": f"mov {cod}",
    }


def _db() -> FakeDB:
    return FakeDB({
        "omie_parties": [
            {"omie_code": "10", "cpf_cnpj": "123.456.789-00", "name": "Ana"},
            {"omie_code": "11", "cpf_cnpj": "98765432100", "name": "Bruno"},
            {"omie_code": "20", "cpf_cnpj": "11.222.333/0001-81", "name": "Construtora X"},
        ],
        "omie_projects": [
            {"omie_internal_code": "500", "name": "Casa Jardins"},
            {"omie_internal_code": "600", "name": "Apto Centro"},
        ],
        "omie_categories": [
            {"omie_code": "2.01.01", "name": "Reforma"},
            {"omie_code": "2.01.02", "name": "Condomínio"},
        ],
        "operations": [
            {"id": OP_JARDINS, "name": "Casa Jardins", "status": "Em andamento", "expected_roi": 0.3, "city": "São Paulo"},
            {"id": OP_CENTRO, "name": "Apto Centro", "status": "Finalizada", "expected_roi": 25},
            {"id": OP_NO_PROJECT, "name": "Terreno Sem Projeto", "status": "Em andamento"},
            {"id": OP_NO_NAME, "name": "  ", "status": "Em andamento"},
        ],
        "omie_mf_movements": [
            _mov(1, "10", "500", "1.04.02", "80000.00", pago="2026-01-10T00:00:00-03:00"),
            _mov(2, "10", "500", "2.10.98", "22000.00", natureza="P", pago="2026-06-10T00:00:00-03:00"),
            _mov(3, "11", "500", "1.04.02", "50000.00", pago="2026-01-12T00:00:00-03:00"),
            _mov(4, "20", "500", "2.01.01", "700.00", natureza="P", pago="2026-02-01T00:00:00-03:00"),
            _mov(5, None, "500", "2.01.02", "300.00", natureza="P"),
            _mov(6, "11", "600", "1.04.02", "10000.00", pago="2026-03-01T00:00:00-03:00"),
        ],
    })


def _expect_error(code: str, status: int, fn, *args, **kwargs) -> ReconciliationError:
    try:
        fn(*args, **kwargs)
    except ReconciliationError as e:
        assert e.code == code, f"expected {code}, got {e.code}"
        assert e.status_code == status
        assert e.to_dict()["ok"] is False
        return e
    raise AssertionError(f"expected {code}")


# ── 1. CPF lookup ─────────────────────────────────────────────────────────────


def test_cpf_lookup_is_format_tolerant():
    db = _db()
    assert reconciliation.omie_codes_for_document(db, "123.456.789-00") == ["10"]
    assert reconciliation.omie_codes_for_document(db, "12345678900") == ["10"]
    assert reconciliation.omie_codes_for_document(db, "987.654.321-00") == ["11"]
    assert reconciliation.omie_codes_for_document(db, "98765432100") == ["11"]
    # company stored masked, looked up unmasked
    assert reconciliation.omie_codes_for_document(db, "11222333000181") == ["20"]
    assert reconciliation.omie_codes_for_document(db, "11.222.333/0001-81") == ["20"]
    assert reconciliation.omie_codes_for_document(db, "00000000000") == []
    assert reconciliation.omie_codes_for_document(db, "") == []


def test_norm_name():
    assert reconciliation.norm_name("  Casa   JARDINS ") == "casa jardins"
    assert reconciliation.norm_name("São Paulo") == "sao paulo"


# ── 2. Scope ──────────────────────────────────────────────────────────────────


def test_scope_lists_only_own_projects():
    db = _db()
    ana = reconciliation.resolve_investor_scope(db, ANA)
    assert ana.client_codes == ["10"]
    assert ana.project_names == {"500": "Casa Jardins"}
    assert ana.can_view({"name": "casa jardins"})
    assert not ana.can_view({"name": "Apto Centro"})
    assert not ana.can_view({"name": ""})

    bruno = reconciliation.resolve_investor_scope(db, BRUNO)
    assert set(bruno.project_names) == {"500", "600"}


def test_investor_can_view():
    db = _db()
    assert reconciliation.investor_can_view(db, ANA, OP_JARDINS)
    assert not reconciliation.investor_can_view(db, ANA, OP_CENTRO)
    assert not reconciliation.investor_can_view(db, ANA, "not-a-uuid")
    assert not reconciliation.investor_can_view(db, "00000000000", OP_JARDINS)


# ── 3. Financials ─────────────────────────────────────────────────────────────


def test_financial_scoped_to_investor():
    db = _db()
    scope = reconciliation.resolve_investor_scope(db, ANA)
    out = reconciliation.get_operation_financial(db, OP_JARDINS, 30, scope=scope)
    assert out["ok"] is True
    assert out["projectInternalCode"] == "500"
    assert out["amountInvested"] == 80000.0
    assert out["realizedProfit"] == 22000.0
    assert out["realizedRoiPercent"] == 27.5
    assert out["expectedProfit"] == 24000.0
    assert out["roiExpectedPercent"] == 30.0


def test_financial_unscoped_sums_whole_project():
    out = reconciliation.get_operation_financial(_db(), OP_JARDINS, None)
    assert out["amountInvested"] == 130000.0
    # falls back to the operation's expected_roi (0.3 -> 30%)
    assert out["roiExpectedPercent"] == 30.0
    assert out["expectedProfit"] == 39000.0


def test_financial_error_codes():
    db = _db()
    ana = reconciliation.resolve_investor_scope(db, ANA)
    nobody = reconciliation.resolve_investor_scope(db, "00000000000")

    _expect_error("OMIE_PARTY_NOT_FOUND_FOR_CPF", 404, reconciliation.get_operation_financial, db, OP_JARDINS, 30, scope=nobody)
    _expect_error("INVALID_OPERATION_ID", 400, reconciliation.get_operation_financial, db, "42", 30)
    _expect_error("OPERATION_NOT_FOUND", 404, reconciliation.get_operation_financial, db, OP_MISSING, 30)
    _expect_error("OPERATION_NAME_EMPTY", 400, reconciliation.get_operation_financial, db, OP_NO_NAME, 30)
    _expect_error("OMIE_PROJECT_NOT_FOUND_BY_NAME", 404, reconciliation.get_operation_financial, db, OP_NO_PROJECT, 30)
    _expect_error("FORBIDDEN", 403, reconciliation.get_operation_financial, db, OP_CENTRO, 30, scope=ana)


def test_project_resolution_prefers_same_name():
    db = _db()
    db.tables["omie_projects"].append({"omie_internal_code": "501", "name": "Casa Jardins Fase 2"})
    project = reconciliation.resolve_project_for_operation(db, "casa jardins")
    assert project["omie_internal_code"] == "500"
    assert reconciliation.resolve_project_for_operation(db, "Galpão") is None


# ── 4. Costs ──────────────────────────────────────────────────────────────────


def test_operation_costs():
    out = reconciliation.get_operation_costs(_db(), OP_JARDINS)
    assert out["totalCosts"] == 1000.0
    assert [(c["categoryName"], c["total"]) for c in out["categories"]] == [("Reforma", 700.0), ("Condomínio", 300.0)]
    assert out["categories"][0]["items"][0]["partyName"] == "Construtora X"
    assert out["categories"][1]["items"][0]["partyName"] == "Sem fornecedor"


def test_costs_without_project_are_empty():
    assert reconciliation.get_operation_costs(_db(), OP_NO_PROJECT) == {"totalCosts": 0.0, "categories": []}


# ── 5. Operation list and statement ───────────────────────────────────────────


def test_list_operations_for_investor():
    db = _db()
    ops = reconciliation.list_operations_for_investor(db, ANA)
    assert len(ops) == 1
    op = ops[0]
    assert op["id"] == OP_JARDINS
    assert op["status"] == "em_andamento"
    assert op["amountInvested"] == 80000.0
    assert op["realizedProfit"] == 22000.0
    assert op["totalCosts"] == 1000.0

    by_id = {o["id"]: o for o in reconciliation.list_operations_for_investor(db, BRUNO)}
    assert set(by_id) == {OP_JARDINS, OP_CENTRO}
    assert by_id[OP_JARDINS]["amountInvested"] == 50000.0
    assert by_id[OP_CENTRO]["status"] == "concluida"

    assert reconciliation.list_operations_for_investor(db, "00000000000") == []


def test_statement():
    db = _db()
    out = reconciliation.get_investor_statement(db, ANA, "2026-01-01", "2026-12-31")
    assert [(i["id"], i["amount"], i["type"]) for i in out["items"]] == [
        ("2", -22000.0, "saida"),
        ("1", 80000.0, "entrada"),
    ]
    assert out["totals"] == {"in": 80000.0, "out": 22000.0, "net": 58000.0}

    _expect_error("INVALID_DATE_RANGE", 400, reconciliation.get_investor_statement, db, ANA, "2026-12-31", "2026-01-01")
    _expect_error("INVALID_DATE_RANGE", 400, reconciliation.get_investor_statement, db, ANA, "01/01/2026", "2026-01-31")
    _expect_error("OMIE_PARTY_NOT_FOUND_FOR_CPF", 404, reconciliation.get_investor_statement, db, "00000000000", "2026-01-01", "2026-01-31")


def main() -> None:
    tests = [(n, f) for n, f in globals().items() if n.startswith("test_") and callable(f)]
    failed = 0
    for name, fn in tests:
        try:
            fn()
        except Exception as e:
            failed += 1
            print(f"  {RED}FAIL{RESET}  {name} — {type(e).__name__}: {e}")
        else:
            print(f"  {GREEN}PASS{RESET}  {name}")
    print()
    print(f"  Results: {GREEN}{len(tests) - failed} passed{RESET}  {RED}{failed} failed{RESET}  ({len(tests)} total)")
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
