#!/usr/bin/env python3
"""
Test script for omie_records.py (raw Omie record -> storage row decoders).

Usage:
    python3 testes/test_omie_records.py
    pytest testes/test_omie_records.py

What it tests:
1. Brasília date/time parsing (DD/MM/YYYY[ HH:MM[:SS]] and ISO)
2. dDtAltDe filter formatting in Brasília time
3. Amount parsing into non-negative 2-place magnitudes
4. Movement key aliases (detalhes / resumo / top level)
5. Category, party, project and payable decoders
"""
import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from app.models.omie_records import (  # noqa: E402
    BRT,
    build_mf_key,
    decode_category,
    decode_movement,
    decode_party,
    decode_payable,
    decode_project,
    movement_cod_mov_cc,
    parse_amount,
    parse_omie_datetime,
    to_omie_date,
)

GREEN = "\033[92m"
RED = "\033[91m"
RESET = "\033[0m"


def test_parse_omie_datetime():
    cases = [
        ("15/01/2026", datetime(2026, 1, 15, tzinfo=BRT)),
        ("15/01/2026 09:30", datetime(2026, 1, 15, 9, 30, tzinfo=BRT)),
        ("15/01/2026 09:30:15", datetime(2026, 1, 15, 9, 30, 15, tzinfo=BRT)),
        ("2026-01-15T12:00:00Z", datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)),
        ("2026-01-15", datetime(2026, 1, 15, tzinfo=BRT)),
        ("31/02/2026", None),
        ("", None),
        (None, None),
        ("null", None),
    ]
    for raw, expected in cases:
        assert parse_omie_datetime(raw) == expected, raw


def test_to_omie_date_uses_brasilia_day():
    # 02:00 UTC on the 16th is still the 15th in Brasília
    assert to_omie_date(datetime(2026, 1, 16, 2, 0, tzinfo=timezone.utc)) == "15/01/2026"
    assert to_omie_date(datetime(2026, 1, 16, 4, 0, tzinfo=timezone.utc)) == "16/01/2026"


def test_parse_amount():
    assert parse_amount("1500.5") == (Decimal("1500.50"), False)
    assert parse_amount(-20) == (Decimal("20.00"), False)
    assert parse_amount(0.1 + 0.2) == (Decimal("0.30"), False)
    assert parse_amount(None) == (Decimal("0.00"), True)
    assert parse_amount("R$ 10") == (Decimal("0.00"), True)
    assert parse_amount(True) == (Decimal("0.00"), True)
    assert parse_amount("NaN") == (Decimal("0.00"), True)


def test_movement_key_aliases():
    assert movement_cod_mov_cc({"detalhes": {"nCodMovCC": 123}}) == 123
    assert movement_cod_mov_cc({"detalhes": {"nCodMovCC": "456"}}) == 456
    assert movement_cod_mov_cc({"detalhes": {}, "resumo": {"nCodMovCC": 789}}) == 789
    assert movement_cod_mov_cc({"nCodMovCC": 42.0}) == 42
    assert movement_cod_mov_cc({"detalhes": {"nCodMovCC": "abc"}}) is None
    assert movement_cod_mov_cc({"detalhes": {"nCodMovCC": 0}}) is None
    assert movement_cod_mov_cc({}) is None


def test_decode_movement():
    record = {
        "detalhes": {
            "nCodMovCC": 99,
            "cTipo": "CP",
            "cNatureza": "P",
            "nCodTitulo": 5,
            "nCodCliente": 20,
            "cCodProjeto": 500,
            "cCodCategoria": "2.01.01",
            "dDtPagamento": "10/02/2026",
            "nValorMovCC": -700,
            "dDtAlt": "11/02/2026 08:00:00",
        }
    }
    row = decode_movement(record)
    assert row["cod_mov_cc"] == 99
    assert row["natureza"] == "P"
    assert row["cod_cliente"] == "20"
    assert row["cod_projeto"] == "500"
    assert row["cod_categoria"] == "2.01.01"
    assert row["valor"] == "700.00"
    assert row["valor_defaulted"] is False
    assert row["dt_pagamento"].startswith("2026-02-10")
    assert row["omie_altered_at"] == datetime(2026, 2, 11, 8, tzinfo=BRT).isoformat()
    assert row["raw_payload"] is record
    assert row["mf_key"].startswith("CP|5|99|0|")


def test_mf_key_is_stable():
    record = {"detalhes": {"nCodMovCC": 1, "cTipo": "CR", "nValorTitulo": 10}}
    assert build_mf_key(record) == build_mf_key(dict(record))
    assert build_mf_key(record) == "CR|0|1|0||||10"


def test_decode_category():
    assert decode_category({"codigo": "1.04.02", "descricao": "Aporte"}) == {
        "omie_code": "1.04.02",
        "name": "Aporte",
        "description": None,
        "raw_payload": {"codigo": "1.04.02", "descricao": "Aporte"},
    }
    assert decode_category({"descricao": "sem codigo"}) is None


def test_decode_party():
    row = decode_party({"codigo_cliente_omie": 10, "cnpj_cpf": " 123.456.789-00 ", "razao_social": "Ana SA"})
    assert row["omie_code"] == "10"
    assert row["cpf_cnpj"] == "123.456.789-00"
    assert row["name"] == "Ana SA"
    assert row["omie_altered_at"] is None
    assert decode_party({"razao_social": "x"}) is None


def test_decode_project():
    row = decode_project({"codigo": 500, "codInt": "OP-1", "nome": "Casa Jardins",
                          "info": {"dAlt": "01/03/2026", "hAlt": "10:00:00"}})
    assert row["omie_internal_code"] == "500"
    assert row["omie_code"] == "OP-1"
    assert row["omie_altered_at"] == datetime(2026, 3, 1, 10, tzinfo=BRT).isoformat()


def test_decode_payable():
    row = decode_payable({
        "codigo_lancamento_omie": 777,
        "codigo_cliente_fornecedor": 20,
        "codigo_categoria": "2.01.01",
        "data_vencimento": "20/02/2026",
        "valor_documento": 1234.5,
        "status_titulo": "A VENCER",
    })
    assert row["omie_payable_id"] == "777"
    assert row["cod_cliente"] == "20"
    assert row["valor"] == "1234.50"
    assert row["dt_venc"].startswith("2026-02-20")
    assert row["status"] == "A VENCER"
    assert decode_payable({"valor_documento": 1}) is None


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
