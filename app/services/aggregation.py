"""
Pure aggregation over omie_mf_movements rows (no I/O).

Rules:
  - invested  = sum of valor, category 1.04.02 (capital contribution)
  - realized  = sum of valor, category 2.10.98 (profit distribution)
  - costs     = sum of valor, natureza "p" and category not in {2.10.98, 2.10.99}
  - realized ROI % = realized / invested * 100 (0 when nothing invested)
  - expected profit = invested * roi% / 100, roi < 1 read as a fraction

Amounts are Decimal magnitudes throughout (see app.models.omie_records);
to_display() is the only conversion to float, applied by the API layer.
Category codes compare raw or normalized ("01.04.02" == "1.4.2" == "1.04.02").
"""
from collections import defaultdict
from decimal import Decimal, InvalidOperation

INVESTED_CATEGORY = "1.04.02"
REALIZED_CATEGORY = "2.10.98"
COST_EXCLUDED_CATEGORIES = frozenset({"2.10.98", "2.10.99"})

NO_SUPPLIER = "__SEM_FORNECEDOR__"
NO_SUPPLIER_NAME = "Sem fornecedor"

ZERO = Decimal("0")
HUNDRED = Decimal("100")

_NULLISH = {"null", "undefined", "nan", "none"}


def clean_str(value) -> str:
    if value is None:
        return ""
    s = str(value).strip()
    return "" if s.lower() in _NULLISH else s


def normalize_for_compare(value) -> str:
    """Keep digits and dots, then drop leading zeros per segment: '01.04.02' -> '1.4.2'."""
    s = clean_str(value)
    only = "".join(c for c in s if c.isdigit() or c == ".")
    if not only:
        return ""
    return ".".join(str(int(part)) for part in only.split(".") if part)


def same_code(a, b) -> bool:
    ra, rb = clean_str(a), clean_str(b)
    if not ra or not rb:
        return False
    if ra == rb:
        return True
    na = normalize_for_compare(ra)
    return bool(na) and na == normalize_for_compare(rb)


_EXCLUDED_NORMALIZED = frozenset(normalize_for_compare(c) for c in COST_EXCLUDED_CATEGORIES)


def to_decimal(value) -> Decimal:
    if value is None or isinstance(value, bool):
        return ZERO
    try:
        d = Decimal(str(value).strip())
    except InvalidOperation:
        return ZERO
    return d if d.is_finite() else ZERO


def to_display(value: Decimal, places: int = 2) -> float:
    return float(value.quantize(Decimal(1).scaleb(-places)))


def normalize_roi_percent(raw) -> Decimal:
    """Operation.expected_roi arrives as 0.30 or 30; both mean 30%."""
    roi = to_decimal(raw)
    return roi * HUNDRED if roi < 1 else roi


def is_payable(row: dict) -> bool:
    return clean_str(row.get("natureza")).lower() == "p"


def is_cost(row: dict) -> bool:
    if not is_payable(row):
        return False
    category = normalize_for_compare(row.get("cod_categoria"))
    return bool(category) and category not in _EXCLUDED_NORMALIZED


def sum_category(rows: list[dict], category_code: str) -> tuple[Decimal, int]:
    total = ZERO
    matched = 0
    for row in rows:
        if same_code(row.get("cod_categoria"), category_code):
            total += to_decimal(row.get("valor"))
            matched += 1
    return total, matched


def total_costs(rows: list[dict]) -> Decimal:
    return sum((to_decimal(r.get("valor")) for r in rows if is_cost(r)), ZERO)


def summarize_financial(rows: list[dict], roi_expected) -> dict:
    """Invested / realized / ROI for one operation's movement rows (Decimals)."""
    roi_percent = normalize_roi_percent(roi_expected)
    invested, invested_rows = sum_category(rows, INVESTED_CATEGORY)
    realized, realized_rows = sum_category(rows, REALIZED_CATEGORY)

    realized_roi = realized / invested * HUNDRED if invested > 0 else ZERO
    expected_profit = invested * roi_percent / HUNDRED if invested and roi_percent else ZERO

    return {
        "amountInvested": invested,
        "expectedProfit": expected_profit,
        "realizedProfit": realized,
        "realizedRoiPercent": realized_roi,
        "roiExpectedPercent": roi_percent,
        "investedRowsMatched": invested_rows,
        "realizedRowsMatched": realized_rows,
    }


def build_cost_breakdown(
    rows: list[dict],
    category_names: dict[str, str] | None = None,
    party_names: dict[str, str] | None = None,
) -> dict:
    """Group cost rows by category, then supplier (cod_cliente); both sorted by total desc.

    category_names may be keyed by raw and/or normalized code.
    """
    category_names = category_names or {}
    party_names = party_names or {}

    by_category: dict[str, dict[str, Decimal]] = defaultdict(lambda: defaultdict(lambda: ZERO))
    grand_total = ZERO
    for row in rows:
        if not is_cost(row):
            continue
        amount = to_decimal(row.get("valor"))
        category = clean_str(row.get("cod_categoria"))
        supplier = clean_str(row.get("cod_cliente")) or NO_SUPPLIER
        by_category[category][supplier] += amount
        grand_total += amount

    categories = []
    for category_code, suppliers in by_category.items():
        name = (
            category_names.get(category_code)
            or category_names.get(normalize_for_compare(category_code))
            or category_code
        )
        items = [
            {
                "partyCode": party_code,
                "partyName": NO_SUPPLIER_NAME if party_code == NO_SUPPLIER else party_names.get(party_code, party_code),
                "total": total,
            }
            for party_code, total in suppliers.items()
        ]
        items.sort(key=lambda item: item["total"], reverse=True)
        categories.append({
            "categoryCode": category_code,
            "categoryName": name,
            "total": sum((i["total"] for i in items), ZERO),
            "items": items,
        })
    categories.sort(key=lambda c: c["total"], reverse=True)
    return {"totalCosts": grand_total, "categories": categories}


def display_cost_breakdown(breakdown: dict) -> dict:
    return {
        "totalCosts": to_display(breakdown["totalCosts"]),
        "categories": [
            {
                **category,
                "total": to_display(category["total"]),
                "items": [{**item, "total": to_display(item["total"])} for item in category["items"]],
            }
            for category in breakdown["categories"]
        ],
    }


# ── Statement ────────────────────────────────────────────────


def movement_date(row: dict) -> str | None:
    """YYYY-MM-DD of the movement: payment, else issue, else due date."""
    for field in ("dt_pagamento", "dt_emissao", "dt_venc"):
        value = clean_str(row.get(field))
        if len(value) >= 10 and value[4] == "-" and value[7] == "-":
            return value[:10]
    return None


def signed_amount(row: dict) -> Decimal:
    """Stored valor is a magnitude; payables leave the investor's ledger, receivables enter it."""
    amount = abs(to_decimal(row.get("valor")))
    natureza = clean_str(row.get("natureza")).lower()
    return -amount if natureza == "p" else amount


def build_statement(rows: list[dict], start: str, end: str) -> dict:
    items = []
    total_in = ZERO
    total_out = ZERO
    for row in rows:
        day = movement_date(row)
        if not day or day < start or day > end:
            continue
        amount = signed_amount(row)
        if amount >= 0:
            total_in += amount
        else:
            total_out += -amount
        items.append({
            "id": clean_str(row.get("cod_mov_cc")) or None,
            "date": day,
            "description": clean_str(row.get("descricao")) or "Movimentação",
            "amount": amount,
            "type": "entrada" if amount >= 0 else "saida",
        })
    items.sort(key=lambda item: item["date"], reverse=True)
    return {
        "items": items,
        "totals": {"in": total_in, "out": total_out, "net": total_in - total_out},
    }
