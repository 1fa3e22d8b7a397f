"""
Decoders from raw Omie records to storage rows.

Omie field names vary between endpoint versions (and between the detalhes and
resumo sections of financas/mf movements). Each resource has an explicit alias
table: logical column -> accepted spellings, tried in order. Dotted names reach
into nested sections ("detalhes.nCodMovCC").

Amounts are stored as non-negative Decimal magnitudes; direction lives in
`natureza` ("P" payable, "R" receivable). A missing or non-numeric amount is
stored as 0 with valor_defaulted=True so the gap is visible in the table.
"""
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

BRT = timezone(timedelta(hours=-3))

_NULLISH = {"null", "undefined", "nan", "none"}

CATEGORY_ALIASES: dict[str, tuple[str, ...]] = {
    "omie_code": ("codigo", "omie_code"),
    "name": ("descricao", "nome"),
    "description": ("descricao_padrao", "description"),
}

PARTY_ALIASES: dict[str, tuple[str, ...]] = {
    "omie_code": ("codigo_cliente_omie", "codigo", "omie_code"),
    "name": ("nome_fantasia", "razao_social", "nome"),
    "cpf_cnpj": ("cnpj_cpf", "cpf_cnpj"),
    "email": ("email",),
}

PROJECT_ALIASES: dict[str, tuple[str, ...]] = {
    "omie_internal_code": ("codigo", "omie_internal_code", "codigo_projeto"),
    "omie_code": ("codInt", "codigo_externo", "omie_code"),
    "name": ("nome", "descricao"),
}

PAYABLE_ALIASES: dict[str, tuple[str, ...]] = {
    "omie_payable_id": ("codigo_lancamento_omie", "omie_payable_id", "codigo"),
    "cod_titulo": ("codigo_titulo", "cod_titulo"),
    "cod_cliente": ("codigo_cliente_fornecedor", "cod_cliente"),
    "cod_projeto": ("codigo_projeto", "cod_projeto"),
    "cod_categoria": ("codigo_categoria", "cod_categoria"),
    "dt_emissao": ("data_emissao", "dt_emissao"),
    "dt_venc": ("data_vencimento", "dt_venc"),
    "dt_pagamento": ("data_pagamento", "dt_pagamento"),
    "valor": ("valor_documento", "valor"),
    "status": ("status_titulo", "status"),
    "descricao": ("observacao", "descricao"),
}

MOVEMENT_ALIASES: dict[str, tuple[str, ...]] = {
    "cod_mov_cc": (
        "detalhes.nCodMovCC",
        "detalhes.cod_mov_cc",
        "detalhes.nCodMovimento",
        "resumo.nCodMovCC",
        "resumo.cod_mov_cc",
        "nCodMovCC",
        "cod_mov_cc",
    ),
    "tp_lancamento": ("detalhes.cTipo", "detalhes.cTpLancamento"),
    "natureza": ("detalhes.cNatureza",),
    "cod_titulo": ("detalhes.nCodTitulo",),
    "cod_baixa": ("detalhes.nCodBaixa",),
    "cod_cliente": ("detalhes.nCodCliente",),
    "cod_projeto": ("detalhes.cCodProjeto", "detalhes.nCodProjeto"),
    "cod_categoria": ("detalhes.cCodCateg", "detalhes.cCodCategoria"),
    "dt_emissao": ("detalhes.dDtEmissao",),
    "dt_venc": ("detalhes.dDtVenc",),
    "dt_pagamento": ("detalhes.dDtPagamento",),
    "valor": ("detalhes.nValorTitulo", "detalhes.nValorMovCC", "detalhes.nValor"),
    "status": ("detalhes.cStatus",),
    "descricao": ("detalhes.observacao", "detalhes.cNumDocFiscal", "detalhes.cDescricao"),
    "omie_altered_at": ("detalhes.dDtAlt",),
}

# Cadastro records carry their audit stamp in info.dAlt / info.hAlt
INFO_ALTERED_DATE = ("info.dAlt", "info.data_alt")
INFO_ALTERED_TIME = ("info.hAlt", "info.hora_alt")


def _get_path(record: dict, path: str):
    value = record
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def pick(record: dict, aliases: tuple[str, ...]):
    """First alias with a non-empty value, else None."""
    for alias in aliases:
        value = _get_path(record, alias)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def text(value) -> str:
    if value is None:
        return ""
    s = str(value).strip()
    return "" if s.lower() in _NULLISH else s


def code(value) -> str | None:
    """Omie ids come as ints or strings; store them as trimmed text (None when empty)."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    s = text(value)
    return s or None


_BR_DATETIME = re.compile(r"^(\d{2})/(\d{2})/(\d{4})(?:\s+(\d{2}):(\d{2})(?::(\d{2}))?)?$")


def parse_omie_datetime(value) -> datetime | None:
    """Parse 'DD/MM/YYYY[ HH:MM[:SS]]' (Brasília time) or ISO 8601."""
    s = text(value)
    if not s:
        return None
    m = _BR_DATETIME.match(s)
    if m:
        dd, mm, yyyy = int(m.group(1)), int(m.group(2)), int(m.group(3))
        hh, mi, ss = (int(m.group(i) or 0) for i in (4, 5, 6))
        try:
            return datetime(yyyy, mm, dd, hh, mi, ss, tzinfo=BRT)
        except ValueError:
            return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=BRT)
    return dt


def to_iso(value) -> str | None:
    dt = parse_omie_datetime(value)
    return dt.isoformat() if dt else None


def to_omie_date(dt: datetime) -> str:
    """Omie date filters take DD/MM/YYYY in Brasília time."""
    return dt.astimezone(BRT).strftime("%d/%m/%Y")


def parse_amount(value) -> tuple[Decimal, bool]:
    """Return (non-negative magnitude, defaulted)."""
    if value is None or isinstance(value, bool):
        return Decimal("0.00"), True
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return Decimal("0.00"), True
    if not amount.is_finite():
        return Decimal("0.00"), True
    return abs(amount).quantize(Decimal("0.01")), False


def info_altered_at(record: dict) -> datetime | None:
    day = text(pick(record, INFO_ALTERED_DATE))
    if not day:
        return None
    hour = text(pick(record, INFO_ALTERED_TIME))
    return parse_omie_datetime(f"{day} {hour}" if hour else day) or parse_omie_datetime(day)


def _iso_or_none(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _decode(record: dict, aliases: dict[str, tuple[str, ...]]) -> dict:
    return {column: pick(record, spellings) for column, spellings in aliases.items()}


def decode_category(record: dict) -> dict | None:
    raw = _decode(record, CATEGORY_ALIASES)
    omie_code = text(raw["omie_code"])
    if not omie_code:
        return None
    return {
        "omie_code": omie_code,
        "name": text(raw["name"]) or None,
        "description": text(raw["description"]) or None,
        "raw_payload": record,
    }


def decode_party(record: dict) -> dict | None:
    raw = _decode(record, PARTY_ALIASES)
    omie_code = code(raw["omie_code"])
    if not omie_code:
        return None
    return {
        "omie_code": omie_code,
        "name": text(raw["name"]) or None,
        "cpf_cnpj": text(raw["cpf_cnpj"]) or None,
        "email": text(raw["email"]) or None,
        "omie_altered_at": _iso_or_none(info_altered_at(record)),
        "raw_payload": record,
    }


def decode_project(record: dict) -> dict | None:
    raw = _decode(record, PROJECT_ALIASES)
    internal = code(raw["omie_internal_code"])
    if not internal:
        return None
    return {
        "omie_internal_code": internal,
        "omie_code": code(raw["omie_code"]) or internal,
        "name": text(raw["name"]) or None,
        "omie_altered_at": _iso_or_none(info_altered_at(record)),
        "raw_payload": record,
    }


def decode_payable(record: dict) -> dict | None:
    raw = _decode(record, PAYABLE_ALIASES)
    payable_id = code(raw["omie_payable_id"])
    if not payable_id:
        return None
    valor, defaulted = parse_amount(raw["valor"])
    return {
        "omie_payable_id": payable_id,
        "cod_titulo": code(raw["cod_titulo"]),
        "cod_cliente": code(raw["cod_cliente"]),
        "cod_projeto": code(raw["cod_projeto"]),
        "cod_categoria": text(raw["cod_categoria"]) or None,
        "dt_emissao": to_iso(raw["dt_emissao"]),
        "dt_venc": to_iso(raw["dt_venc"]),
        "dt_pagamento": to_iso(raw["dt_pagamento"]),
        "valor": str(valor),
        "valor_defaulted": defaulted,
        "status": text(raw["status"]) or None,
        "descricao": text(raw["descricao"]) or None,
        "omie_altered_at": _iso_or_none(info_altered_at(record)),
        "raw_payload": record,
    }


def movement_cod_mov_cc(record: dict) -> int | None:
    raw = pick(record, MOVEMENT_ALIASES["cod_mov_cc"])
    try:
        n = int(Decimal(str(raw).strip()))
    except (InvalidOperation, TypeError, ValueError):
        return None
    return n or None


def build_mf_key(record: dict) -> str:
    """Composite audit key: lançamento type | title | movement | settlement | doc numbers | payment date | amount."""
    det = record.get("detalhes") or {}
    parts = [
        text(pick(record, MOVEMENT_ALIASES["tp_lancamento"])),
        text(det.get("nCodTitulo")) or "0",
        text(det.get("nCodMovCC")) or "0",
        text(det.get("nCodBaixa")) or "0",
        text(det.get("cNumTitulo")),
        text(det.get("cNumDocFiscal")),
        text(det.get("dDtPagamento")),
        text(det.get("nValorMovCC") if det.get("nValorMovCC") is not None else det.get("nValorTitulo")),
    ]
    return "|".join(parts)


def decode_movement(record: dict) -> dict | None:
    cod_mov_cc = movement_cod_mov_cc(record)
    if not cod_mov_cc:
        return None
    raw = _decode(record, MOVEMENT_ALIASES)
    valor, defaulted = parse_amount(raw["valor"])
    altered = parse_omie_datetime(raw["omie_altered_at"])
    return {
        "cod_mov_cc": cod_mov_cc,
        "mf_key": build_mf_key(record),
        "tp_lancamento": text(raw["tp_lancamento"]),
        "natureza": text(raw["natureza"]),
        "cod_titulo": code(raw["cod_titulo"]),
        "cod_baixa": code(raw["cod_baixa"]),
        "cod_cliente": code(raw["cod_cliente"]),
        "cod_projeto": code(raw["cod_projeto"]),
        "cod_categoria": text(raw["cod_categoria"]),
        "dt_emissao": to_iso(raw["dt_emissao"]),
        "dt_venc": to_iso(raw["dt_venc"]),
        "dt_pagamento": to_iso(raw["dt_pagamento"]),
        "valor": str(valor),
        "valor_defaulted": defaulted,
        "status": text(raw["status"]),
        "descricao": text(raw["descricao"]),
        "raw_payload": record,
        "omie_altered_at": altered.isoformat() if altered else None,
    }
