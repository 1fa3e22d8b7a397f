"""
In-memory stand-in for the supabase-py query builder used by the sync jobs and
the reconciliation engine.

Supports the chain the app uses:
    db.table(t).select(cols).eq(c, v).in_(c, vs).ilike(c, pat).limit(n)
      .range(a, b).order(c).execute().data
    db.table(t).upsert(rows, on_conflict=key).execute()

Values are compared as text, like the codes stored in the real tables.
"""
import re
from dataclasses import dataclass

from postgrest.exceptions import APIError


@dataclass
class FakeResult:
    data: list


def _as_text(value) -> str:
    return "" if value is None else str(value)


def _ilike_regex(pattern: str) -> re.Pattern:
    parts = [re.escape(p) for p in pattern.split("%")]
    return re.compile("^" + ".*".join(parts) + "$", re.IGNORECASE | re.DOTALL)


class FakeQuery:
    def __init__(self, db: "FakeDB", table: str):
        self._db = db
        self._table = table
        self._filters = []
        self._limit = None
        self._range = None
        self._order = None
        self._upsert = None

    def select(self, columns: str = "*"):
        return self

    def eq(self, column: str, value):
        self._filters.append(lambda row: _as_text(row.get(column)) == _as_text(value))
        return self

    def in_(self, column: str, values):
        allowed = {_as_text(v) for v in values}
        self._filters.append(lambda row: _as_text(row.get(column)) in allowed)
        return self

    def ilike(self, column: str, pattern: str):
        regex = _ilike_regex(pattern)
        self._filters.append(lambda row: bool(regex.match(_as_text(row.get(column)))))
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    def order(self, column: str, desc: bool = False):
        self._order = (column, desc)
        return self

    def upsert(self, rows, on_conflict: str = "id"):
        self._upsert = (rows if isinstance(rows, list) else [rows], on_conflict)
        return self

    def execute(self) -> FakeResult:
        self._db.calls.append((self._table, "upsert" if self._upsert else "select"))
        if self._upsert is not None:
            return self._db._apply_upsert(self._table, *self._upsert)

        rows = [dict(r) for r in self._db.tables.get(self._table, []) if all(f(r) for f in self._filters)]
        if self._order:
            column, desc = self._order
            rows.sort(key=lambda r: _as_text(r.get(column)), reverse=desc)
        if self._range:
            start, end = self._range
            rows = rows[start : end + 1]
        if self._limit is not None:
            rows = rows[: self._limit]
        return FakeResult(data=rows)


class FakeDB:
    def __init__(self, tables: dict[str, list[dict]] | None = None):
        self.tables: dict[str, list[dict]] = {k: [dict(r) for r in v] for k, v in (tables or {}).items()}
        self.calls: list[tuple[str, str]] = []
        self.fail_upserts: set[str] = set()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def _apply_upsert(self, table: str, rows: list[dict], on_conflict: str) -> FakeResult:
        if table in self.fail_upserts:
            raise APIError({"message": f"upsert into {table} rejected", "code": "42501"})
        stored = self.tables.setdefault(table, [])
        keys = on_conflict.split(",")
        for row in rows:
            ident = tuple(_as_text(row.get(k)) for k in keys)
            for i, existing in enumerate(stored):
                if tuple(_as_text(existing.get(k)) for k in keys) == ident:
                    stored[i] = {**existing, **row}
                    break
            else:
                stored.append(dict(row))
        return FakeResult(data=rows)


class FakeOmie:
    """Fake Omie `call` coroutine serving canned pages per (endpoint, call).

    pages: {("financas/mf", "ListarMovimentos"): [page1_response, page2_response, ...]}
    Page numbers are read from the page param; past the end returns {}.
    """

    def __init__(self, pages: dict[tuple[str, str], list[dict]]):
        self.pages = pages
        self.requests: list[tuple[str, str, dict]] = []

    async def __call__(self, endpoint_path: str, call: str, params: list[dict]) -> dict:
        param = params[0] if params else {}
        self.requests.append((endpoint_path, call, param))
        page = param.get("pagina") or param.get("nPagina") or 1
        responses = self.pages.get((endpoint_path.strip("/"), call), [])
        if page > len(responses):
            return {}
        return responses[page - 1]
