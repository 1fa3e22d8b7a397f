"""
Exceptions raised by the Omie sync pipeline and the reconciliation engine.

Sync-side errors propagate up to the orchestrator, which records them per step.
ReconciliationError carries the API error code and HTTP status returned by the
investor-facing routers as {"ok": false, "error": CODE, "message": ...}.
"""


class OmieApiError(Exception):
    """Omie call failed: 4xx (not retried) or retries exhausted."""

    def __init__(self, message: str, status_code: int | None = None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class OmiePagingError(Exception):
    """First page of a paged listing could not be parsed."""


class SyncUpsertError(Exception):
    """A storage upsert batch failed; the current job is aborted."""

    def __init__(self, table: str, message: str):
        super().__init__(f"{table}: {message}")
        self.table = table


class UnknownEntityError(KeyError):
    pass


class ReconciliationError(Exception):
    def __init__(self, code: str, message: str = "", status_code: int = 404, **extra):
        super().__init__(message or code)
        self.code = code
        self.message = message or code
        self.status_code = status_code
        self.extra = extra

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.code, "message": self.message, **self.extra}
