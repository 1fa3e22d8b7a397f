"""
Client for the Omie ERP API.
Base: https://app.omie.com.br/api/v1
Every call is a POST to {base}/{endpoint_path} with body
{"call": ..., "app_key": ..., "app_secret": ..., "param": [...]}.

Retries on network errors, 429 and 5xx with exponential backoff; 4xx are
raised immediately with the response body attached.
"""
import asyncio
import logging

import httpx

from app.config import settings
from app.services.errors import OmieApiError
from app.services.rate_limiter import rate_limiter

logger = logging.getLogger(__name__)


def _build_url(endpoint_path: str) -> str:
    base = settings.omie_base_url.rstrip("/")
    path = endpoint_path.strip("/")
    return f"{base}/{path}/"


def _response_body(resp: httpx.Response):
    try:
        return resp.json()
    except ValueError:
        return resp.text[:2000]


# Omie answers an empty listing page with HTTP 500 and this SOAP fault code
# ("Não existem registros para a página [N]!").
EMPTY_PAGE_FAULT = "SOAP-ENV:Client-5113"


def _is_empty_page_fault(resp: httpx.Response) -> bool:
    if resp.status_code != 500:
        return False
    body = _response_body(resp)
    return isinstance(body, dict) and body.get("faultcode") == EMPTY_PAGE_FAULT


async def _post_with_retry(url: str, payload: dict, label: str, max_retries: int) -> httpx.Response:
    """POST with retry on transport errors, 429 and 5xx. Shares the global rate limit."""
    last_error: str | None = None
    for attempt in range(max_retries + 1):
        await rate_limiter.acquire()
        try:
            async with httpx.AsyncClient(timeout=settings.omie_timeout_seconds) as client:
                resp = await client.post(url, json=payload)
        except httpx.TransportError as exc:
            last_error = f"{type(exc).__name__}: {exc}"
            if attempt < max_retries:
                wait = 2 ** attempt
                logger.warning("Omie %s network error (%s), retry %d in %ss", label, last_error, attempt + 1, wait)
                await asyncio.sleep(wait)
                continue
            break

        if _is_empty_page_fault(resp):
            return resp

        if resp.status_code == 429 or resp.status_code >= 500:
            last_error = f"HTTP {resp.status_code}"
            if attempt < max_retries:
                wait = 2 ** attempt
                logger.warning("Omie %s %d, retry %d in %ss", label, resp.status_code, attempt + 1, wait)
                await asyncio.sleep(wait)
                continue
            raise OmieApiError(
                f"Omie {label} failed after {max_retries + 1} attempts (status {resp.status_code})",
                status_code=resp.status_code,
                body=_response_body(resp),
            )

        if resp.status_code >= 400:
            body = _response_body(resp)
            logger.error("Omie %s rejected with %d: %s", label, resp.status_code, body)
            raise OmieApiError(
                f"Omie {label} failed (status {resp.status_code})",
                status_code=resp.status_code,
                body=body,
            )
        return resp

    raise OmieApiError(f"Omie {label} failed after {max_retries + 1} attempts: {last_error}")


async def call_omie(endpoint_path: str, call: str, params: list[dict]) -> dict:
    """POST one remote call to Omie and return the decoded JSON response."""
    if not settings.omie_app_key or not settings.omie_app_secret:
        raise OmieApiError("OMIE_APP_KEY / OMIE_APP_SECRET not configured")

    payload = {
        "call": call,
        "app_key": settings.omie_app_key,
        "app_secret": settings.omie_app_secret,
        "param": params,
    }
    label = f"{endpoint_path.strip('/')}:{call}"
    resp = await _post_with_retry(_build_url(endpoint_path), payload, label, settings.omie_max_retries)
    if _is_empty_page_fault(resp):
        logger.info("Omie %s: no records for page %s", label, params[0] if params else None)
        return {}
    try:
        return resp.json()
    except ValueError as exc:
        raise OmieApiError(f"Omie {label} returned non-JSON body", status_code=resp.status_code,
                           body=resp.text[:2000]) from exc
