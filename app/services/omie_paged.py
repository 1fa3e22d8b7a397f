"""
Generic paging over Omie "Listar*" calls.

Omie lists come back under a different array field per endpoint and the page
counter/total fields differ between the cadastro APIs (pagina/total_de_paginas)
and financas/mf (nPagina/nTotPaginas). Known endpoints are mapped explicitly in
RESPONSE_ADAPTERS; anything else goes through the probing heuristic, which is
logged so new endpoints get an adapter instead of relying on it.

Exposed functions:
  iter_pages()        — async generator, one list of raw records per page
  fetch_all_paged()   — collects every page: {"items": [...], "pages": n, "truncated": bool}
"""
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

from app.config import settings
from app.services.errors import OmiePagingError

logger = logging.getLogger(__name__)

OmieCall = Callable[[str, str, list[dict]], Awaitable[dict]]


def _field(name: str) -> Callable[[dict], list]:
    def extract(resp: dict) -> list:
        value = resp.get(name)
        return value if isinstance(value, list) else []

    extract.__name__ = f"field:{name}"
    return extract


# (endpoint_path, call) -> response adapter
RESPONSE_ADAPTERS: dict[tuple[str, str], Callable[[dict], list]] = {
    ("geral/categorias", "ListarCategorias"): _field("categoria_cadastro"),
    ("geral/clientes", "ListarClientes"): _field("clientes_cadastro"),
    ("geral/projetos", "ListarProjetos"): _field("cadastro"),
    ("financas/contapagar", "ListarContasPagar"): _field("conta_pagar_cadastro"),
    ("financas/mf", "ListarMovimentos"): _field("movimentos"),
}

# Probed in order by the fallback heuristic
KNOWN_ARRAY_FIELDS = (
    "categoria_cadastro",
    "clientes_cadastro",
    "cliente_cadastro",
    "projeto_cadastro",
    "cadastro",
    "conta_pagar_cadastro",
    "movimentos",
    "lista",
    "registros",
    "cadastros",
    "dados",
)

TOTAL_PAGES_FIELDS = ("total_de_paginas", "nTotPaginas", "totalPaginas", "total_pages")


@dataclass(frozen=True)
class PagingStyle:
    page_param: str = "pagina"
    page_size_param: str = "registros_por_pagina"


CADASTRO_PAGING = PagingStyle()
MF_PAGING = PagingStyle(page_param="nPagina", page_size_param="nRegPorPagina")


def _endpoint_key(endpoint_path: str, call: str) -> tuple[str, str]:
    return endpoint_path.strip("/"), call


def probe_array(resp: dict) -> list:
    """Heuristic: first known field holding a list, else the first list found."""
    for key in KNOWN_ARRAY_FIELDS:
        if isinstance(resp.get(key), list):
            return resp[key]
    for value in resp.values():
        if isinstance(value, list):
            return value
    return []


def extract_items(endpoint_path: str, call: str, resp: dict) -> list:
    adapter = RESPONSE_ADAPTERS.get(_endpoint_key(endpoint_path, call))
    if adapter is not None:
        items = adapter(resp)
        if items or not any(isinstance(v, list) and v for v in resp.values()):
            return items
        logger.warning(
            "omie_paged %s:%s adapter %s found nothing but the response has lists (%s), probing",
            endpoint_path, call, adapter.__name__, sorted(resp.keys()),
        )
    else:
        logger.warning("omie_paged %s:%s has no response adapter, probing array field", endpoint_path, call)
    return probe_array(resp)


def total_pages(resp: dict) -> int:
    for key in TOTAL_PAGES_FIELDS:
        if key in resp:
            try:
                n = int(resp[key])
            except (TypeError, ValueError):
                continue
            if n > 0:
                return n
    return 1


@dataclass
class PageProgress:
    """Filled in by iter_pages: pages yielded and whether the listing was cut short."""

    pages: int = 0
    server_pages: int = 0
    truncated: bool = False


async def _default_call(endpoint_path: str, call: str, params: list[dict]) -> dict:
    from app.services.omie_api import call_omie

    return await call_omie(endpoint_path, call, params)


async def iter_pages(
    endpoint_path: str,
    call: str,
    base_params: dict[str, Any],
    max_pages: int | None = None,
    paging: PagingStyle = CADASTRO_PAGING,
    omie_call: OmieCall | None = None,
    page_size: int | None = None,
    progress: PageProgress | None = None,
) -> AsyncIterator[list]:
    """Yield the raw records of each page, page 1 first.

    Stops at the server-reported page total or at max_pages (safety cap).
    An empty first page yields nothing. Stopping before the server total
    (cap hit, unparseable or empty page) sets progress.truncated.
    """
    max_pages = max_pages or settings.omie_max_pages
    omie_call = omie_call or _default_call
    progress = progress if progress is not None else PageProgress()
    params = dict(base_params)
    if page_size:
        params[paging.page_size_param] = page_size

    first = await omie_call(endpoint_path, call, [{**params, paging.page_param: 1}])
    if not isinstance(first, dict):
        raise OmiePagingError(
            f"{endpoint_path}:{call} page 1 is not a JSON object ({type(first).__name__})"
        )

    first_items = extract_items(endpoint_path, call, first)
    if not first_items:
        return
    progress.pages = 1
    yield first_items

    server_pages = total_pages(first)
    progress.server_pages = server_pages
    last_page = min(server_pages, max_pages)
    if server_pages > max_pages:
        progress.truncated = True
        logger.warning(
            "omie_paged %s:%s reports %d pages, capped at %d",
            endpoint_path, call, server_pages, max_pages,
        )

    for page in range(2, last_page + 1):
        resp = await omie_call(endpoint_path, call, [{**params, paging.page_param: page}])
        if not isinstance(resp, dict):
            progress.truncated = True
            logger.warning("omie_paged %s:%s page %d unparseable, stopping", endpoint_path, call, page)
            return
        items = extract_items(endpoint_path, call, resp)
        if not items:
            progress.truncated = True
            logger.warning(
                "omie_paged %s:%s page %d of %d came back empty, stopping",
                endpoint_path, call, page, server_pages,
            )
            return
        progress.pages = page
        yield items


async def fetch_all_paged(
    endpoint_path: str,
    call: str,
    base_params: dict[str, Any],
    max_pages: int | None = None,
    paging: PagingStyle = CADASTRO_PAGING,
    omie_call: OmieCall | None = None,
    page_size: int | None = None,
) -> dict:
    """Fetch every page and concatenate. Returns {"items": [...], "pages": n, "truncated": bool}."""
    items: list = []
    progress = PageProgress()
    async for page_items in iter_pages(
        endpoint_path, call, base_params, max_pages=max_pages, paging=paging,
        omie_call=omie_call, page_size=page_size, progress=progress,
    ):
        items.extend(page_items)
    logger.info(
        "omie_paged %s:%s fetched %d items in %d pages%s",
        endpoint_path, call, len(items), progress.pages, " (truncated)" if progress.truncated else "",
    )
    return {"items": items, "pages": progress.pages, "truncated": progress.truncated}
