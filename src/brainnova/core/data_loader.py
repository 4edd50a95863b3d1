from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from brainnova.config import (
    DIMENSIONS_TABLE,
    HTTP_TIMEOUT_SECONDS,
    INDICATORS_TABLE,
    MAX_WORKERS,
    REST_PATH,
    RESULTS_TABLE,
    SUBDIMENSIONS_TABLE,
    SUPABASE_ANON_KEY,
    SUPABASE_URL,
)

logger = logging.getLogger(__name__)

INDICATOR_COLUMNS = ["nombre", "nombre_subdimension", "importancia", "formula", "fuente", "origen_indicador"]
ACTIVE_COLUMN = "activo"


class DataLoaderError(Exception):
    """Raised when PostgREST calls fail or return unexpected shapes."""


class QueryRejectedError(DataLoaderError):
    """
    The backend answered with an HTTP error status.

    `detail` holds the PostgREST error message (or the raw body when it is
    not JSON), never the request URL.
    """

    def __init__(self, table: str, status_code: int, detail: str) -> None:
        super().__init__(f"Query on {table} rejected (status={status_code}). Detail={detail}")
        self.status_code = status_code
        self.detail = detail


def _error_detail(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except Exception:
        return (resp.text or "")[:300]
    if isinstance(body, dict):
        parts = [str(body[k]) for k in ("message", "details", "hint") if body.get(k)]
        if parts:
            return " ".join(parts)
    return (resp.text or "")[:300]


@dataclass
class RestResult:
    rows: List[Dict[str, Any]]
    count: Optional[int] = None


def _build_retry_session(pool_size: int = MAX_WORKERS) -> requests.Session:
    """
    Build a requests Session with conservative retries.
    The hosted backend occasionally answers 5xx while waking up.
    """
    session = requests.Session()

    retry = Retry(
        total=3,
        connect=3,
        read=3,
        status=3,
        backoff_factor=0.4,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET", "HEAD"}),
        raise_on_status=False,
    )

    adapter = HTTPAdapter(max_retries=retry, pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    return session


def _quote(value: Any) -> str:
    """Quote a value for a PostgREST in.(...) list."""
    s = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{s}"'


def eq(value: Any) -> str:
    return f"eq.{value}"


def in_(values: Sequence[Any]) -> str:
    return "in.(" + ",".join(_quote(v) for v in values) + ")"


def _parse_content_range(header: Optional[str]) -> Optional[int]:
    # "0-9/42", "*/0"
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[-1].strip()
    if total == "*":
        return None
    try:
        return int(total)
    except ValueError:
        return None


class SupabaseSource:
    """
    Read-only access to the index tables through PostgREST.

    Every public method returns a list (or 0 for counts) and never raises:
    failures are logged and mapped to the empty default, so one failed
    lookup never aborts a batch of them.
    """

    def __init__(
        self,
        base_url: str = SUPABASE_URL,
        api_key: str = SUPABASE_ANON_KEY,
        *,
        session: Optional[requests.Session] = None,
        timeout_seconds: int = HTTP_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.timeout_seconds = timeout_seconds
        self.log = logger if logger is not None else logging.getLogger(__name__)
        self._session = session

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = _build_retry_session()
        return self._session

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self, count: bool) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }
        if count:
            headers["Prefer"] = "count=exact"
        return headers

    def _rest_select(
        self,
        table: str,
        *,
        select: str,
        filters: Optional[Dict[str, str]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
        count: bool = False,
    ) -> RestResult:
        """
        GET {base}/rest/v1/{table} with PostgREST query parameters.

        `filters` maps column -> operator expression (e.g. "eq.2024").
        With count=True the exact row count is read from Content-Range.
        """
        if not self.configured:
            raise DataLoaderError("Backend is not configured (SUPABASE_URL / SUPABASE_ANON_KEY).")

        params: Dict[str, Any] = {"select": select}
        if filters:
            params.update(filters)
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = int(limit)

        url = f"{self.base_url}{REST_PATH}/{table}"
        try:
            resp = self.session.get(url, params=params, headers=self._headers(count), timeout=self.timeout_seconds)
        except Exception as exc:
            raise DataLoaderError(f"HTTP error while querying {table}: {exc}") from exc

        if resp.status_code >= 400:
            raise QueryRejectedError(table, resp.status_code, _error_detail(resp))

        try:
            data = resp.json()
        except Exception as exc:
            preview = (resp.text or "")[:200]
            raise DataLoaderError(f"Non-JSON response from {table} (status={resp.status_code}). Preview: {preview}") from exc

        if not isinstance(data, list):
            raise DataLoaderError(f"Unexpected response type from {table}: {type(data)}")

        total = _parse_content_range(resp.headers.get("Content-Range")) if count else None
        return RestResult(rows=data, count=total)

    def _rows(self, what: str, table: str, **kwargs: Any) -> List[Dict[str, Any]]:
        try:
            return self._rest_select(table, **kwargs).rows
        except DataLoaderError as exc:
            self.log.error("Error fetching %s: %s", what, exc)
            return []

    # ------------------------------------------------------------------
    # Catalogue
    # ------------------------------------------------------------------

    def fetch_dimensions(self) -> List[Dict[str, Any]]:
        return self._rows("dimensiones", DIMENSIONS_TABLE, select="nombre,peso", order="peso.desc")

    def fetch_subdimensions(self) -> List[Dict[str, Any]]:
        return self._rows(
            "subdimensiones",
            SUBDIMENSIONS_TABLE,
            select="nombre,nombre_dimension,peso",
            order="nombre_dimension.asc,peso.asc",
        )

    def fetch_indicator_definitions(self) -> List[Dict[str, Any]]:
        """
        All indicator definitions ordered by name.

        Older schemas lack the `activo` column; when the backend rejects the
        query because of it, the definitions are re-read without it and the
        rows carry activo=None.
        """
        try:
            return self._rest_select(
                INDICATORS_TABLE,
                select=",".join(INDICATOR_COLUMNS + [ACTIVE_COLUMN]),
                order="nombre.asc",
            ).rows
        except QueryRejectedError as exc:
            if ACTIVE_COLUMN not in exc.detail:
                self.log.error("Error fetching indicadores: %s", exc)
                return []
            self.log.warning("Column '%s' not available, reading definitions without it.", ACTIVE_COLUMN)
        except DataLoaderError as exc:
            # transport failures: the request URL names activo too, so no fallback here
            self.log.error("Error fetching indicadores: %s", exc)
            return []

        rows = self._rows("indicadores", INDICATORS_TABLE, select=",".join(INDICATOR_COLUMNS), order="nombre.asc")
        return [{**row, ACTIVE_COLUMN: None} for row in rows]

    def fetch_indicator_names(self, subdimension: str) -> List[str]:
        rows = self._rows(
            f"indicadores de {subdimension}",
            INDICATORS_TABLE,
            select="nombre",
            filters={"nombre_subdimension": eq(subdimension)},
        )
        return [str(r["nombre"]) for r in rows if r.get("nombre") is not None]

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def fetch_latest_results(self, indicator: str, territory: Optional[str] = None, limit: int = 1) -> List[Dict[str, Any]]:
        filters = {"nombre_indicador": eq(indicator)}
        if territory is not None:
            filters["pais"] = eq(territory)
        return self._rows(
            f"ultimo resultado de {indicator}",
            RESULTS_TABLE,
            select="valor_calculado,periodo",
            filters=filters,
            order="periodo.desc",
            limit=limit,
        )

    def fetch_results_at_period(self, indicator: str, territory: str, period: int, limit: int = 1) -> List[Dict[str, Any]]:
        return self._rows(
            f"resultado de {indicator} ({territory}, {period})",
            RESULTS_TABLE,
            select="valor_calculado,periodo",
            filters={"nombre_indicador": eq(indicator), "pais": eq(territory), "periodo": eq(int(period))},
            limit=limit,
        )

    def fetch_results_for_territories(
        self,
        indicator: str,
        territories: Sequence[str],
        period: int,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        if not territories:
            return []
        return self._rows(
            f"resultados de {indicator} ({len(territories)} territorios, {period})",
            RESULTS_TABLE,
            select="valor_calculado,pais",
            filters={"nombre_indicador": eq(indicator), "periodo": eq(int(period)), "pais": in_(territories)},
            limit=limit if limit is not None else len(territories),
        )

    def fetch_historical_results(self, indicator: str, territory: str, limit: int = 10) -> List[Dict[str, Any]]:
        return self._rows(
            f"datos historicos de {indicator}",
            RESULTS_TABLE,
            select="periodo,valor_calculado",
            filters={"nombre_indicador": eq(indicator), "pais": eq(territory)},
            order="periodo.asc",
            limit=limit,
        )

    def count_results(self, indicator: str, territory: Optional[str] = None) -> int:
        filters = {"nombre_indicador": eq(indicator)}
        if territory is not None:
            filters["pais"] = eq(territory)
        try:
            # limit=1 keeps the payload tiny; the total comes from Content-Range
            result = self._rest_select(RESULTS_TABLE, select="id", filters=filters, limit=1, count=True)
        except DataLoaderError as exc:
            self.log.error("Error counting resultados of %s: %s", indicator, exc)
            return 0
        return int(result.count or 0)
