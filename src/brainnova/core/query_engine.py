from __future__ import annotations

from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Protocol, Sequence, Tuple, TypeVar

import logging

from brainnova.config import (
    DEFAULT_PERIOD,
    DEFAULT_TERRITORY,
    EU_PEERS,
    MAX_WORKERS,
    NATIONAL_REFERENCE,
    territory_variants,
)
from brainnova.core.formatters import clamp_score, round_half_up, slugify, to_bool, to_float, to_int
from brainnova.core.models import (
    Dimension,
    DistributionEntry,
    HistoricalPoint,
    Indicator,
    IndicatorWithData,
    Subdimension,
    SubdimensionCoverage,
    SubdimensionScore,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Triple of per-indicator values: (territory, national reference, EU peers)
IndicatorValues = Tuple[Optional[float], Optional[float], Optional[float]]


class QueryEngineError(Exception):
    """Raised for invalid aggregation requests (e.g. a blank dimension name)."""


class DataSource(Protocol):
    """The read operations the aggregator needs from the backend."""

    def fetch_dimensions(self) -> List[Dict[str, Any]]: ...
    def fetch_subdimensions(self) -> List[Dict[str, Any]]: ...
    def fetch_indicator_definitions(self) -> List[Dict[str, Any]]: ...
    def fetch_indicator_names(self, subdimension: str) -> List[str]: ...
    def fetch_latest_results(self, indicator: str, territory: Optional[str] = None, limit: int = 1) -> List[Dict[str, Any]]: ...
    def fetch_results_at_period(self, indicator: str, territory: str, period: int, limit: int = 1) -> List[Dict[str, Any]]: ...
    def fetch_results_for_territories(self, indicator: str, territories: Sequence[str], period: int, limit: Optional[int] = None) -> List[Dict[str, Any]]: ...
    def fetch_historical_results(self, indicator: str, territory: str, limit: int = 10) -> List[Dict[str, Any]]: ...
    def count_results(self, indicator: str, territory: Optional[str] = None) -> int: ...


@dataclass
class Outcome(Generic[T]):
    """
    Result of a guarded aggregation call. Always carries a usable value;
    `error` is set when the value is the fallback default.
    """
    value: T
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Row conversion helpers
# ---------------------------------------------------------------------------

def _dimension_from_row(row: Dict[str, Any]) -> Dimension:
    nombre = str(row.get("nombre", ""))
    return Dimension(nombre=nombre, peso=to_float(row.get("peso")) or 0.0, id=slugify(nombre))


def _subdimension_from_row(row: Dict[str, Any]) -> Subdimension:
    return Subdimension(
        nombre=str(row.get("nombre", "")),
        nombre_dimension=str(row.get("nombre_dimension", "")),
        peso=to_float(row.get("peso")) or 0.0,
    )


def _indicator_from_row(row: Dict[str, Any]) -> Indicator:
    return Indicator(
        nombre=str(row.get("nombre", "")),
        nombre_subdimension=str(row.get("nombre_subdimension", "")),
        importancia=row.get("importancia"),
        formula=row.get("formula"),
        fuente=row.get("fuente"),
        origen_indicador=row.get("origen_indicador"),
        activo=to_bool(row.get("activo")),
    )


def _first_value(rows: List[Dict[str, Any]]) -> Optional[float]:
    if not rows:
        return None
    return to_float(rows[0].get("valor_calculado"))


def _mean_score(values: Iterable[Optional[float]]) -> float:
    """Mean of the resolved values clamped to [0, 100]; 0 when none resolved."""
    valid = [v for v in values if v is not None]
    if not valid:
        return 0.0
    return clamp_score(sum(valid) / len(valid))


def score_from_subdimensions(subs: Sequence[SubdimensionScore]) -> int:
    """
    Dimension score from already computed subdimension scores: the unweighted
    mean of their `score`, rounded half up. 0 for no subdimensions.
    """
    if not subs:
        return 0
    return round_half_up(sum(s.score for s in subs) / len(subs))


# ---------------------------------------------------------------------------
# Client-side filtering
# ---------------------------------------------------------------------------

def filter_indicators(
    indicators: Sequence[IndicatorWithData],
    search: str = "",
    dimension: Optional[str] = None,
    subdimension: Optional[str] = None,
) -> List[IndicatorWithData]:
    """
    Filter an already-fetched indicator list.

    search is a case-insensitive substring match on the name; dimension and
    subdimension are exact matches, None meaning "all".
    """
    needle = (search or "").strip().lower()
    out: List[IndicatorWithData] = []
    for ind in indicators:
        if needle and needle not in ind.nombre.lower():
            continue
        if dimension is not None and ind.dimension != dimension:
            continue
        if subdimension is not None and ind.subdimension != subdimension:
            continue
        out.append(ind)
    return out


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class IndexAggregator:
    """
    Derived views of the composite index.

    Every public method is guarded: a failure anywhere below it is logged
    on the injected logger and replaced by an empty or zero result.
    """

    def __init__(self, source: DataSource, logger: Optional[logging.Logger] = None, max_workers: int = MAX_WORKERS) -> None:
        self.source = source
        self.log = logger if logger is not None else logging.getLogger(__name__)
        self.max_workers = max(1, int(max_workers))

    # -- plumbing -----------------------------------------------------------

    def _guard(self, what: str, default: Callable[[], T], fn: Callable[..., T], *args: Any) -> Outcome[T]:
        try:
            return Outcome(value=fn(*args))
        except QueryEngineError as exc:
            self.log.warning("%s: %s", what, exc)
            return Outcome(value=default(), error=str(exc))
        except Exception as exc:
            self.log.exception("Error computing %s", what)
            return Outcome(value=default(), error=f"{type(exc).__name__}: {exc}")

    def _fan_out(self, fn: Callable[[Any], T], items: Sequence[Any]) -> List[T]:
        """Run fn over items concurrently and join all results, in input order."""
        if not items:
            return []
        workers = min(self.max_workers, len(items))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(fn, items))

    @staticmethod
    def _require(name: str, label: str) -> str:
        value = (name or "").strip()
        if not value:
            raise QueryEngineError(f"{label} must be specified.")
        return value

    def _subdimensions_of(self, dimension: str) -> List[Subdimension]:
        rows = self.source.fetch_subdimensions()
        subs = [_subdimension_from_row(r) for r in rows]
        return [s for s in subs if s.nombre_dimension == dimension]

    # -- catalogue ----------------------------------------------------------

    def list_dimensions(self) -> List[Dimension]:
        return self._guard("dimensiones", list, self._list_dimensions).value

    def _list_dimensions(self) -> List[Dimension]:
        dims = [_dimension_from_row(r) for r in self.source.fetch_dimensions()]
        # The backend already orders by weight; keep that guarantee locally.
        return sorted(dims, key=lambda d: d.peso, reverse=True)

    def list_subdimensions(self, dimension: Optional[str] = None) -> List[Subdimension]:
        return self._guard("subdimensiones", list, self._list_subdimensions, dimension).value

    def _list_subdimensions(self, dimension: Optional[str]) -> List[Subdimension]:
        if dimension is None:
            return [_subdimension_from_row(r) for r in self.source.fetch_subdimensions()]
        return self._subdimensions_of(dimension)

    # -- indicators ---------------------------------------------------------

    def list_indicators_with_data(self, dimension: Optional[str] = None) -> List[IndicatorWithData]:
        return self._guard("indicadores con datos", list, self._list_indicators_with_data, dimension).value

    def _list_indicators_with_data(self, dimension: Optional[str]) -> List[IndicatorWithData]:
        indicators = [_indicator_from_row(r) for r in self.source.fetch_indicator_definitions()]
        sub_to_dim = {s.nombre: s.nombre_dimension for s in map(_subdimension_from_row, self.source.fetch_subdimensions())}

        if dimension is not None:
            indicators = [i for i in indicators if sub_to_dim.get(i.nombre_subdimension) == dimension]

        def summarize(ind: Indicator) -> IndicatorWithData:
            latest = self.source.fetch_latest_results(ind.nombre, limit=1)
            total = self.source.count_results(ind.nombre)

            ultimo_valor = _first_value(latest)
            ultimo_periodo = to_int(latest[0].get("periodo")) if latest else None
            activo = ind.activo if ind.activo is not None else ultimo_valor is not None

            return IndicatorWithData(
                nombre=ind.nombre,
                nombre_subdimension=ind.nombre_subdimension,
                dimension=sub_to_dim.get(ind.nombre_subdimension, ""),
                subdimension=ind.nombre_subdimension,
                importancia=ind.importancia,
                formula=ind.formula,
                fuente=ind.fuente,
                origen_indicador=ind.origen_indicador,
                ultimo_valor=ultimo_valor,
                ultimo_periodo=ultimo_periodo,
                total_resultados=int(total or 0),
                activo=bool(activo),
            )

        enriched = self._fan_out(summarize, indicators)
        # Stable partition: active (or with data) first, order otherwise kept.
        return sorted(enriched, key=lambda i: 0 if (i.activo or i.has_data) else 1)

    def indicators_for_subdimension(self, subdimension: str) -> List[IndicatorWithData]:
        indicators = self.list_indicators_with_data()
        return [i for i in indicators if i.subdimension == subdimension]

    def historical_series(self, indicator: str, territory: str = NATIONAL_REFERENCE, limit: int = 10) -> List[HistoricalPoint]:
        return self._guard("datos historicos", list, self._historical_series, indicator, territory, limit).value

    def _historical_series(self, indicator: str, territory: str, limit: int) -> List[HistoricalPoint]:
        rows = self.source.fetch_historical_results(indicator, territory, limit=limit)
        return [
            HistoricalPoint(periodo=to_int(r.get("periodo")) or 0, valor=to_float(r.get("valor_calculado")) or 0.0)
            for r in rows
        ]

    def sparkline_series(
        self,
        indicators: Sequence[str],
        territory: str = DEFAULT_TERRITORY,
        limit: int = 5,
        max_indicators: int = 10,
    ) -> Dict[str, List[HistoricalPoint]]:
        """Short series for the first `max_indicators` names; empty series are left out."""
        names = list(indicators)[:max_indicators]
        series = self._fan_out(lambda name: self.historical_series(name, territory, limit), names)
        return {name: points for name, points in zip(names, series) if points}

    # -- scores -------------------------------------------------------------

    def _resolve_with_fallback(self, indicator: str, variants: Sequence[str], period: int) -> Optional[float]:
        """
        Value of an indicator for the first territory variant that has any
        result: exact period preferred, else the variant's latest period.
        """
        for variant in variants:
            rows = self.source.fetch_results_at_period(indicator, variant, period, limit=1)
            if not rows:
                rows = self.source.fetch_latest_results(indicator, variant, limit=1)
            if rows:
                return _first_value(rows)
        return None

    def _peer_average(self, indicator: str, period: int) -> Optional[float]:
        rows = self.source.fetch_results_for_territories(indicator, EU_PEERS, period, limit=len(EU_PEERS))
        values = [v for v in (to_float(r.get("valor_calculado")) for r in rows) if v is not None]
        if not values:
            return None
        return sum(values) / len(values)

    def _indicator_values(self, indicator: str, territory: str, period: int) -> IndicatorValues:
        return (
            self._resolve_with_fallback(indicator, territory_variants(territory), period),
            self._resolve_with_fallback(indicator, [NATIONAL_REFERENCE], period),
            self._peer_average(indicator, period),
        )

    def subdimension_scores(
        self,
        dimension: str,
        territory: str = DEFAULT_TERRITORY,
        period: int = DEFAULT_PERIOD,
    ) -> List[SubdimensionScore]:
        return self._guard(
            f"scores de subdimensiones ({dimension}, {territory}, {period})",
            list,
            self._subdimension_scores,
            dimension,
            territory,
            period,
        ).value

    def _subdimension_scores(self, dimension: str, territory: str, period: int) -> List[SubdimensionScore]:
        dimension = self._require(dimension, "Dimension name")
        subs = self._subdimensions_of(dimension)
        self.log.info("Scoring %d subdimensions of %s for %s/%s", len(subs), dimension, territory, period)

        names_per_sub = self._fan_out(self.source.fetch_indicator_names, [s.nombre for s in subs])

        pairs: List[Tuple[int, str]] = [(idx, name) for idx, names in enumerate(names_per_sub) for name in names]
        values = self._fan_out(lambda pair: self._indicator_values(pair[1], territory, int(period)), pairs)

        grouped: Dict[int, List[IndicatorValues]] = {idx: [] for idx in range(len(subs))}
        for (idx, _name), triple in zip(pairs, values):
            grouped[idx].append(triple)

        out: List[SubdimensionScore] = []
        for idx, sub in enumerate(subs):
            triples = grouped[idx]
            if not triples:
                self.log.info("No indicators for subdimension %s", sub.nombre)
            out.append(
                SubdimensionScore(
                    nombre=sub.nombre,
                    score=_mean_score(t[0] for t in triples),
                    espana=_mean_score(t[1] for t in triples),
                    ue=_mean_score(t[2] for t in triples),
                    indicadores=len(triples),
                )
            )
        return out

    def dimension_score(self, dimension: str, territory: str = DEFAULT_TERRITORY, period: int = DEFAULT_PERIOD) -> int:
        return self._guard("score de dimension", int, self._dimension_score, dimension, territory, period).value

    def _dimension_score(self, dimension: str, territory: str, period: int) -> int:
        return score_from_subdimensions(self.subdimension_scores(dimension, territory, period))

    # -- distribution / coverage --------------------------------------------

    def indicator_distribution(self, dimension: str) -> List[DistributionEntry]:
        return self._guard("distribucion por subdimension", list, self._indicator_distribution, dimension).value

    def _indicator_distribution(self, dimension: str) -> List[DistributionEntry]:
        subs = self._subdimensions_of(dimension)
        per_sub = Counter(
            str(r.get("nombre_subdimension", "")) for r in self.source.fetch_indicator_definitions()
        )
        counts = [(s.nombre, per_sub.get(s.nombre, 0)) for s in subs]
        total = sum(n for _, n in counts)
        return [
            DistributionEntry(
                nombre=name,
                total_indicadores=n,
                porcentaje=round_half_up(100 * n / total) if total > 0 else 0,
            )
            for name, n in counts
        ]

    def subdimension_coverage(self, dimension: str, territory: str = NATIONAL_REFERENCE) -> List[SubdimensionCoverage]:
        return self._guard("cobertura por subdimension", list, self._subdimension_coverage, dimension, territory).value

    def _subdimension_coverage(self, dimension: str, territory: str) -> List[SubdimensionCoverage]:
        subs = self._subdimensions_of(dimension)
        names_per_sub = self._fan_out(self.source.fetch_indicator_names, [s.nombre for s in subs])

        out: List[SubdimensionCoverage] = []
        for sub, names in zip(subs, names_per_sub):
            counts = self._fan_out(lambda name: self.source.count_results(name, territory), names)
            out.append(
                SubdimensionCoverage(
                    subdimension=sub.nombre,
                    total_indicadores=len(names),
                    indicadores_con_datos=sum(1 for c in counts if (c or 0) > 0),
                )
            )
        return out
