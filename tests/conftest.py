import json

import pytest

from brainnova.core.query_engine import IndexAggregator


class FakeSource:
    """In-memory stand-in for SupabaseSource with the same query shapes."""

    def __init__(self, dimensions=None, subdimensions=None, indicators=None, results=None):
        self.dimensions = list(dimensions or [])
        self.subdimensions = list(subdimensions or [])
        self.indicators = list(indicators or [])
        self.results = list(results or [])
        self.failing = set()

    def _check(self, name):
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    def fetch_dimensions(self):
        self._check("fetch_dimensions")
        return sorted(self.dimensions, key=lambda r: r["peso"], reverse=True)

    def fetch_subdimensions(self):
        self._check("fetch_subdimensions")
        return sorted(self.subdimensions, key=lambda r: (r["nombre_dimension"], r["peso"]))

    def fetch_indicator_definitions(self):
        self._check("fetch_indicator_definitions")
        return sorted(self.indicators, key=lambda r: r["nombre"])

    def fetch_indicator_names(self, subdimension):
        self._check("fetch_indicator_names")
        return [r["nombre"] for r in self.indicators if r["nombre_subdimension"] == subdimension]

    def _matching(self, indicator, territory=None, period=None):
        rows = [r for r in self.results if r["nombre_indicador"] == indicator]
        if territory is not None:
            rows = [r for r in rows if r["pais"] == territory]
        if period is not None:
            rows = [r for r in rows if r["periodo"] == period]
        return rows

    def fetch_latest_results(self, indicator, territory=None, limit=1):
        rows = sorted(self._matching(indicator, territory), key=lambda r: r["periodo"], reverse=True)
        return rows[:limit]

    def fetch_results_at_period(self, indicator, territory, period, limit=1):
        return self._matching(indicator, territory, period)[:limit]

    def fetch_results_for_territories(self, indicator, territories, period, limit=None):
        rows = [r for r in self._matching(indicator, period=period) if r["pais"] in territories]
        return rows[:limit] if limit is not None else rows

    def fetch_historical_results(self, indicator, territory, limit=10):
        rows = sorted(self._matching(indicator, territory), key=lambda r: r["periodo"] or 0)
        return rows[:limit]

    def count_results(self, indicator, territory=None):
        return len(self._matching(indicator, territory))


def result(indicator, pais, periodo, valor):
    return {"nombre_indicador": indicator, "pais": pais, "periodo": periodo, "valor_calculado": valor}


def indicator(nombre, sub, activo=None):
    return {
        "nombre": nombre,
        "nombre_subdimension": sub,
        "importancia": "Alta",
        "formula": f"{nombre} / total",
        "fuente": "INE",
        "origen_indicador": "Encuesta",
        "activo": activo,
    }


@pytest.fixture
def infra_source():
    """
    'Infraestructura Digital' with two subdimensions of two indicators each.
    Only indicator A has a value for Comunitat Valenciana.
    """
    return FakeSource(
        dimensions=[
            {"nombre": "Capital Humano", "peso": 0.2},
            {"nombre": "Infraestructura Digital", "peso": 0.3},
        ],
        subdimensions=[
            {"nombre": "Conectividad", "nombre_dimension": "Infraestructura Digital", "peso": 0.5},
            {"nombre": "Redes 5G", "nombre_dimension": "Infraestructura Digital", "peso": 0.5},
            {"nombre": "Educación Digital", "nombre_dimension": "Capital Humano", "peso": 1.0},
        ],
        indicators=[
            indicator("A", "Conectividad"),
            indicator("B", "Conectividad"),
            indicator("C", "Redes 5G"),
            indicator("D", "Redes 5G"),
            indicator("E", "Educación Digital", activo=False),
        ],
        results=[
            result("A", "Comunitat Valenciana", 2024, 80),
            result("A", "España", 2024, 70),
            result("A", "Alemania", 2024, 90),
            result("A", "Francia", 2024, 60),
            result("C", "España", 2022, 50),
            result("E", "España", 2023, 40),
        ],
    )


@pytest.fixture
def aggregator_for():
    def build(source):
        return IndexAggregator(source, max_workers=4)

    return build


class FakeResponse:
    def __init__(self, status_code=200, payload=None, headers=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    """Records GET calls; `handler(url, params, headers)` builds each response."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": dict(headers or {}), "timeout": timeout})
        return self.handler(url, params or {}, headers or {})
