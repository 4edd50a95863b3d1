from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class Dimension:
    nombre: str
    peso: float
    id: str  # slug of nombre, used in URLs and widget keys


@dataclass
class Subdimension:
    nombre: str
    nombre_dimension: str
    peso: float


@dataclass
class Indicator:
    """
    A row of definicion_indicadores.

    `activo` is None when the backend does not expose the column at all.
    """
    nombre: str
    nombre_subdimension: str
    importancia: Optional[str] = None
    formula: Optional[str] = None
    fuente: Optional[str] = None
    origen_indicador: Optional[str] = None
    activo: Optional[bool] = None


@dataclass
class IndicatorWithData:
    """
    An indicator definition joined with its owning dimension and the
    summary of its stored results.
    """
    nombre: str
    nombre_subdimension: str
    dimension: str
    subdimension: str
    importancia: Optional[str]
    formula: Optional[str]
    fuente: Optional[str]
    origen_indicador: Optional[str]
    ultimo_valor: Optional[float]
    ultimo_periodo: Optional[int]
    total_resultados: int
    activo: bool

    @property
    def has_data(self) -> bool:
        return self.ultimo_valor is not None


@dataclass
class HistoricalPoint:
    periodo: int
    valor: float


@dataclass
class SubdimensionScore:
    nombre: str
    score: float      # requested territory
    espana: float     # national reference
    ue: float         # EU peer average
    indicadores: int  # number of indicator definitions


@dataclass
class DistributionEntry:
    nombre: str
    total_indicadores: int
    porcentaje: int


@dataclass
class SubdimensionCoverage:
    subdimension: str
    total_indicadores: int
    indicadores_con_datos: int
