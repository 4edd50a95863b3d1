from __future__ import annotations

import re
from typing import Sequence

import pandas as pd

from brainnova.core.models import IndicatorWithData

EXPORT_COLUMNS = {
    "nombre": "Indicador",
    "dimension": "Dimensión",
    "subdimension": "Subdimensión",
    "formula": "Fórmula",
    "importancia": "Importancia",
    "fuente": "Fuente",
    "origen_indicador": "Origen",
    "ultimo_valor": "Último valor",
    "ultimo_periodo": "Último periodo",
    "total_resultados": "Total resultados",
    "activo": "Activo",
}


def indicators_to_frame(indicators: Sequence[IndicatorWithData]) -> pd.DataFrame:
    """Indicator list as a table with the Spanish headers used in the export."""
    records = [{col: getattr(ind, col) for col in EXPORT_COLUMNS} for ind in indicators]
    df = pd.DataFrame.from_records(records, columns=list(EXPORT_COLUMNS))
    df["ultimo_periodo"] = pd.to_numeric(df["ultimo_periodo"], errors="coerce").astype("Int64")
    df["activo"] = df["activo"].map({True: "Sí", False: "No"})
    return df.rename(columns=EXPORT_COLUMNS)


def indicators_to_csv(indicators: Sequence[IndicatorWithData]) -> bytes:
    return indicators_to_frame(indicators).to_csv(index=False).encode("utf-8")


def export_filename(prefix: str) -> str:
    stem = re.sub(r"[^\w\-]+", "-", (prefix or "").strip(), flags=re.UNICODE).strip("-")
    return f"{stem or 'indicadores'}.csv"
