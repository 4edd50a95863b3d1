import io

import pandas as pd

from brainnova.core.export import export_filename, indicators_to_csv, indicators_to_frame
from brainnova.core.models import IndicatorWithData


def _indicator(nombre, valor, periodo, activo):
    return IndicatorWithData(
        nombre=nombre,
        nombre_subdimension="Conectividad",
        dimension="Infraestructura Digital",
        subdimension="Conectividad",
        importancia="Alta",
        formula="hogares con fibra / hogares",
        fuente="INE",
        origen_indicador="Encuesta TIC",
        ultimo_valor=valor,
        ultimo_periodo=periodo,
        total_resultados=3 if valor is not None else 0,
        activo=activo,
    )


def test_frame_has_spanish_headers_in_order():
    df = indicators_to_frame([_indicator("Fibra", 81.5, 2024, True)])
    assert list(df.columns) == [
        "Indicador",
        "Dimensión",
        "Subdimensión",
        "Fórmula",
        "Importancia",
        "Fuente",
        "Origen",
        "Último valor",
        "Último periodo",
        "Total resultados",
        "Activo",
    ]
    assert df.loc[0, "Activo"] == "Sí"


def test_csv_round_trips_missing_values():
    data = indicators_to_csv([_indicator("Fibra", 81.5, 2024, True), _indicator("5G", None, None, False)])
    df = pd.read_csv(io.BytesIO(data))

    assert df["Indicador"].tolist() == ["Fibra", "5G"]
    assert df.loc[0, "Último periodo"] == 2024
    assert pd.isna(df.loc[1, "Último valor"])
    assert df.loc[1, "Activo"] == "No"


def test_empty_export_keeps_headers():
    data = indicators_to_csv([])
    assert data.decode("utf-8").startswith("Indicador,Dimensión")


def test_export_filename():
    assert export_filename("todos-indicadores") == "todos-indicadores.csv"
    assert export_filename("Capital Humano") == "Capital-Humano.csv"
    assert export_filename("") == "indicadores.csv"
