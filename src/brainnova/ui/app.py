from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
import plotly.express as px
import streamlit as st

from brainnova.config import (
    APP_NAME,
    APP_VERSION,
    CACHE_MAX_ENTRIES,
    CACHE_TTL_SECONDS,
    DEFAULT_PERIOD,
    DEFAULT_TERRITORY,
    LOG_LEVEL,
    REFERENCE_OPTIONS,
    TERRITORY_OPTIONS,
    YEAR_OPTIONS,
)
from brainnova.core.cache import QueryCache
from brainnova.core.data_loader import SupabaseSource
from brainnova.core.export import export_filename, indicators_to_csv
from brainnova.core.formatters import format_value, normalized_value
from brainnova.core.models import IndicatorWithData
from brainnova.core.query_engine import IndexAggregator, filter_indicators, score_from_subdimensions

logger = logging.getLogger(__name__)

PAGES = ["Dimensiones", "Detalle de dimensión", "Todos los indicadores"]
ALL_DIMENSIONS = "Todas las dimensiones"
ALL_SUBDIMENSIONS = "Todas las subdimensiones"

BRAND_COLOR = "#0c6c8b"

DIMENSION_INFO: Dict[str, str] = {
    "Transformación Digital Empresarial": (
        "Grado de adopción de tecnologías digitales en el tejido empresarial valenciano: "
        "ERP, CRM, Big Data, Cloud Computing y comercio electrónico."
    ),
    "Capital Humano": "Disponibilidad y cualificación del talento digital en la región.",
    "Infraestructura Digital": "Calidad y penetración de redes de conectividad.",
    "Ecosistema y Colaboración": "Cooperación entre agentes del ecosistema digital.",
    "Emprendimiento e Innovación": "Ecosistema de apoyo a startups y proyectos innovadores.",
    "Servicios Públicos Digitales": "Digitalización y accesibilidad de servicios públicos.",
    "Sostenibilidad Digital": "Impacto ambiental y eficiencia energética de la transformación digital.",
}


# ---------------------------------------------------------------------------
# Session services
# ---------------------------------------------------------------------------

def _services() -> Dict[str, Any]:
    if "brainnova_services" not in st.session_state:
        source = SupabaseSource()
        st.session_state["brainnova_services"] = {
            "source": source,
            "aggregator": IndexAggregator(source),
            "cache": QueryCache(ttl_seconds=CACHE_TTL_SECONDS, max_entries=CACHE_MAX_ENTRIES),
        }
    return st.session_state["brainnova_services"]


def _aggregator() -> IndexAggregator:
    return _services()["aggregator"]


def _cached(fn: Callable[..., Any], *args: Any) -> Any:
    cache: QueryCache = _services()["cache"]
    return cache.get_or_compute(fn, *args)


# ---------------------------------------------------------------------------
# Sidebar / filters
# ---------------------------------------------------------------------------

def _render_sidebar() -> Dict[str, Any]:
    with st.sidebar:
        st.markdown("### BRAINNOVA\nEconomía Digital")
        page = st.radio("Sección", options=PAGES, key="page")

        st.divider()
        territory = st.selectbox("Territorio", options=TERRITORY_OPTIONS, index=TERRITORY_OPTIONS.index(DEFAULT_TERRITORY))
        period = st.selectbox("Año", options=YEAR_OPTIONS, index=YEAR_OPTIONS.index(DEFAULT_PERIOD))
        reference = st.selectbox("Referencia", options=REFERENCE_OPTIONS, index=0)
        view = st.radio("Vista", options=["Tabla", "Gráfico"], horizontal=True)

        st.divider()
        if st.button("Actualizar datos"):
            removed = _services()["cache"].invalidate()
            logger.info("Cache cleared (%d entries)", removed)

        st.caption(f"Versión {APP_VERSION}")

    return {"page": page, "territory": territory, "period": int(period), "reference": reference, "view": view}


def _warn_if_unconfigured() -> bool:
    source: SupabaseSource = _services()["source"]
    if not source.configured:
        st.warning("Backend not configured: set SUPABASE_URL and SUPABASE_ANON_KEY.")
        return False
    return True


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

def _render_dimensions_page(state: Dict[str, Any]) -> None:
    agg = _aggregator()
    st.header("Dimensiones")
    st.write("Las dimensiones del índice BRAINNOVA con su puntuación para el territorio y año seleccionados.")

    dimensions = _cached(agg.list_dimensions)
    indicators: List[IndicatorWithData] = _cached(agg.list_indicators_with_data)

    if not dimensions:
        st.info("0 dimensiones")
        return

    for dim in dimensions:
        # shares the cache entry the detail page reads
        subs = _cached(agg.subdimension_scores, dim.nombre, state["territory"], state["period"])
        score = score_from_subdimensions(subs)
        dim_indicators = [i for i in indicators if i.dimension == dim.nombre]
        with_data = sum(1 for i in dim_indicators if i.has_data)

        with st.container(border=True):
            left, right = st.columns([3, 1])
            with left:
                st.subheader(dim.nombre)
                st.write(DIMENSION_INFO.get(dim.nombre, "Información detallada de la dimensión."))
                st.caption(f"Peso: {dim.peso:g} · {len(dim_indicators)} indicadores ({with_data} con datos)")
            with right:
                st.metric("Score", score)
                st.progress(min(100, max(0, score)))

            with st.expander("Ver indicadores"):
                if not dim_indicators:
                    st.write("0 indicadores")
                else:
                    st.dataframe(_indicator_table(dim_indicators), use_container_width=True, hide_index=True)


def _render_dimension_detail_page(state: Dict[str, Any]) -> None:
    agg = _aggregator()
    dimensions = _cached(agg.list_dimensions)
    names = [d.nombre for d in dimensions]
    if not names:
        st.header("Dimensión no encontrada")
        return

    dimension = st.selectbox("Dimensión", options=names, key="detail_dimension")
    st.header(dimension)
    st.write(DIMENSION_INFO.get(dimension, "Información detallada de la dimensión."))

    subs = _cached(agg.subdimension_scores, dimension, state["territory"], state["period"])
    score = score_from_subdimensions(subs)

    c1, c2 = st.columns(2)
    c1.metric(f"Score {state['territory']} ({state['period']})", score)
    c2.metric("Subdimensiones", len(subs))

    reference_col = "UE" if state["reference"] == "Media UE" else "España"
    territory_col = state["territory"] if state["territory"] != "España" else "España (seleccionado)"
    rows = [
        {
            "Subdimensión": s.nombre,
            territory_col: round(s.score, 1),
            "España": round(s.espana, 1),
            "UE": round(s.ue, 1),
            "Indicadores": s.indicadores,
        }
        for s in subs
    ]
    df = pd.DataFrame(rows)

    st.subheader("Subdimensiones")
    if df.empty:
        st.write("0 subdimensiones")
    elif state["view"] == "Gráfico":
        long_df = df.melt(
            id_vars=["Subdimensión"], value_vars=[territory_col, "España", "UE"], var_name="Territorio", value_name="Score"
        )
        fig = px.bar(long_df, x="Subdimensión", y="Score", color="Territorio", barmode="group", range_y=[0, 100])
        st.plotly_chart(fig, use_container_width=True)
    else:
        df["Diferencia vs referencia"] = (df[territory_col] - df[reference_col]).round(1)
        st.dataframe(df, use_container_width=True, hide_index=True)

    st.subheader("Distribución de indicadores")
    dist = _cached(agg.indicator_distribution, dimension)
    dist_df = pd.DataFrame([{"Subdimensión": d.nombre, "Indicadores": d.total_indicadores, "%": d.porcentaje} for d in dist])
    if dist_df.empty:
        st.write("0 indicadores")
    else:
        st.plotly_chart(px.pie(dist_df, names="Subdimensión", values="Indicadores"), use_container_width=True)

    st.subheader("Cobertura de datos")
    coverage = _cached(agg.subdimension_coverage, dimension, "España")
    st.dataframe(
        pd.DataFrame(
            [
                {"Subdimensión": c.subdimension, "Indicadores": c.total_indicadores, "Con datos (España)": c.indicadores_con_datos}
                for c in coverage
            ]
        ),
        use_container_width=True,
        hide_index=True,
    )


def _indicator_table(indicators: List[IndicatorWithData], sparklines: Optional[Dict[str, Any]] = None) -> pd.DataFrame:
    rows = []
    for ind in indicators:
        row = {
            "Indicador": ind.nombre,
            "Subdimensión": ind.subdimension,
            "Fórmula": ind.formula or "—",
            "Dimensión": ind.dimension or "—",
            "Valor actual": format_value(ind.ultimo_valor),
            "Normalizado": normalized_value(ind.ultimo_valor),
            "Tendencia": "↗" if ind.has_data else "→",
        }
        if sparklines is not None:
            row["Evolución"] = [p.valor for p in sparklines.get(ind.nombre, [])]
        rows.append(row)
    return pd.DataFrame(rows)


def _render_indicators_page(state: Dict[str, Any]) -> None:
    agg = _aggregator()
    st.header("Todos los Indicadores")
    st.write(
        "Repositorio completo de todos los indicadores del Sistema BRAINNOVA. Filtra por dimensión, "
        "subdimensión o busca por nombre para encontrar métricas específicas."
    )

    indicators: List[IndicatorWithData] = _cached(agg.list_indicators_with_data)
    dimensions = _cached(agg.list_dimensions)

    col_search, col_dim, col_sub = st.columns([2, 1, 1])
    with col_search:
        search = st.text_input("Buscar indicador...", value="")
    with col_dim:
        dim_choice = st.selectbox("Dimensión", options=[ALL_DIMENSIONS] + [d.nombre for d in dimensions])
    dimension = None if dim_choice == ALL_DIMENSIONS else dim_choice

    subs = _cached(agg.list_subdimensions, dimension)
    with col_sub:
        sub_choice = st.selectbox("Subdimensión", options=[ALL_SUBDIMENSIONS] + [s.nombre for s in subs])
    subdimension = None if sub_choice == ALL_SUBDIMENSIONS else sub_choice

    filtered = filter_indicators(indicators, search=search, dimension=dimension, subdimension=subdimension)

    st.download_button(
        "Exportar datos",
        data=indicators_to_csv(filtered),
        file_name=export_filename("todos-indicadores"),
        mime="text/csv",
    )
    st.caption(f"Mostrando {len(filtered)} de {len(indicators)} indicadores")

    if not filtered:
        st.write("0 indicadores")
        return

    names = tuple(i.nombre for i in filtered)
    sparklines = _cached(agg.sparkline_series, names, state["territory"])

    if state["view"] == "Gráfico":
        chart_df = pd.DataFrame(
            [{"Indicador": i.nombre, "Normalizado": normalized_value(i.ultimo_valor)} for i in filtered if i.has_data]
        )
        if chart_df.empty:
            st.write("Sin valores para representar.")
        else:
            fig = px.bar(chart_df, x="Normalizado", y="Indicador", orientation="h", range_x=[0, 100])
            fig.update_traces(marker_color=BRAND_COLOR)
            st.plotly_chart(fig, use_container_width=True)
        return

    st.dataframe(
        _indicator_table(filtered, sparklines),
        use_container_width=True,
        hide_index=True,
        column_config={
            "Normalizado": st.column_config.ProgressColumn("Normalizado", min_value=0, max_value=100, format="%.0f"),
            "Evolución": st.column_config.LineChartColumn("Evolución"),
        },
    )


def run_app() -> None:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    st.set_page_config(page_title=APP_NAME, page_icon="📊", layout="wide")
    st.title(APP_NAME)

    state = _render_sidebar()
    if not _warn_if_unconfigured():
        return

    if state["page"] == "Dimensiones":
        _render_dimensions_page(state)
    elif state["page"] == "Detalle de dimensión":
        _render_dimension_detail_page(state)
    else:
        _render_indicators_page(state)
