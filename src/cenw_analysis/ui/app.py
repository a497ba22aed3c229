from __future__ import annotations

import time
import traceback
from pathlib import Path
from typing import Optional

import pandas as pd
import streamlit as st

from cenw_analysis.config import (
    APP_NAME,
    APP_VERSION,
    CODEBOOK_PATH,
    CODED_DATASET_STEM,
    DEFAULT_INPUT_PATH,
    REPORT_STEM,
)
from cenw_analysis.core.codebook import CodebookError
from cenw_analysis.core.data_loader import (
    SUPPORTED_SUFFIXES,
    DataLoaderError,
    labels_as_text,
    load_uploaded_table,
    stamped_name,
    timed_load_table,
)
from cenw_analysis.core.descriptives import summaries_frame
from cenw_analysis.core.pipeline import PipelineResult, resolve_codebook, run_pipeline
from cenw_analysis.core.report import comparisons_frame
from cenw_analysis.core.waves import WaveParticipation

RESULT_KEY = "pipeline_result"


def _render_load_panel() -> None:
    with st.expander("Load raw data", expanded=True):
        col1, col2 = st.columns(2)
        with col1:
            path_str = st.text_input("Path to raw export (.sav, .xlsx, .csv):", value=str(DEFAULT_INPUT_PATH))
        with col2:
            upload = st.file_uploader("...or upload a file", type=[s.lstrip(".") for s in SUPPORTED_SUFFIXES])

        codebook_str = st.text_input(
            "CODEBOOK workbook (optional, empty = built-in Corona & Welzijn codebook):",
            value=str(CODEBOOK_PATH) if CODEBOOK_PATH is not None else "",
        )
        min_items = st.number_input(
            "Minimum answered items per composite (0 = project default)",
            min_value=0,
            max_value=10,
            value=0,
            step=1,
        )

        if st.button("Run data preparation", key="run_pipeline_btn"):
            status = st.status("Loading data…", expanded=True)
            t0 = time.perf_counter()
            try:
                if upload is not None:
                    table, load_seconds = load_uploaded_table(upload.getvalue(), upload.name)
                else:
                    table, load_seconds = timed_load_table(Path(path_str.strip()))
                status.write(f"Loaded {table.frame.shape[0]} rows × {table.frame.shape[1]} columns in {load_seconds:0.2f}s")

                codebook = resolve_codebook(codebook_path=codebook_str.strip() or None)
                status.update(label="Recoding, scoring and comparing waves…", state="running")
                result = run_pipeline(
                    table.frame,
                    codebook=codebook,
                    labelled=table.labelled_columns,
                    min_items=int(min_items) or None,
                    column_labels=table.column_labels,
                )
                st.session_state[RESULT_KEY] = result
                status.update(label=f"Done in {time.perf_counter() - t0:0.2f}s.", state="complete")

            except DataLoaderError as err:
                status.update(label="Loading failed.", state="error")
                st.error(f"Could not load data: {err}")

            except CodebookError as err:
                status.update(label="Codebook rejected.", state="error")
                st.error(f"Could not use the codebook: {err}")

            except Exception as e:
                status.update(label="Unexpected error.", state="error")
                st.error("Unexpected error while preparing the data.")
                st.code(repr(e))
                st.text_area("Traceback", value=traceback.format_exc(), height=280)


def _render_participation(result: PipelineResult) -> None:
    with st.expander("Wave participation", expanded=True):
        counts = result.waves.counts
        cols = st.columns(5)
        for col, cat in zip(cols, WaveParticipation):
            col.metric(cat.value, counts.get(cat, 0))
        st.dataframe(result.waves.crosstab, use_container_width=True)
        for v in result.waves.violations:
            st.warning(f"[{v.kind}] {v.message}")


def _render_recoding(result: PipelineResult) -> None:
    with st.expander("Recoding diagnostics", expanded=False):
        st.write(
            f"Unmapped values: {result.recode.unmapped_total}; "
            f"declared missing: {result.recode.declared_missing_total}; "
            f"codebook variables not in table: {len(result.recode.missing_inputs)}"
        )
        st.dataframe(result.recode.diagnostics_frame(), use_container_width=True)

        rows = [
            {
                "Scale": c.name,
                "Items": f"{c.n_items_present}/{c.n_items_declared}",
                "Min items": c.min_items,
                "Scored": c.n_scored,
                "Missing": c.n_missing,
                "Mean": c.mean,
            }
            for c in result.composites.summaries
        ]
        st.write("Composite scores:")
        st.dataframe(pd.DataFrame(rows), use_container_width=True)


def _render_comparisons(result: PipelineResult) -> None:
    with st.expander("W1 / W2 consistency", expanded=True):
        summary = result.report
        st.write(
            f"{len(summary.comparisons)} variables measured in both waves; "
            f"cohort of {summary.cohort_size} participants."
        )
        st.dataframe(comparisons_frame(summary, ranked=True), use_container_width=True)

        col1, col2, col3 = st.columns(3)
        with col1:
            st.write("100% identical:")
            st.write([c.variable_name for c in summary.stable] or "none")
        with col2:
            st.write("Below 50% identical:")
            st.write([f"{c.variable_name} ({c.percent_identical}%)" for c in summary.unstable] or "none")
        with col3:
            st.write("Not computable:")
            st.write([c.variable_name for c in summary.not_computable] or "none")

        for check in result.trait_checks:
            if check.consistent:
                st.success(f"{check.variable_name}: consistent for all {check.n_compared} participants.")
                continue
            st.warning(f"{check.variable_name}: differs between waves for {check.n_different} participant(s).")
            listed = check.listed()
            if listed:
                st.dataframe(
                    pd.DataFrame(
                        [
                            {"Participant": d.participant_id, "W1": d.value_w1, "W2": d.value_w2, "Difference": d.difference}
                            for d in listed
                        ]
                    ),
                    use_container_width=True,
                )


def _render_descriptives(result: PipelineResult) -> None:
    with st.expander("Descriptive statistics", expanded=False):
        d = result.descriptives
        if d.summaries:
            st.dataframe(summaries_frame(d), use_container_width=True)
        cols = st.columns(max(1, min(4, len(d.frequencies))))
        for i, table in enumerate(d.frequencies):
            with cols[i % len(cols)]:
                st.write(f"{table.variable}:")
                rows = [{"Level": level, "N": n} for level, n in table.counts]
                rows.append({"Level": "<missing>", "N": table.n_missing})
                st.dataframe(pd.DataFrame(rows), use_container_width=True)


def _render_downloads(result: PipelineResult) -> None:
    with st.expander("Downloads", expanded=False):
        coded_csv = labels_as_text(result.coded).to_csv(index=False).encode("utf-8")
        st.download_button(
            "Coded dataset (CSV)",
            data=coded_csv,
            file_name=stamped_name(CODED_DATASET_STEM, "csv"),
            mime="text/csv",
        )
        st.download_button(
            "Report (text)",
            data=result.report_text().encode("utf-8"),
            file_name=stamped_name(REPORT_STEM, "txt"),
            mime="text/plain",
        )
        st.text_area("Report preview", value=result.report_text(), height=400)


def run_app() -> None:
    st.set_page_config(page_title=APP_NAME, page_icon="📊", layout="wide")
    st.title(APP_NAME)
    st.caption(f"Version {APP_VERSION}")

    _render_load_panel()

    result: Optional[PipelineResult] = st.session_state.get(RESULT_KEY)
    if result is None:
        st.info("Load a raw export to see the report.")
        return

    _render_participation(result)
    _render_comparisons(result)
    _render_descriptives(result)
    _render_recoding(result)
    _render_downloads(result)
