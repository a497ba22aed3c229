from __future__ import annotations

import logging
import tempfile
import time
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd
import pyreadstat

from cenw_analysis.config import CODED_DATASET_STEM, DATE_STAMP_FORMAT, REPORT_STEM
from cenw_analysis.core.codebook import LIKERT_ITEM, NOMINAL, ORDINAL, RATIO, Codebook
from cenw_analysis.core.recoder import label_codes

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".sav", ".xlsx", ".xls", ".csv")
OUTPUT_FORMATS = ("csv", "xlsx", "sav")


class DataLoaderError(Exception):
    """Raised when an input table cannot be read or an output cannot be written."""


@dataclass
class LoadedTable:
    frame: pd.DataFrame
    source: Path
    # SPSS metadata; empty for Excel/CSV sources
    value_labels: Dict[str, Dict[Any, str]] = field(default_factory=dict)
    column_labels: Dict[str, str] = field(default_factory=dict)

    @property
    def labelled_columns(self) -> List[str]:
        return [c for c, labels in self.value_labels.items() if labels]


def load_table(path: Path | str) -> LoadedTable:
    """
    Read a raw survey export into a DataFrame.

    Supported:
      - .sav         via pyreadstat (codes kept numeric, value labels returned separately)
      - .xlsx / .xls via pandas.read_excel (first sheet)
      - .csv         via pandas.read_csv
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise DataLoaderError(f"Unsupported input format {suffix!r} for {path}. Expected one of {SUPPORTED_SUFFIXES}.")
    if not path.exists():
        raise DataLoaderError(f"Input file not found: {path}")

    logger.info("Loading raw data: %s", path)
    try:
        if suffix == ".sav":
            df, meta = pyreadstat.read_sav(str(path))
            table = LoadedTable(
                frame=df,
                source=path,
                value_labels=dict(getattr(meta, "variable_value_labels", {}) or {}),
                column_labels=dict(getattr(meta, "column_names_to_labels", {}) or {}),
            )
        elif suffix in (".xlsx", ".xls"):
            table = LoadedTable(frame=pd.read_excel(path), source=path)
        else:
            table = LoadedTable(frame=pd.read_csv(path), source=path)
    except Exception as exc:
        raise DataLoaderError(f"Could not read {path}: {exc}") from exc

    logger.info("Loaded %d rows x %d columns from %s", table.frame.shape[0], table.frame.shape[1], path.name)
    return table


def timed_load_table(path: Path | str) -> Tuple[LoadedTable, float]:
    """
    Convenience helper for UI timing logs.
    """
    t0 = time.perf_counter()
    table = load_table(path)
    return table, (time.perf_counter() - t0)


def load_uploaded_table(data: bytes, filename: str) -> Tuple[LoadedTable, float]:
    """
    Load an in-memory upload (e.g. a Streamlit UploadedFile buffer).

    pyreadstat only reads from a path, so the bytes go through a temporary
    file that is removed once the table is loaded.
    """
    suffix = Path(filename).suffix.lower()
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as fh:
        fh.write(data)
        tmp_path = Path(fh.name)
    try:
        table, seconds = timed_load_table(tmp_path)
    finally:
        tmp_path.unlink(missing_ok=True)
    table.source = Path(filename)
    return table, seconds


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------

def stamped_name(stem: str, suffix: str, stamp_date: Optional[date] = None) -> str:
    stamp = (stamp_date or date.today()).strftime(DATE_STAMP_FORMAT)
    return f"{stamp}_{stem}.{suffix.lstrip('.')}"


def labels_as_text(frame: pd.DataFrame) -> pd.DataFrame:
    """Categorical columns become plain label text (missing stays missing)."""
    out = frame.copy()
    for col in out.columns:
        if isinstance(out[col].dtype, pd.CategoricalDtype):
            out[col] = out[col].astype(object).where(out[col].notna(), None)
    return out


_MEASURE_BY_KIND = {NOMINAL: "nominal", ORDINAL: "ordinal", LIKERT_ITEM: "ordinal", RATIO: "scale"}


def _spss_frame(
    frame: pd.DataFrame,
    codebook: Optional[Codebook],
) -> Tuple[pd.DataFrame, Dict[str, Dict[float, str]], Dict[str, str]]:
    """
    Turn labelled categoricals back into numeric codes plus SPSS value labels.

    Columns declared in the codebook get their original codes; any other
    categorical is numbered 1..k in category order. The measure map is keyed
    by column ({'W1_Geslacht': 'nominal', 'W1_Leeftijd': 'scale', ...}).
    """
    out = frame.copy()
    value_labels: Dict[str, Dict[float, str]] = {}
    measure: Dict[str, str] = {}
    by_output = codebook.by_output_name() if codebook is not None else {}
    declared_labels = label_codes(codebook) if codebook is not None else {}

    for col in out.columns:
        series = out[col]
        entry = by_output.get(col)
        if entry is not None:
            measure[col] = _MEASURE_BY_KIND[entry.kind]

        if not isinstance(series.dtype, pd.CategoricalDtype):
            if entry is None and pd.api.types.is_numeric_dtype(series.dtype):
                measure[col] = "scale"
            continue

        if col in declared_labels:
            codes_by_label = {label: code for code, label in declared_labels[col].items()}
            out[col] = series.astype(object).map(codes_by_label).astype(float)
            value_labels[col] = declared_labels[col]
        else:
            codes = series.cat.codes.astype(float)
            out[col] = codes.where(codes >= 0) + 1
            value_labels[col] = {float(i + 1): str(c) for i, c in enumerate(series.cat.categories)}
            measure[col] = "ordinal" if series.cat.ordered else "nominal"

    return out, value_labels, measure


def write_coded_dataset(
    frame: pd.DataFrame,
    output_dir: Path | str,
    stem: str = CODED_DATASET_STEM,
    formats: Sequence[str] = OUTPUT_FORMATS,
    stamp_date: Optional[date] = None,
    codebook: Optional[Codebook] = None,
    column_labels: Optional[Dict[str, str]] = None,
) -> Dict[str, Path]:
    """
    Save the coded dataset as '<date>_<stem>.<ext>' in each requested format.

    CSV and Excel carry label text; SPSS carries codes with value labels.
    Returns {format: path}.
    """
    unknown = [f for f in formats if f not in OUTPUT_FORMATS]
    if unknown:
        raise DataLoaderError(f"Unknown output format(s) {unknown}. Expected any of {OUTPUT_FORMATS}.")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written: Dict[str, Path] = {}

    for fmt in formats:
        target = output_dir / stamped_name(stem, fmt, stamp_date)
        try:
            if fmt == "csv":
                labels_as_text(frame).to_csv(target, index=False)
            elif fmt == "xlsx":
                labels_as_text(frame).to_excel(target, index=False, engine="openpyxl")
            else:
                spss, value_labels, measure = _spss_frame(frame, codebook)
                labels = [(column_labels or {}).get(c) or "" for c in spss.columns] if column_labels else None
                pyreadstat.write_sav(
                    spss,
                    str(target),
                    column_labels=labels,
                    variable_value_labels=value_labels,
                    variable_measure=measure or None,
                )
        except Exception as exc:
            raise DataLoaderError(f"Could not write {target}: {exc}") from exc

        logger.info("Wrote coded dataset: %s", target)
        written[fmt] = target

    return written


def write_report(
    text: str,
    table: pd.DataFrame,
    output_dir: Path | str,
    stem: str = REPORT_STEM,
    stamp_date: Optional[date] = None,
) -> Dict[str, Path]:
    """Save the text report and its comparison table next to the coded data."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    txt_path = output_dir / stamped_name(stem, "txt", stamp_date)
    csv_path = output_dir / stamped_name(stem, "csv", stamp_date)
    txt_path.write_text(text, encoding="utf-8")
    table.to_csv(csv_path, index=False)

    logger.info("Wrote report: %s", txt_path)
    return {"txt": txt_path, "csv": csv_path}
