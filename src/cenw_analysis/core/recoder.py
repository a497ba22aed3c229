from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from cenw_analysis.core.codebook import RATIO, Codebook, CodebookEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VariableDiagnostics:
    """
    Data-quality counters for one recoded variable.

    declared_missing counts empty cells and declared sentinel codes;
    unmapped counts values that were present but outside the codebook.
    Both end up missing in the output, but only unmapped values point at
    a coding problem.
    """
    raw_name: str
    output_name: str
    n_total: int
    n_valid: int
    declared_missing: int
    unmapped: int
    unmapped_values: Tuple[Any, ...] = ()


@dataclass
class RecodeResult:
    frame: pd.DataFrame
    diagnostics: List[VariableDiagnostics] = field(default_factory=list)
    missing_inputs: List[str] = field(default_factory=list)
    # derived columns that replaced a column already present in the raw table
    overwritten: List[str] = field(default_factory=list)

    @property
    def unmapped_total(self) -> int:
        return sum(d.unmapped for d in self.diagnostics)

    @property
    def declared_missing_total(self) -> int:
        return sum(d.declared_missing for d in self.diagnostics)

    def with_unmapped(self) -> List[VariableDiagnostics]:
        return [d for d in self.diagnostics if d.unmapped > 0]

    def diagnostics_frame(self) -> pd.DataFrame:
        rows = [
            {
                "variable": d.raw_name,
                "output": d.output_name,
                "n": d.n_total,
                "valid": d.n_valid,
                "declared_missing": d.declared_missing,
                "unmapped": d.unmapped,
                "unmapped_values": ", ".join(str(v) for v in d.unmapped_values),
            }
            for d in self.diagnostics
        ]
        return pd.DataFrame(
            rows,
            columns=["variable", "output", "n", "valid", "declared_missing", "unmapped", "unmapped_values"],
        )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _split_missing(series: pd.Series, entry: CodebookEntry) -> Tuple[pd.Series, pd.Series, pd.Series]:
    """
    Returns (numeric, declared_missing_mask, non_numeric_mask).

    Raw cells are coerced to numbers the way SPSS/Excel exports store codes
    (1 and 1.0 are the same answer).
    """
    numeric = pd.to_numeric(series, errors="coerce")
    absent = series.isna()
    declared_missing = absent
    if entry.missing_codes:
        declared_missing = declared_missing | numeric.isin(entry.missing_codes)
    non_numeric = ~absent & numeric.isna()
    return numeric, declared_missing, non_numeric


def _unique_values(values: pd.Series) -> Tuple[Any, ...]:
    return tuple(sorted(pd.unique(values), key=str))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def numeric_codes(series: pd.Series, entry: Optional[CodebookEntry] = None) -> pd.Series:
    """
    The original numeric codes of a column, with missing and unmapped values as NaN.

    Composite scores average these codes, never the labels.
    """
    numeric = pd.to_numeric(series, errors="coerce").astype(float)
    if entry is None:
        return numeric

    if entry.missing_codes:
        numeric = numeric.mask(numeric.isin(entry.missing_codes))
    if entry.kind != RATIO:
        numeric = numeric.where(numeric.isin(list(entry.code_to_label())))
    return numeric


def recode_series(series: pd.Series, entry: CodebookEntry) -> Tuple[pd.Series, VariableDiagnostics]:
    """
    Apply one codebook entry to a raw column.

    - categorical kinds -> pandas Categorical over the declared labels
    - ratio             -> float, passed through entry.transform when declared

    The input series is left untouched.
    """
    numeric, declared_missing, non_numeric = _split_missing(series, entry)

    if entry.kind == RATIO:
        values = numeric.mask(declared_missing).astype(float)
        unmapped_mask = non_numeric
        if entry.transform is not None:
            present = values.notna()
            values = values.copy()
            values.loc[present] = values.loc[present].map(entry.transform)
        out = values.rename(entry.output_name)
    else:
        labels = numeric.mask(declared_missing).map(entry.code_to_label())
        unmapped_mask = ~declared_missing & labels.isna()
        out = pd.Series(
            pd.Categorical(labels, categories=entry.labels, ordered=entry.ordered),
            index=series.index,
            name=entry.output_name,
        )

    n_unmapped = int(unmapped_mask.sum())
    n_missing = int(declared_missing.sum())
    diag = VariableDiagnostics(
        raw_name=entry.raw_name,
        output_name=entry.output_name,
        n_total=int(len(series)),
        n_valid=int(len(series)) - n_missing - n_unmapped,
        declared_missing=n_missing,
        unmapped=n_unmapped,
        unmapped_values=_unique_values(series[unmapped_mask]) if n_unmapped else (),
    )

    if n_unmapped:
        logger.warning(
            "%s: %d value(s) outside the codebook treated as missing: %s",
            entry.raw_name,
            n_unmapped,
            list(diag.unmapped_values),
        )

    return out, diag


def recode_table(raw_df: pd.DataFrame, codebook: Codebook) -> RecodeResult:
    """
    Recode every codebook variable present in raw_df.

    Returns a new frame: recoded columns replace their raw column (or are added
    under target_name), all other columns pass through unchanged. Variables
    declared in the codebook but absent from the table are listed in
    missing_inputs and skipped.
    """
    frame = raw_df.copy()
    diagnostics: List[VariableDiagnostics] = []
    missing_inputs: List[str] = []
    overwritten: List[str] = []

    for entry in codebook:
        if entry.raw_name not in raw_df.columns:
            missing_inputs.append(entry.raw_name)
            continue
        if entry.output_name != entry.raw_name and entry.output_name in raw_df.columns:
            logger.warning(
                "%s: derived column %s already exists in the table and is replaced.",
                entry.raw_name,
                entry.output_name,
            )
            overwritten.append(entry.output_name)

        recoded, diag = recode_series(raw_df[entry.raw_name], entry)
        frame[entry.output_name] = recoded
        diagnostics.append(diag)

    if missing_inputs:
        logger.info(
            "Skipped %d codebook variable(s) absent from the table (e.g. %s).",
            len(missing_inputs),
            missing_inputs[:5],
        )
    logger.info(
        "Recoded %d variables (%d unmapped values, %d declared missing).",
        len(diagnostics),
        sum(d.unmapped for d in diagnostics),
        sum(d.declared_missing for d in diagnostics),
    )

    return RecodeResult(
        frame=frame,
        diagnostics=diagnostics,
        missing_inputs=missing_inputs,
        overwritten=overwritten,
    )


def label_codes(codebook: Codebook) -> Dict[str, Dict[float, str]]:
    """Output column -> {code: label}, for writers that store codes plus value labels."""
    return {e.output_name: e.code_to_label() for e in codebook if e.is_categorical}
