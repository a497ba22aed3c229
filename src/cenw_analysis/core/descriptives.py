from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from cenw_analysis.config import WAVE_PREFIXES
from cenw_analysis.core.composite import COMPOSITE_SUFFIX

logger = logging.getLogger(__name__)

# Key coded factors inspected after recoding
FREQUENCY_VARIABLES = ("Geslacht", "Diploma", "Gezondheid", "ACT")

# Ratio variables summarised as min/max/mean/median/SD
SUMMARY_VARIABLES = ("Leeftijd", "Soc_kap")

SUMMARY_COLUMNS = ["Variable", "N", "Missing", "Min", "Max", "Mean", "Median", "SD"]


@dataclass(frozen=True)
class FrequencyTable:
    """Counts per level; levels without answers are kept with 0."""
    variable: str
    counts: Tuple[Tuple[str, int], ...]
    n_missing: int

    @property
    def total(self) -> int:
        return sum(n for _, n in self.counts) + self.n_missing


@dataclass(frozen=True)
class NumericSummary:
    variable: str
    n: int
    n_missing: int
    minimum: Optional[float]
    maximum: Optional[float]
    mean: Optional[float]
    median: Optional[float]
    sd: Optional[float]


@dataclass
class Descriptives:
    frequencies: List[FrequencyTable] = field(default_factory=list)
    summaries: List[NumericSummary] = field(default_factory=list)


def frequency_table(series: pd.Series, variable: Optional[str] = None) -> FrequencyTable:
    """
    Frequencies of a coded column, missing counted separately.

    Categorical columns list every declared level in level order; other
    columns list the observed values in sorted order.
    """
    name = variable or str(series.name)
    if isinstance(series.dtype, pd.CategoricalDtype):
        counts = series.value_counts(sort=False, dropna=True)
    else:
        counts = series.value_counts(dropna=True).sort_index()
    return FrequencyTable(
        variable=name,
        counts=tuple((str(level), int(n)) for level, n in counts.items()),
        n_missing=int(series.isna().sum()),
    )


def numeric_summary(series: pd.Series, variable: Optional[str] = None) -> NumericSummary:
    """Min, max, mean, median and sample SD over the non-missing values, rounded to 2 decimals."""
    name = variable or str(series.name)
    values = pd.to_numeric(series, errors="coerce").dropna().astype(float)
    n = int(len(values))

    def _r(v: float) -> Optional[float]:
        return None if pd.isna(v) else round(float(v), 2)

    if n == 0:
        return NumericSummary(name, 0, int(len(series)), None, None, None, None, None)
    return NumericSummary(
        variable=name,
        n=n,
        n_missing=int(len(series)) - n,
        minimum=_r(values.min()),
        maximum=_r(values.max()),
        mean=_r(values.mean()),
        median=_r(values.median()),
        sd=_r(values.std(ddof=1)) if n > 1 else None,
    )


def _wave_columns(columns: Iterable[str], bases: Sequence[str], prefixes: Sequence[str]) -> List[str]:
    present = set(columns)
    return [p + b for b in bases for p in prefixes if p + b in present]


def describe_coded(
    coded: pd.DataFrame,
    frequency_vars: Sequence[str] = FREQUENCY_VARIABLES,
    summary_vars: Sequence[str] = SUMMARY_VARIABLES,
    prefixes: Sequence[str] = WAVE_PREFIXES,
) -> Descriptives:
    """
    Frequency tables for the key coded factors and a summary row for each
    ratio variable and composite score, for every wave the table carries.
    """
    freq_cols = _wave_columns(coded.columns, frequency_vars, prefixes)
    summary_cols = _wave_columns(coded.columns, summary_vars, prefixes)
    summary_cols += [c for c in coded.columns if str(c).endswith(COMPOSITE_SUFFIX) and c not in summary_cols]

    result = Descriptives(
        frequencies=[frequency_table(coded[c], c) for c in freq_cols],
        summaries=[numeric_summary(coded[c], c) for c in summary_cols],
    )
    logger.info(
        "Descriptives: %d frequency table(s), %d numeric summary row(s).",
        len(result.frequencies),
        len(result.summaries),
    )
    return result


def summaries_frame(descriptives: Descriptives) -> pd.DataFrame:
    rows = [
        [s.variable, s.n, s.n_missing, s.minimum, s.maximum, s.mean, s.median, s.sd]
        for s in descriptives.summaries
    ]
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS).astype(
        {c: "Float64" for c in ("Min", "Max", "Mean", "Median", "SD")}
    )
