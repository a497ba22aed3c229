from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from cenw_analysis.config import ID_COL, STABLE_THRESHOLD, UNSTABLE_THRESHOLD
from cenw_analysis.core.codebook import Codebook

logger = logging.getLogger(__name__)

CATEGORICAL = "categorical"
NUMERIC = "numeric"

# Stability buckets
STABLE = "stable"
MODERATE = "moderate"
UNSTABLE = "unstable"
NOT_COMPUTABLE = "not_computable"

STABILITY_NOTES = {
    STABLE: "should not change, confirms measurement stability",
    MODERATE: "partly stable",
    UNSTABLE: "high instability - investigate true change vs. measurement/coding error",
    NOT_COMPUTABLE: "no participant answered in both waves; not computable",
}

_WAVE_VAR = re.compile(r"^W([12])_(.+)$")


@dataclass(frozen=True)
class VariableComparison:
    """
    Agreement between the Wave 1 and Wave 2 answers of one variable.

    Statistics that cannot be computed are None, never 0:
      - percent_identical / means when no case has both answers
      - correlation when either side has fewer than two distinct values
    """
    variable_name: str
    w1_variable: str
    w2_variable: str
    valid_case_count: int
    identical_count: int
    percent_identical: Optional[float]
    correlation: Optional[float]
    mean_w1: Optional[float]
    mean_w2: Optional[float]
    value_kind: str
    stability: str

    @property
    def computable(self) -> bool:
        return self.percent_identical is not None

    @property
    def note(self) -> str:
        return STABILITY_NOTES[self.stability]


def classify_stability(
    percent_identical: Optional[float],
    stable_threshold: float = STABLE_THRESHOLD,
    unstable_threshold: float = UNSTABLE_THRESHOLD,
) -> str:
    if percent_identical is None:
        return NOT_COMPUTABLE
    if percent_identical >= stable_threshold:
        return STABLE
    if percent_identical < unstable_threshold:
        return UNSTABLE
    return MODERATE


def _pearson(a: pd.Series, b: pd.Series) -> Optional[float]:
    if a.nunique() < 2 or b.nunique() < 2:
        return None
    r = float(np.corrcoef(a.to_numpy(dtype=float), b.to_numpy(dtype=float))[0, 1])
    if np.isnan(r):
        return None
    return round(r, 3)


def compare_variables(
    cohort: pd.DataFrame,
    var_w1: str,
    var_w2: str,
    value_kind: str = NUMERIC,
    variable_name: Optional[str] = None,
) -> VariableComparison:
    """
    Compare two same-concept columns over the cohort.

    Only rows where both columns hold a numeric value count as valid cases.
    Comparison is on raw numeric codes; swapping var_w1 and var_w2 leaves
    valid/identical counts and percent_identical unchanged.
    """
    name = variable_name or var_w1
    a = pd.to_numeric(cohort[var_w1], errors="coerce")
    b = pd.to_numeric(cohort[var_w2], errors="coerce")

    valid = a.notna() & b.notna()
    a, b = a[valid].astype(float), b[valid].astype(float)
    n_valid = int(valid.sum())

    if n_valid == 0:
        return VariableComparison(
            variable_name=name,
            w1_variable=var_w1,
            w2_variable=var_w2,
            valid_case_count=0,
            identical_count=0,
            percent_identical=None,
            correlation=None,
            mean_w1=None,
            mean_w2=None,
            value_kind=value_kind,
            stability=NOT_COMPUTABLE,
        )

    identical = int((a.to_numpy() == b.to_numpy()).sum())
    percent = round(identical / n_valid * 100, 1)

    return VariableComparison(
        variable_name=name,
        w1_variable=var_w1,
        w2_variable=var_w2,
        valid_case_count=n_valid,
        identical_count=identical,
        percent_identical=percent,
        correlation=_pearson(a, b),
        mean_w1=round(float(a.mean()), 2),
        mean_w2=round(float(b.mean()), 2),
        value_kind=value_kind,
        stability=classify_stability(percent),
    )


def common_wave_variables(columns: Iterable[str]) -> List[str]:
    """Base names present as both W1_<name> and W2_<name>, in Wave 1 column order."""
    w1: List[str] = []
    w2 = set()
    for col in columns:
        m = _WAVE_VAR.match(str(col))
        if not m:
            continue
        if m.group(1) == "1":
            w1.append(m.group(2))
        else:
            w2.add(m.group(2))
    return [base for base in w1 if base in w2]


def value_kind_for(
    base: str,
    codebook: Optional[Codebook] = None,
    labelled: Iterable[str] = (),
) -> str:
    """Categorical when either wave's column is a coded category or carries value labels."""
    labelled = set(labelled)
    for raw in (f"W1_{base}", f"W2_{base}"):
        if raw in labelled:
            return CATEGORICAL
        entry = codebook.get(raw) if codebook is not None else None
        if entry is not None and entry.is_categorical:
            return CATEGORICAL
    return NUMERIC


def compare_common_variables(
    cohort: pd.DataFrame,
    codebook: Optional[Codebook] = None,
    labelled: Iterable[str] = (),
) -> List[VariableComparison]:
    """Compare every variable measured in both waves, in declaration order."""
    labelled = list(labelled)
    common = common_wave_variables(cohort.columns)
    logger.info("Comparing %d variables measured in both waves over %d participants.", len(common), len(cohort))

    results = [
        compare_variables(
            cohort,
            f"W1_{base}",
            f"W2_{base}",
            value_kind=value_kind_for(base, codebook, labelled),
            variable_name=base,
        )
        for base in common
    ]

    not_computable = [c.variable_name for c in results if not c.computable]
    if not_computable:
        logger.warning("No valid paired cases for: %s", not_computable)
    return results


def rank_by_stability(comparisons: Sequence[VariableComparison]) -> List[VariableComparison]:
    """
    Computable comparisons, most stable first.

    sorted() is stable, so ties keep declaration order.
    """
    computable = [c for c in comparisons if c.computable]
    return sorted(computable, key=lambda c: -float(c.percent_identical))  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Per-participant checks of traits that cannot change between waves
# ---------------------------------------------------------------------------

FIXED_TRAITS = ("Geslacht", "Gebjaar", "Nationaliteit")

# Answers that may differ between waves without pointing at an error
CHANGEABLE_DEMOGRAPHICS = ("Diploma", "Burg_staat", "Relatiestatus", "Leefsit")

MAX_LISTED_DISCREPANCIES = 10


@dataclass(frozen=True)
class TraitDiscrepancy:
    participant_id: Any
    value_w1: float
    value_w2: float

    @property
    def difference(self) -> float:
        return self.value_w2 - self.value_w1


@dataclass(frozen=True)
class TraitCheck:
    """
    W1 vs W2 answers of one fixed trait over the both-waves cohort.

    discrepancies holds every participant whose answers differ; the report
    only lists them when there are at most MAX_LISTED_DISCREPANCIES.
    """
    variable_name: str
    n_compared: int
    n_same: int
    discrepancies: Tuple[TraitDiscrepancy, ...] = ()

    @property
    def n_different(self) -> int:
        return len(self.discrepancies)

    @property
    def consistent(self) -> bool:
        return not self.discrepancies

    def listed(self, max_listed: int = MAX_LISTED_DISCREPANCIES) -> Tuple[TraitDiscrepancy, ...]:
        return self.discrepancies if self.n_different <= max_listed else ()


def check_fixed_trait(cohort: pd.DataFrame, base: str, id_col: str = ID_COL) -> Optional[TraitCheck]:
    """None when the trait is not measured in both waves."""
    var_w1, var_w2 = f"W1_{base}", f"W2_{base}"
    if var_w1 not in cohort.columns or var_w2 not in cohort.columns:
        return None

    a = pd.to_numeric(cohort[var_w1], errors="coerce")
    b = pd.to_numeric(cohort[var_w2], errors="coerce")
    valid = a.notna() & b.notna()
    differs = valid & (a != b)

    ids = cohort[id_col] if id_col in cohort.columns else pd.Series(cohort.index, index=cohort.index)
    discrepancies = tuple(
        TraitDiscrepancy(participant_id=pid, value_w1=float(x), value_w2=float(y))
        for pid, x, y in zip(ids[differs], a[differs], b[differs])
    )

    check = TraitCheck(
        variable_name=base,
        n_compared=int(valid.sum()),
        n_same=int(valid.sum()) - len(discrepancies),
        discrepancies=discrepancies,
    )
    if discrepancies:
        logger.warning("%s differs between waves for %d participant(s).", base, len(discrepancies))
    return check


def check_fixed_traits(
    cohort: pd.DataFrame,
    traits: Sequence[str] = FIXED_TRAITS,
    id_col: str = ID_COL,
) -> List[TraitCheck]:
    checks = [check_fixed_trait(cohort, base, id_col=id_col) for base in traits]
    return [c for c in checks if c is not None]
