from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

import pandas as pd

from cenw_analysis.config import ID_COL, WAVE1_COL, WAVE2_COL

logger = logging.getLogger(__name__)


class WaveParticipation(str, Enum):
    ONLY_W1 = "only_w1"
    ONLY_W2 = "only_w2"
    BOTH = "both"
    NEITHER = "neither"
    UNKNOWN = "unknown"


_BY_PAIR = {
    (1, 0): WaveParticipation.ONLY_W1,
    (0, 1): WaveParticipation.ONLY_W2,
    (1, 1): WaveParticipation.BOTH,
    (0, 0): WaveParticipation.NEITHER,
}


@dataclass(frozen=True)
class InvariantViolation:
    """A study-design rule the data breaks. Reported, never raised."""
    kind: str
    message: str
    count: int = 0


@dataclass
class WaveMatchResult:
    participation: pd.Series
    counts: Dict[WaveParticipation, int]
    crosstab: pd.DataFrame
    both_cohort: pd.DataFrame
    violations: List[InvariantViolation] = field(default_factory=list)

    @property
    def total(self) -> int:
        return int(len(self.participation))

    def count(self, category: WaveParticipation) -> int:
        return self.counts.get(category, 0)


def _indicator(value: Any) -> int | None:
    """0 or 1 when the cell holds exactly that value, otherwise None."""
    if value is None or isinstance(value, str):
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        return None
    if value == 1:
        return 1
    if value == 0:
        return 0
    return None


def classify_participation(w1: Any, w2: Any) -> WaveParticipation:
    pair = (_indicator(w1), _indicator(w2))
    return _BY_PAIR.get(pair, WaveParticipation.UNKNOWN)


def match_waves(
    df: pd.DataFrame,
    w1_col: str = WAVE1_COL,
    w2_col: str = WAVE2_COL,
    id_col: str = ID_COL,
) -> WaveMatchResult:
    """
    Partition participants by the W1/W2 indicator pair.

    Every row lands in exactly one of only_w1, only_w2, both, neither or
    unknown (indicator missing or not exactly 0/1). 'neither' rows, 'unknown'
    rows, absent indicator columns and duplicate ids are reported as
    violations; downstream statistics only use the 'both' cohort.
    """
    violations: List[InvariantViolation] = []

    missing_cols = [c for c in (w1_col, w2_col) if c not in df.columns]
    if missing_cols:
        msg = f"Wave indicator column(s) {missing_cols} not found; all participants are unclassified."
        logger.warning(msg)
        violations.append(InvariantViolation("missing_indicator", msg, int(len(df))))
        participation = pd.Series(WaveParticipation.UNKNOWN, index=df.index, dtype=object, name="participation")
    else:
        participation = pd.Series(
            [classify_participation(a, b) for a, b in zip(df[w1_col], df[w2_col])],
            index=df.index,
            dtype=object,
            name="participation",
        )

    counts = {cat: int((participation == cat).sum()) for cat in WaveParticipation}

    if counts[WaveParticipation.NEITHER] > 0:
        msg = (
            f"{counts[WaveParticipation.NEITHER]} participant(s) have W1=0 and W2=0; "
            "every participant should have completed at least one wave."
        )
        logger.warning(msg)
        violations.append(InvariantViolation("neither_wave", msg, counts[WaveParticipation.NEITHER]))

    if counts[WaveParticipation.UNKNOWN] > 0 and not missing_cols:
        msg = (
            f"{counts[WaveParticipation.UNKNOWN]} participant(s) have a missing or non-binary "
            f"{w1_col}/{w2_col} value."
        )
        logger.warning(msg)
        violations.append(InvariantViolation("non_binary_indicator", msg, counts[WaveParticipation.UNKNOWN]))

    if id_col in df.columns:
        dupes = df[id_col].dropna()
        n_dupes = int(dupes.duplicated(keep=False).sum())
        if n_dupes:
            msg = f"{n_dupes} row(s) share a participant id ({id_col}) with another row."
            logger.warning(msg)
            violations.append(InvariantViolation("duplicate_id", msg, n_dupes))

    crosstab = pd.DataFrame(
        [
            [counts[WaveParticipation.NEITHER], counts[WaveParticipation.ONLY_W2]],
            [counts[WaveParticipation.ONLY_W1], counts[WaveParticipation.BOTH]],
        ],
        index=pd.Index([f"{w1_col}=0", f"{w1_col}=1"], name=w1_col),
        columns=pd.Index([f"{w2_col}=0", f"{w2_col}=1"], name=w2_col),
    )

    both_cohort = df[participation == WaveParticipation.BOTH].copy()

    logger.info(
        "Wave participation: only_w1=%d only_w2=%d both=%d neither=%d unknown=%d",
        counts[WaveParticipation.ONLY_W1],
        counts[WaveParticipation.ONLY_W2],
        counts[WaveParticipation.BOTH],
        counts[WaveParticipation.NEITHER],
        counts[WaveParticipation.UNKNOWN],
    )

    return WaveMatchResult(
        participation=participation,
        counts=counts,
        crosstab=crosstab,
        both_cohort=both_cohort,
        violations=violations,
    )
