from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from cenw_analysis.config import COMPOSITE_MIN_ITEMS_RATIO
from cenw_analysis.core.codebook import Codebook
from cenw_analysis.core.recoder import numeric_codes

logger = logging.getLogger(__name__)

COMPOSITE_SUFFIX = "_Gem"


@dataclass(frozen=True)
class CompositeScale:
    """
    A multi-item scale scored as the mean of its items.

    min_items overrides the project-wide minimum number of answered items.
    """
    name: str
    items: Tuple[str, ...]
    min_items: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))
        if not self.items:
            raise ValueError(f"Scale {self.name} has no items.")
        if len(set(self.items)) != len(self.items):
            raise ValueError(f"Scale {self.name} lists an item more than once.")
        if self.min_items is not None and not 1 <= self.min_items <= len(self.items):
            raise ValueError(f"Scale {self.name}: min_items must be between 1 and {len(self.items)}.")


@dataclass(frozen=True)
class CompositeSummary:
    name: str
    n_items_declared: int
    n_items_present: int
    min_items: int
    n_scored: int
    n_missing: int
    mean: Optional[float]


@dataclass
class CompositeResult:
    frame: pd.DataFrame
    summaries: List[CompositeSummary] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def default_min_items(n_items: int, ratio: float = COMPOSITE_MIN_ITEMS_RATIO) -> int:
    """At least one item, at most all of them."""
    return min(n_items, max(1, math.ceil(ratio * n_items)))


def resolve_min_items(scale: CompositeScale, min_items: Optional[int] = None) -> int:
    if min_items is not None:
        return max(1, min(int(min_items), len(scale.items)))
    if scale.min_items is not None:
        return scale.min_items
    return default_min_items(len(scale.items))


def scales_from_codebook(codebook: Codebook) -> List[CompositeScale]:
    """One '<prefix>_Gem' scale per Likert template, e.g. W1_Corstress -> W1_Corstress_Gem."""
    return [
        CompositeScale(name=t.scale_name + COMPOSITE_SUFFIX, items=tuple(t.item_names))
        for t in codebook.templates
    ]


def score_composite(
    raw_df: pd.DataFrame,
    scale: CompositeScale,
    codebook: Optional[Codebook] = None,
    min_items: Optional[int] = None,
) -> pd.Series:
    """
    Mean of the answered items per participant.

    Items are averaged on their original codes; codes outside the codebook
    count as unanswered. A participant with fewer than the required number of
    answered items gets NaN, and so does one with no answered items at all.
    Item columns absent from raw_df count as unanswered for everyone.
    """
    required = resolve_min_items(scale, min_items)

    present = [c for c in scale.items if c in raw_df.columns]
    items = pd.DataFrame(
        {
            c: numeric_codes(raw_df[c], codebook.get(c) if codebook is not None else None)
            for c in present
        },
        index=raw_df.index,
    )

    answered = items.notna().sum(axis=1)
    means = items.mean(axis=1, skipna=True)
    return means.where(answered >= required).rename(scale.name)


def score_composites(
    raw_df: pd.DataFrame,
    scales: Sequence[CompositeScale],
    codebook: Optional[Codebook] = None,
    min_items: Optional[int] = None,
) -> CompositeResult:
    """
    Score every scale whose items occur in raw_df.

    Returns a frame with one column per scored scale (same index as raw_df).
    Scales without any item column in the table are skipped and reported.
    """
    columns: Dict[str, pd.Series] = {}
    summaries: List[CompositeSummary] = []
    skipped: List[str] = []

    for scale in scales:
        present = [c for c in scale.items if c in raw_df.columns]
        if not present:
            skipped.append(scale.name)
            continue
        absent = [c for c in scale.items if c not in raw_df.columns]
        if absent:
            logger.warning("%s: item column(s) %s not found; scored over the items present.", scale.name, absent)

        scores = score_composite(raw_df, scale, codebook=codebook, min_items=min_items)
        columns[scale.name] = scores

        n_scored = int(scores.notna().sum())
        summaries.append(
            CompositeSummary(
                name=scale.name,
                n_items_declared=len(scale.items),
                n_items_present=len(present),
                min_items=resolve_min_items(scale, min_items),
                n_scored=n_scored,
                n_missing=int(len(scores)) - n_scored,
                mean=round(float(scores.mean()), 2) if n_scored else None,
            )
        )

    if skipped:
        logger.info("Skipped %d composite(s) without item columns: %s", len(skipped), skipped)

    frame = pd.DataFrame(columns, index=raw_df.index)
    return CompositeResult(frame=frame, summaries=summaries, skipped=skipped)
