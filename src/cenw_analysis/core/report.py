from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from cenw_analysis.config import WAVE_PREFIXES
from cenw_analysis.core.composite import CompositeResult, CompositeSummary
from cenw_analysis.core.consistency import (
    CHANGEABLE_DEMOGRAPHICS,
    FIXED_TRAITS,
    MAX_LISTED_DISCREPANCIES,
    MODERATE,
    NOT_COMPUTABLE,
    STABLE,
    UNSTABLE,
    TraitCheck,
    VariableComparison,
    rank_by_stability,
)
from cenw_analysis.core.descriptives import Descriptives
from cenw_analysis.core.recoder import RecodeResult, VariableDiagnostics
from cenw_analysis.core.waves import InvariantViolation, WaveMatchResult, WaveParticipation

NOT_APPLICABLE = "N/A"

# Topic -> name pattern, matched case-insensitively; a variable can sit in several topics
TOPIC_PATTERNS: Tuple[Tuple[str, str], ...] = (
    ("DEMOGRAPHIC", r"Geslacht|Gender|Gebjaar|Age|Leeftijd|Diploma|Education|Opleiding|Nationaliteit"),
    ("PSYCHOLOGICAL", r"Angst|Anxiety|Depressie|Depression|Stress|Eenz|Loneliness"),
    ("RELATIONSHIP", r"QMI|Relatie|Relationship|Partner"),
    ("TECHNOLOGY/DIGITAL", r"ICT|Digital|DIGDEP|CIUS|Smartphone|Phubbing"),
)

TOPIC_PREVIEW = 5


@dataclass
class NamingBreakdown:
    wave1: List[str]
    wave2: List[str]
    other: List[str]


@dataclass(frozen=True)
class TopicGroup:
    topic: str
    # (column, SPSS variable label or None)
    variables: Tuple[Tuple[str, Optional[str]], ...]


@dataclass
class ReportSummary:
    """
    Everything the text report and the exported tables are rendered from.

    Built by folding the stage outputs together; nothing here is recomputed.
    """
    n_participants: int
    naming: NamingBreakdown

    participation: Dict[WaveParticipation, int]
    crosstab: pd.DataFrame
    violations: List[InvariantViolation]

    comparisons: List[VariableComparison]
    ranked: List[VariableComparison]
    stable: List[VariableComparison]
    unstable: List[VariableComparison]
    not_computable: List[VariableComparison]

    recode_diagnostics: List[VariableDiagnostics] = field(default_factory=list)
    missing_inputs: List[str] = field(default_factory=list)
    overwritten_columns: List[str] = field(default_factory=list)
    composites: List[CompositeSummary] = field(default_factory=list)
    skipped_composites: List[str] = field(default_factory=list)

    topics: List[TopicGroup] = field(default_factory=list)
    descriptives: Descriptives = field(default_factory=Descriptives)
    trait_checks: List[TraitCheck] = field(default_factory=list)
    changeable: List[Tuple[str, Optional[str]]] = field(default_factory=list)

    @property
    def cohort_size(self) -> int:
        return self.participation.get(WaveParticipation.BOTH, 0)

    @property
    def unmapped_total(self) -> int:
        return sum(d.unmapped for d in self.recode_diagnostics)

    @property
    def declared_missing_total(self) -> int:
        return sum(d.declared_missing for d in self.recode_diagnostics)


def naming_breakdown(columns: Iterable[str]) -> NamingBreakdown:
    w1_prefix, w2_prefix = WAVE_PREFIXES
    cols = [str(c) for c in columns]
    return NamingBreakdown(
        wave1=[c for c in cols if c.startswith(w1_prefix)],
        wave2=[c for c in cols if c.startswith(w2_prefix)],
        other=[c for c in cols if not c.startswith(WAVE_PREFIXES)],
    )


def group_by_topic(
    columns: Iterable[str],
    column_labels: Optional[Dict[str, str]] = None,
) -> List[TopicGroup]:
    """Wave variables grouped by topic; a name or SPSS variable label matching the pattern joins the group."""
    labels = column_labels or {}
    cols = [str(c) for c in columns if str(c).startswith(WAVE_PREFIXES)]
    groups: List[TopicGroup] = []
    for topic, pattern in TOPIC_PATTERNS:
        rx = re.compile(pattern, re.IGNORECASE)
        matched = tuple((c, labels.get(c) or None) for c in cols if rx.search(c) or rx.search(labels.get(c) or ""))
        if matched:
            groups.append(TopicGroup(topic, matched))
    return groups


def _changeable_present(
    columns: Iterable[str],
    column_labels: Optional[Dict[str, str]] = None,
) -> List[Tuple[str, Optional[str]]]:
    labels = column_labels or {}
    present = {str(c) for c in columns}
    return [
        (p + base, labels.get(p + base) or None)
        for base in CHANGEABLE_DEMOGRAPHICS
        for p in WAVE_PREFIXES
        if p + base in present
    ]


def build_report(
    columns: Iterable[str],
    waves: WaveMatchResult,
    comparisons: List[VariableComparison],
    recode: Optional[RecodeResult] = None,
    composites: Optional[CompositeResult] = None,
    descriptives: Optional[Descriptives] = None,
    trait_checks: Optional[List[TraitCheck]] = None,
    column_labels: Optional[Dict[str, str]] = None,
) -> ReportSummary:
    columns = list(columns)
    ranked = rank_by_stability(comparisons)
    return ReportSummary(
        n_participants=waves.total,
        naming=naming_breakdown(columns),
        participation=dict(waves.counts),
        crosstab=waves.crosstab,
        violations=list(waves.violations),
        comparisons=list(comparisons),
        ranked=ranked,
        stable=[c for c in ranked if c.stability == STABLE],
        unstable=[c for c in ranked if c.stability == UNSTABLE],
        not_computable=[c for c in comparisons if c.stability == NOT_COMPUTABLE],
        recode_diagnostics=list(recode.diagnostics) if recode is not None else [],
        missing_inputs=list(recode.missing_inputs) if recode is not None else [],
        overwritten_columns=list(recode.overwritten) if recode is not None else [],
        composites=list(composites.summaries) if composites is not None else [],
        skipped_composites=list(composites.skipped) if composites is not None else [],
        topics=group_by_topic(columns, column_labels),
        descriptives=descriptives if descriptives is not None else Descriptives(),
        trait_checks=list(trait_checks or []),
        changeable=_changeable_present(columns, column_labels),
    )


# ---------------------------------------------------------------------------
# Tabular form
# ---------------------------------------------------------------------------

COMPARISON_COLUMNS = [
    "Variable",
    "W1_Variable",
    "W2_Variable",
    "Valid_Cases",
    "Identical_Count",
    "Percent_Identical",
    "Correlation",
    "Mean_W1",
    "Mean_W2",
    "Variable_Type",
    "Stability",
]


def comparisons_frame(summary: ReportSummary, ranked: bool = False) -> pd.DataFrame:
    """One row per compared variable; undefined statistics stay empty."""
    source = summary.ranked + summary.not_computable if ranked else summary.comparisons
    rows = [
        [
            c.variable_name,
            c.w1_variable,
            c.w2_variable,
            c.valid_case_count,
            c.identical_count,
            c.percent_identical,
            c.correlation,
            c.mean_w1,
            c.mean_w2,
            c.value_kind,
            c.stability,
        ]
        for c in source
    ]
    return pd.DataFrame(rows, columns=COMPARISON_COLUMNS).astype(
        {"Percent_Identical": "Float64", "Correlation": "Float64", "Mean_W1": "Float64", "Mean_W2": "Float64"}
    )


# ---------------------------------------------------------------------------
# Text form
# ---------------------------------------------------------------------------

def _fmt(value: Optional[float]) -> str:
    return NOT_APPLICABLE if value is None else f"{value:g}"


def _rule(title: str, char: str = "=") -> List[str]:
    return ["", title, char * len(title)]


def _render_naming(summary: ReportSummary) -> List[str]:
    n = summary.naming
    lines = _rule("VARIABLE NAMING")
    lines.append(f"Participants (rows): {summary.n_participants}")
    lines.append(f"Wave 1 variables (W1_*): {len(n.wave1)}")
    lines.append(f"Wave 2 variables (W2_*): {len(n.wave2)}")
    lines.append(f"Other variables: {len(n.other)}" + (f" ({', '.join(n.other)})" if n.other else ""))

    for group in summary.topics:
        lines.append("")
        lines.append(f"{group.topic} VARIABLES ({len(group.variables)})")
        for name, label in group.variables[:TOPIC_PREVIEW]:
            lines.append(f"- {name}: {label or '(no label available)'}")
        if len(group.variables) > TOPIC_PREVIEW:
            lines.append(f"... and {len(group.variables) - TOPIC_PREVIEW} more variables")
    return lines


def _render_descriptives(summary: ReportSummary) -> List[str]:
    d = summary.descriptives
    lines = _rule("DESCRIPTIVE STATISTICS")
    if not d.frequencies and not d.summaries:
        lines.append("No key variables found in the coded table.")
        return lines

    for table in d.frequencies:
        lines.append(f"{table.variable}:")
        for level, n in table.counts:
            lines.append(f"  {level}: {n}")
        lines.append(f"  <missing>: {table.n_missing}")

    if d.summaries:
        lines.append("")
        lines.append("Variable | N | Missing | Min | Max | Mean | Median | SD")
        for s in d.summaries:
            stats = " | ".join(_fmt(v) for v in (s.minimum, s.maximum, s.mean, s.median, s.sd))
            lines.append(f"{s.variable} | {s.n} | {s.n_missing} | {stats}")
    return lines


def _render_demographics(summary: ReportSummary) -> List[str]:
    lines = _rule("DEMOGRAPHIC CONSISTENCY")
    if not summary.trait_checks:
        lines.append("No fixed traits measured in both waves.")
    for check in summary.trait_checks:
        lines.append(
            f"{check.variable_name}: same in both waves {check.n_same}, "
            f"different {check.n_different} (of {check.n_compared} compared)"
        )
        listed = check.listed()
        for d in listed:
            lines.append(
                f"  - participant {d.participant_id}: W1={d.value_w1:g}, W2={d.value_w2:g} "
                f"(difference {d.difference:+g})"
            )
        if check.n_different > MAX_LISTED_DISCREPANCIES:
            lines.append(f"  More than {MAX_LISTED_DISCREPANCIES} differences; see the coded data.")

    if summary.changeable:
        lines.append("")
        lines.append("Demographics that can legitimately change between waves:")
        for name, label in summary.changeable:
            lines.append(f"- {name}" + (f": {label}" if label else ""))
    return lines


def _render_participation(summary: ReportSummary) -> List[str]:
    p = summary.participation
    ct = summary.crosstab
    lines = _rule("WAVE PARTICIPATION")
    width = max(len(str(v)) for v in ct.to_numpy().ravel()) if ct.size else 1
    width = max(width, 6)
    lines.append(" " * 8 + "".join(str(c).rjust(width + 2) for c in ct.columns))
    for idx, row in ct.iterrows():
        lines.append(str(idx).ljust(8) + "".join(str(int(v)).rjust(width + 2) for v in row))
    lines.append("")
    lines.append(f"Only Wave 1: {p.get(WaveParticipation.ONLY_W1, 0)}")
    lines.append(f"Only Wave 2: {p.get(WaveParticipation.ONLY_W2, 0)}")
    lines.append(f"Both waves:  {p.get(WaveParticipation.BOTH, 0)} (longitudinal cohort)")
    lines.append(f"Neither:     {p.get(WaveParticipation.NEITHER, 0)}")
    lines.append(f"Unknown:     {p.get(WaveParticipation.UNKNOWN, 0)}")

    if summary.violations:
        lines.append("")
        lines.append("!! STUDY DESIGN VIOLATIONS !!")
        for v in summary.violations:
            lines.append(f"- [{v.kind}] {v.message}")
    return lines


def _render_recoding(summary: ReportSummary) -> List[str]:
    lines = _rule("RECODING DIAGNOSTICS")
    lines.append(f"Variables recoded: {len(summary.recode_diagnostics)}")
    lines.append(f"Declared missing values: {summary.declared_missing_total}")
    lines.append(f"Values outside the codebook (set to missing): {summary.unmapped_total}")
    for d in summary.recode_diagnostics:
        if d.unmapped:
            values = ", ".join(str(v) for v in d.unmapped_values)
            lines.append(f"- {d.raw_name}: {d.unmapped} unmapped ({values})")
    if summary.missing_inputs:
        lines.append(f"Codebook variables not in the table (skipped): {len(summary.missing_inputs)}")
    if summary.overwritten_columns:
        lines.append(f"Existing columns replaced by derived values: {', '.join(summary.overwritten_columns)}")
    return lines


def _render_composites(summary: ReportSummary) -> List[str]:
    lines = _rule("COMPOSITE SCORES")
    if not summary.composites:
        lines.append("No composite scores computed.")
    for c in summary.composites:
        lines.append(
            f"- {c.name}: scored {c.n_scored}, missing {c.n_missing} "
            f"(min {c.min_items} of {c.n_items_declared} items), mean {_fmt(c.mean)}"
        )
    if summary.skipped_composites:
        lines.append(f"Skipped (no items in table): {', '.join(summary.skipped_composites)}")
    return lines


def _render_comparisons(summary: ReportSummary) -> List[str]:
    lines = _rule("W1 / W2 COMPARISON")
    lines.append(
        f"{len(summary.comparisons)} variables measured in both waves, "
        f"{summary.cohort_size} participants in both waves."
    )
    for c in summary.comparisons:
        lines.append("")
        lines.append(f"{c.variable_name}:")
        lines.append(f"  W1 variable: {c.w1_variable}")
        lines.append(f"  W2 variable: {c.w2_variable}")
        lines.append(f"  Valid cases: {c.valid_case_count}")
        pct = NOT_APPLICABLE if c.percent_identical is None else f"{c.percent_identical}%"
        lines.append(f"  Identical values: {c.identical_count} ({pct})")
        lines.append(f"  Correlation: {_fmt(c.correlation)}")
        lines.append(f"  W1 mean: {_fmt(c.mean_w1)}")
        lines.append(f"  W2 mean: {_fmt(c.mean_w2)}")
        lines.append(f"  Variable type: {c.value_kind}")
    return lines


def _render_ranking(summary: ReportSummary, top_n: int) -> List[str]:
    lines = _rule("MOST STABLE VARIABLES (highest % identical)")
    for i, c in enumerate(summary.ranked[:top_n], start=1):
        lines.append(f"{i}. {c.variable_name} ({c.percent_identical}% identical)")
    if not summary.ranked:
        lines.append("No computable comparisons.")

    lines.append("")
    lines.append("Variables with 100% identical values (should not change, confirms measurement stability):")
    if summary.stable:
        lines.extend(f"- {c.variable_name}" for c in summary.stable)
    else:
        lines.append("No variables have 100% identical values.")

    lines.append("")
    lines.append("Variables below 50% identical (investigate true change vs. measurement/coding error):")
    if summary.unstable:
        lines.extend(f"- {c.variable_name} ({c.percent_identical}% identical)" for c in summary.unstable)
    else:
        lines.append("All computable variables have at least 50% identical values.")

    if summary.not_computable:
        lines.append("")
        lines.append("Not computable (no participant answered in both waves):")
        lines.extend(f"- {c.variable_name}" for c in summary.not_computable)
    return lines


def _render_interpretation(summary: ReportSummary) -> List[str]:
    lines = _rule("INTERPRETATION")
    moderate = [c for c in summary.ranked if c.stability == MODERATE]
    lines.append(
        f"{len(summary.stable)} stable, {len(moderate)} moderately stable, "
        f"{len(summary.unstable)} unstable and {len(summary.not_computable)} not computable variables."
    )
    fixed_unstable = [c for c in summary.ranked if c.stability != STABLE and c.variable_name in FIXED_TRAITS]
    if fixed_unstable:
        names = ", ".join(c.variable_name for c in fixed_unstable)
        lines.append(
            f"Demographics that should not change differ between waves for some participants ({names}): "
            "check for data entry errors or a different respondent."
        )
    if summary.unstable:
        lines.append(
            "Low agreement can reflect true change over the pandemic (mood, stress, relationship status) "
            "or coding differences between the two questionnaires."
        )
    if summary.unmapped_total:
        lines.append(f"{summary.unmapped_total} raw values fell outside the codebook; review the codes listed above.")
    if any(v.kind == "neither_wave" for v in summary.violations):
        lines.append("Participants in neither wave violate the study design and were left out of all comparisons.")
    return lines


def render_text_report(summary: ReportSummary, top_n: int = 10) -> str:
    lines: List[str] = ["CORONA & WELZIJN - DATA PREPARATION REPORT"]
    lines += _render_naming(summary)
    lines += _render_participation(summary)
    lines += _render_recoding(summary)
    lines += _render_descriptives(summary)
    lines += _render_composites(summary)
    lines += _render_comparisons(summary)
    lines += _render_demographics(summary)
    lines += _render_ranking(summary, top_n)
    lines += _render_interpretation(summary)
    return "\n".join(lines) + "\n"
