"""
Tests for cenw_analysis/core/report.py
"""

import numpy as np
import pandas as pd

from cenw_analysis.core.consistency import check_fixed_traits, compare_common_variables
from cenw_analysis.core.descriptives import describe_coded
from cenw_analysis.core.recoder import RecodeResult
from cenw_analysis.core.report import (
    COMPARISON_COLUMNS,
    NOT_APPLICABLE,
    build_report,
    comparisons_frame,
    group_by_topic,
    naming_breakdown,
    render_text_report,
)
from cenw_analysis.core.waves import match_waves


def _summary():
    df = pd.DataFrame(
        {
            "Nummer": [1, 2, 3, 4],
            "W1": [1, 1, 1, 0],
            "W2": [1, 1, 0, 0],
            "W1_Geslacht": [0, 1, 1, 0],
            "W2_Geslacht": [0, 1, np.nan, np.nan],
            "W1_Stress": [1, 4, 2, 2],
            "W2_Stress": [2, 1, 3, 3],
            "W1_Leeg": [np.nan, np.nan, 1, 1],
            "W2_Leeg": [1, np.nan, np.nan, np.nan],
            "W1_Sport": [2, 3, 1, 1],
            "W2_Sport": [2, 1, 1, 1],
        }
    )
    waves = match_waves(df)
    comparisons = compare_common_variables(waves.both_cohort)
    return build_report(df.columns, waves, comparisons)


def test_naming_breakdown_splits_by_prefix():
    """W1_/W2_ columns are wave-specific; everything else is 'other'."""
    n = naming_breakdown(["Nummer", "W1", "W1_A", "W2_A", "W2_B"])
    assert n.wave1 == ["W1_A"]
    assert n.wave2 == ["W2_A", "W2_B"]
    assert n.other == ["Nummer", "W1"]


def test_buckets_keep_not_computable_apart():
    """A variable nobody answered twice is neither stable nor unstable."""
    summary = _summary()

    assert [c.variable_name for c in summary.stable] == ["Geslacht"]
    assert [c.variable_name for c in summary.unstable] == ["Stress"]
    assert [c.variable_name for c in summary.not_computable] == ["Leeg"]
    assert [c.variable_name for c in summary.ranked] == ["Geslacht", "Sport", "Stress"]
    assert summary.cohort_size == 2
    assert summary.n_participants == 4


def test_text_report_shows_na_and_not_computable_section():
    """Undefined statistics render as N/A and get their own list."""
    text = render_text_report(_summary())

    assert text.startswith("CORONA & WELZIJN - DATA PREPARATION REPORT")
    assert "Not computable (no participant answered in both waves):" in text
    assert "- Leeg" in text
    assert f"Correlation: {NOT_APPLICABLE}" in text
    assert "!! STUDY DESIGN VIOLATIONS !!" in text
    assert "[neither_wave]" in text


def test_text_report_flags_changed_demographics():
    """A fixed trait that is not 100% identical is called out."""
    df = pd.DataFrame(
        {
            "W1": [1, 1],
            "W2": [1, 1],
            "W1_Geslacht": [0, 1],
            "W2_Geslacht": [0, 0],
        }
    )
    waves = match_waves(df)
    summary = build_report(df.columns, waves, compare_common_variables(waves.both_cohort))

    assert "Demographics that should not change differ between waves" in render_text_report(summary)


def test_comparisons_frame_columns_and_missing_statistics():
    """The exported table has fixed columns and leaves undefined values empty."""
    frame = comparisons_frame(_summary())

    assert list(frame.columns) == COMPARISON_COLUMNS
    assert list(frame["Variable"]) == ["Geslacht", "Stress", "Leeg", "Sport"]
    leeg = frame.set_index("Variable").loc["Leeg"]
    assert pd.isna(leeg["Percent_Identical"])
    assert leeg["Stability"] == "not_computable"


def test_comparisons_frame_ranked_puts_not_computable_last():
    frame = comparisons_frame(_summary(), ranked=True)
    assert list(frame["Variable"]) == ["Geslacht", "Sport", "Stress", "Leeg"]


def test_comparisons_frame_empty_summary():
    """A dataset without shared variables yields an empty table with headers."""
    df = pd.DataFrame({"W1": [1], "W2": [1]})
    waves = match_waves(df)
    frame = comparisons_frame(build_report(df.columns, waves, []))

    assert frame.empty
    assert list(frame.columns) == COMPARISON_COLUMNS


def test_group_by_topic_uses_names_and_labels():
    """A column can join several topics; empty topics are left out."""
    columns = ["Nummer", "W1_Geslacht", "W1_Angst1", "W2_Partner_Stress", "W1_Q7"]
    labels = {"W1_Geslacht": "Gender of respondent", "W1_Q7": "Anxiety about the future"}
    groups = {g.topic: g.variables for g in group_by_topic(columns, labels)}

    assert list(groups) == ["DEMOGRAPHIC", "PSYCHOLOGICAL", "RELATIONSHIP"]
    assert groups["DEMOGRAPHIC"] == (("W1_Geslacht", "Gender of respondent"),)
    assert groups["PSYCHOLOGICAL"] == (
        ("W1_Angst1", None),
        ("W2_Partner_Stress", None),
        ("W1_Q7", "Anxiety about the future"),
    )
    assert groups["RELATIONSHIP"] == (("W2_Partner_Stress", None),)


def test_text_report_lists_topics_with_preview():
    columns = [f"W1_Angst{i}" for i in range(1, 8)]
    waves = match_waves(pd.DataFrame({"Nummer": [1], "W1": [1], "W2": [1]}))
    text = render_text_report(build_report(columns, waves, [], column_labels={"W1_Angst1": "Nervous"}))

    assert "PSYCHOLOGICAL VARIABLES (7)" in text
    assert "- W1_Angst1: Nervous" in text
    assert "- W1_Angst2: (no label available)" in text
    assert "W1_Angst6" not in text
    assert "... and 2 more variables" in text


def test_text_report_demographics_and_descriptives():
    df = pd.DataFrame(
        {
            "Nummer": [1, 2, 3],
            "W1": [1, 1, 1],
            "W2": [1, 1, 1],
            "W1_Gebjaar": [1990, 2000, 1980],
            "W2_Gebjaar": [1990, 2001, 1980],
            "W1_Diploma": [1, 2, 3],
            "W2_Diploma": [1, 3, 3],
        }
    )
    waves = match_waves(df)
    comparisons = compare_common_variables(waves.both_cohort)
    descriptives = describe_coded(pd.DataFrame({"W1_Leeftijd": [34.0, 24.0, 44.0]}))
    summary = build_report(
        df.columns,
        waves,
        comparisons,
        descriptives=descriptives,
        trait_checks=check_fixed_traits(waves.both_cohort),
    )
    text = render_text_report(summary)

    assert "DEMOGRAPHIC CONSISTENCY" in text
    assert "Gebjaar: same in both waves 2, different 1 (of 3 compared)" in text
    assert "participant 2: W1=2000, W2=2001 (difference +1)" in text
    assert "Demographics that can legitimately change between waves:" in text
    assert "- W1_Diploma" in text and "- W2_Diploma" in text
    assert "DESCRIPTIVE STATISTICS" in text
    assert "W1_Leeftijd | 3 | 0 | 24 | 44 | 34 | 34 | 10" in text
    assert text.index("DESCRIPTIVE STATISTICS") < text.index("DEMOGRAPHIC CONSISTENCY")


def test_text_report_names_replaced_columns():
    waves = match_waves(pd.DataFrame({"Nummer": [1], "W1": [1], "W2": [0]}))
    recode = RecodeResult(frame=pd.DataFrame(), diagnostics=[], missing_inputs=[], overwritten=["W1_Leeftijd"])
    summary = build_report(["W1_Gebjaar", "W1_Leeftijd"], waves, [], recode=recode)

    assert summary.overwritten_columns == ["W1_Leeftijd"]
    assert "Existing columns replaced by derived values: W1_Leeftijd" in render_text_report(summary)
