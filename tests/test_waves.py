"""
Tests for cenw_analysis/core/waves.py
"""

import numpy as np
import pandas as pd

from cenw_analysis.core.waves import WaveParticipation, classify_participation, match_waves


def _frame(w1, w2, ids=None):
    ids = ids if ids is not None else list(range(1, len(w1) + 1))
    return pd.DataFrame({"Nummer": ids, "W1": w1, "W2": w2, "W1_X": range(len(w1))})


def test_each_indicator_pair_lands_in_its_category():
    """Four participants, one per combination; the (0, 0) row is a violation."""
    result = match_waves(_frame([1, 1, 0, 0], [1, 0, 1, 0]))

    assert result.count(WaveParticipation.BOTH) == 1
    assert result.count(WaveParticipation.ONLY_W1) == 1
    assert result.count(WaveParticipation.ONLY_W2) == 1
    assert result.count(WaveParticipation.NEITHER) == 1
    assert [v.kind for v in result.violations] == ["neither_wave"]
    assert result.violations[0].count == 1


def test_crosstab_layout():
    """Rows are W1=0/1, columns W2=0/1."""
    result = match_waves(_frame([1, 1, 1, 0, 0], [1, 1, 0, 1, 1]))
    ct = result.crosstab

    assert list(ct.index) == ["W1=0", "W1=1"]
    assert list(ct.columns) == ["W2=0", "W2=1"]
    assert ct.loc["W1=1", "W2=1"] == 2
    assert ct.loc["W1=1", "W2=0"] == 1
    assert ct.loc["W1=0", "W2=1"] == 2
    assert ct.loc["W1=0", "W2=0"] == 0


def test_missing_and_non_binary_indicators_are_unknown():
    """NaN or a value other than 0/1 is not silently treated as 0."""
    result = match_waves(_frame([1, np.nan, 2, 1.0], [1, 1, 1, 0.0]))

    assert list(result.participation) == [
        WaveParticipation.BOTH,
        WaveParticipation.UNKNOWN,
        WaveParticipation.UNKNOWN,
        WaveParticipation.ONLY_W1,
    ]
    assert result.count(WaveParticipation.UNKNOWN) == 2
    assert "non_binary_indicator" in [v.kind for v in result.violations]


def test_counts_cover_every_row_exactly_once():
    """The categories partition the participants."""
    df = _frame([1, 0, 1, np.nan, 0, 1], [1, 1, 0, 0, 0, 1])
    result = match_waves(df)

    assert sum(result.counts.values()) == len(df)
    assert result.total == len(df)


def test_both_cohort_contains_only_both_rows():
    """Only participants with W1=1 and W2=1 are kept for the comparison."""
    df = _frame([1, 1, 0, 1], [1, 0, 1, 1], ids=[10, 11, 12, 13])
    result = match_waves(df)

    assert list(result.both_cohort["Nummer"]) == [10, 13]
    assert list(df["Nummer"]) == [10, 11, 12, 13]


def test_missing_indicator_column_marks_everyone_unknown():
    """Without W2 nobody can be classified; this is reported, not raised."""
    df = pd.DataFrame({"Nummer": [1, 2], "W1": [1, 1]})
    result = match_waves(df)

    assert result.count(WaveParticipation.UNKNOWN) == 2
    assert result.violations[0].kind == "missing_indicator"
    assert result.both_cohort.empty


def test_duplicate_ids_are_reported():
    """Two rows with the same participant number are flagged."""
    result = match_waves(_frame([1, 1, 1], [1, 1, 0], ids=[5, 5, 6]))

    dupes = [v for v in result.violations if v.kind == "duplicate_id"]
    assert len(dupes) == 1
    assert dupes[0].count == 2


def test_classify_participation_rejects_text():
    """Text such as '1' is not a valid indicator."""
    assert classify_participation("1", 1) == WaveParticipation.UNKNOWN
    assert classify_participation(1.0, 0) == WaveParticipation.ONLY_W1
    assert classify_participation(None, 0) == WaveParticipation.UNKNOWN
