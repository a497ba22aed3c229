"""
Tests for cenw_analysis/core/recoder.py

Hand-built raw columns with known codes, declared missing values and codes
outside the codebook.
"""

import numpy as np
import pandas as pd
import pytest

from cenw_analysis.core.codebook import (
    CENW_CODEBOOK,
    DIPLOMA_LEVELS,
    NOMINAL,
    ORDINAL,
    Codebook,
    CodebookEntry,
)
from cenw_analysis.core.recoder import label_codes, numeric_codes, recode_series, recode_table


GENDER = CodebookEntry("W1_Geslacht", NOMINAL, ((0, "Man"), (1, "Vrouw")))


def test_recode_series_maps_codes_to_labels():
    """Declared codes become their labels."""
    out, diag = recode_series(pd.Series([0, 1, 1, 0]), GENDER)

    assert list(out) == ["Man", "Vrouw", "Vrouw", "Man"]
    assert list(out.cat.categories) == ["Man", "Vrouw"]
    assert not out.cat.ordered
    assert diag.unmapped == 0
    assert diag.declared_missing == 0
    assert diag.n_valid == 4


def test_recode_series_flags_unmapped_separately_from_missing():
    """An undeclared code is set to missing but counted as unmapped, not as missing."""
    out, diag = recode_series(pd.Series([0, 1, np.nan, 7]), GENDER)

    assert list(out[:2]) == ["Man", "Vrouw"]
    assert pd.isna(out.iloc[2])
    assert pd.isna(out.iloc[3])
    assert diag.declared_missing == 1
    assert diag.unmapped == 1
    assert diag.unmapped_values == (7.0,)
    assert diag.n_valid == 2


def test_recode_series_declared_missing_codes():
    """Sentinel codes count as declared missing."""
    entry = CodebookEntry("W1_X", NOMINAL, ((1, "a"), (2, "b")), missing_codes=(-99,))
    out, diag = recode_series(pd.Series([1, -99, 2]), entry)

    assert pd.isna(out.iloc[1])
    assert diag.declared_missing == 1
    assert diag.unmapped == 0


def test_recode_series_ordered_levels():
    """Ordinal entries produce ordered categoricals in level order."""
    entry = CodebookEntry("W1_Diploma", ORDINAL, DIPLOMA_LEVELS, ordered=True)
    out, _ = recode_series(pd.Series([3.0, 1.0, 2.0]), entry)

    assert out.cat.ordered
    assert list(out.cat.categories) == ["Geen/Lager", "Middelbaar", "Hoger onderwijs"]
    assert list(out.cat.codes) == [2, 0, 1]
    assert out.max() == "Hoger onderwijs"


def test_recode_series_non_numeric_text_is_unmapped():
    """Stray text in a coded column is flagged, not coerced."""
    out, diag = recode_series(pd.Series([0, "x"], dtype=object), GENDER)

    assert out.iloc[0] == "Man"
    assert pd.isna(out.iloc[1])
    assert diag.unmapped == 1
    assert diag.unmapped_values == ("x",)


def test_recode_ratio_with_transform():
    """Birth year turns into age; non-numeric values are unmapped."""
    entry = CENW_CODEBOOK["W1_Gebjaar"]
    out, diag = recode_series(pd.Series([2000, np.nan, "onbekend"], dtype=object), entry)

    assert out.name == "W1_Leeftijd"
    assert out.iloc[0] == 24.0
    assert pd.isna(out.iloc[1])
    assert pd.isna(out.iloc[2])
    assert diag.declared_missing == 1
    assert diag.unmapped == 1


def test_recode_ratio_passthrough():
    """Ratio variables without a transform keep their value."""
    entry = CENW_CODEBOOK["W1_Kinderen"]
    out, diag = recode_series(pd.Series([0, 2, 3]), entry)

    assert list(out) == [0.0, 2.0, 3.0]
    assert out.name == "W1_Kinderen"
    assert diag.unmapped == 0


def test_recode_table_does_not_mutate_input_and_reports_missing_inputs():
    """The raw frame is left as-is; absent variables are listed and skipped."""
    raw = pd.DataFrame(
        {
            "Nummer": [1, 2],
            "W1_Geslacht": [0, 1],
            "W1_Gebjaar": [1990, 2000],
            "Vrije_tekst": ["a", "b"],
        }
    )
    before = raw.copy()

    result = recode_table(raw, CENW_CODEBOOK)

    pd.testing.assert_frame_equal(raw, before)
    assert list(result.frame["W1_Geslacht"]) == ["Man", "Vrouw"]
    assert list(result.frame["W1_Gebjaar"]) == [1990, 2000]
    assert list(result.frame["W1_Leeftijd"]) == [34.0, 24.0]
    assert list(result.frame["Vrije_tekst"]) == ["a", "b"]
    assert "W2_Geslacht" in result.missing_inputs
    assert "W1_Angst1" in result.missing_inputs
    assert {d.raw_name for d in result.diagnostics} == {"W1_Geslacht", "W1_Gebjaar"}


def test_recode_table_applies_likert_template_to_all_items():
    """Every generated item of a template is recoded from the shared scale."""
    raw = pd.DataFrame({f"W1_Corstress{i}": [1, 5] for i in range(1, 4)})
    result = recode_table(raw, CENW_CODEBOOK)

    for i in range(1, 4):
        col = result.frame[f"W1_Corstress{i}"]
        assert list(col) == ["Niet akkoord", "Zeer akkoord"]
        assert col.cat.ordered


def test_recode_then_reverse_map_round_trips():
    """Every label written by the recoder maps back to the raw code it came from."""
    raw = pd.DataFrame({"W1_Gezondheid": [1, 2, 3, 4, 5], "W1_Inkomen": [1, 5, 9, 13, 18]})
    result = recode_table(raw, CENW_CODEBOOK)

    for col in raw.columns:
        back = [CENW_CODEBOOK.code_for(col, label) for label in result.frame[col]]
        assert back == [float(v) for v in raw[col]]


def test_recode_result_counters_and_frame():
    """Totals and the diagnostics table reflect per-variable counts."""
    raw = pd.DataFrame({"W1_Geslacht": [0, 3, np.nan], "W1_Ouder": [1, 1, 4]})
    result = recode_table(raw, CENW_CODEBOOK)

    assert result.unmapped_total == 2
    assert result.declared_missing_total == 1
    assert [d.raw_name for d in result.with_unmapped()] == ["W1_Geslacht", "W1_Ouder"]

    frame = result.diagnostics_frame()
    assert list(frame["variable"]) == ["W1_Geslacht", "W1_Ouder"]
    assert list(frame["unmapped"]) == [1, 1]


def test_numeric_codes_drops_unmapped_and_missing_codes():
    """Valid codes are kept as floats; anything else becomes NaN."""
    entry = CodebookEntry("W1_X", NOMINAL, ((1, "a"), (2, "b")), missing_codes=(-1,))
    codes = numeric_codes(pd.Series([1, 2, 3, -1, np.nan]), entry)

    assert list(codes[:2]) == [1.0, 2.0]
    assert codes[2:].isna().all()


def test_numeric_codes_without_entry_only_coerces():
    """Without a codebook entry every number is kept."""
    codes = numeric_codes(pd.Series(["1", 7, None]))
    assert list(codes[:2]) == [1.0, 7.0]
    assert pd.isna(codes.iloc[2])


def test_label_codes_lists_categorical_outputs():
    """Value-label maps are keyed by output column."""
    codebook = Codebook([GENDER, CENW_CODEBOOK["W1_Gebjaar"]])
    assert label_codes(codebook) == {"W1_Geslacht": {0.0: "Man", 1.0: "Vrouw"}}


@pytest.mark.parametrize("raw_value", [0.0, 0])
def test_int_and_float_codes_match(raw_value):
    """SPSS exports codes as floats; both forms hit the same level."""
    out, _ = recode_series(pd.Series([raw_value]), GENDER)
    assert out.iloc[0] == "Man"


def test_recode_table_warns_when_derived_column_replaces_input(caplog):
    """An age column already in the export is replaced by the derived age, with a warning."""
    raw = pd.DataFrame({"W1_Gebjaar": [1990, 2000], "W1_Leeftijd": [99, 99]})

    with caplog.at_level("WARNING", logger="cenw_analysis.core.recoder"):
        result = recode_table(raw, CENW_CODEBOOK)

    assert result.overwritten == ["W1_Leeftijd"]
    assert list(result.frame["W1_Leeftijd"]) == [34.0, 24.0]
    assert list(raw["W1_Leeftijd"]) == [99, 99]
    assert "W1_Leeftijd already exists" in caplog.text


def test_recode_table_in_place_recoding_is_not_an_overwrite():
    result = recode_table(pd.DataFrame({"W1_Geslacht": [0, 1], "W1_Gebjaar": [1990, 2000]}), CENW_CODEBOOK)

    assert result.overwritten == []
