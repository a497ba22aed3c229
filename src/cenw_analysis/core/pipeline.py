from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from cenw_analysis.config import CODEBOOK_PATH, OUTPUT_DIR
from cenw_analysis.core.codebook import CENW_CODEBOOK, Codebook, load_codebook_workbook
from cenw_analysis.core.composite import CompositeResult, CompositeScale, scales_from_codebook, score_composites
from cenw_analysis.core.consistency import TraitCheck, VariableComparison, check_fixed_traits, compare_common_variables
from cenw_analysis.core.data_loader import OUTPUT_FORMATS, load_table, write_coded_dataset, write_report
from cenw_analysis.core.descriptives import Descriptives, describe_coded
from cenw_analysis.core.recoder import RecodeResult, recode_table
from cenw_analysis.core.report import ReportSummary, build_report, comparisons_frame, render_text_report
from cenw_analysis.core.waves import WaveMatchResult, match_waves

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    raw: pd.DataFrame
    coded: pd.DataFrame
    recode: RecodeResult
    composites: CompositeResult
    waves: WaveMatchResult
    comparisons: List[VariableComparison]
    trait_checks: List[TraitCheck]
    descriptives: Descriptives
    report: ReportSummary
    written: Dict[str, Path] = field(default_factory=dict)

    def report_text(self, top_n: int = 10) -> str:
        return render_text_report(self.report, top_n=top_n)


def resolve_codebook(
    codebook: Optional[Codebook] = None,
    codebook_path: Path | str | None = None,
) -> Codebook:
    """An explicit codebook wins, then a CODEBOOK workbook, then the built-in declarations."""
    if codebook is not None:
        return codebook
    path = codebook_path if codebook_path is not None else CODEBOOK_PATH
    if path is not None:
        return load_codebook_workbook(path)
    return CENW_CODEBOOK


def run_pipeline(
    raw_df: pd.DataFrame,
    codebook: Optional[Codebook] = None,
    scales: Optional[Sequence[CompositeScale]] = None,
    labelled: Iterable[str] = (),
    min_items: Optional[int] = None,
    column_labels: Optional[Dict[str, str]] = None,
) -> PipelineResult:
    """
    raw table -> recoded table + composites, wave cohort -> comparisons -> report.

    raw_df is never modified. Comparisons, fixed-trait checks and composites
    use the raw codes; descriptives and the export use the coded frame.
    """
    codebook = codebook if codebook is not None else CENW_CODEBOOK
    scales = list(scales) if scales is not None else scales_from_codebook(codebook)

    logger.info("Running pipeline on %d participants, %d columns.", raw_df.shape[0], raw_df.shape[1])

    recode = recode_table(raw_df, codebook)
    composites = score_composites(raw_df, scales, codebook=codebook, min_items=min_items)

    coded = recode.frame
    if len(composites.frame.columns):
        coded = pd.concat([coded.drop(columns=list(composites.frame.columns), errors="ignore"), composites.frame], axis=1)

    descriptives = describe_coded(coded)

    waves = match_waves(raw_df)
    comparisons = compare_common_variables(waves.both_cohort, codebook=codebook, labelled=labelled)
    trait_checks = check_fixed_traits(waves.both_cohort)

    report = build_report(
        raw_df.columns,
        waves,
        comparisons,
        recode=recode,
        composites=composites,
        descriptives=descriptives,
        trait_checks=trait_checks,
        column_labels=column_labels,
    )

    return PipelineResult(
        raw=raw_df,
        coded=coded,
        recode=recode,
        composites=composites,
        waves=waves,
        comparisons=comparisons,
        trait_checks=trait_checks,
        descriptives=descriptives,
        report=report,
    )


def run_from_file(
    path: Path | str,
    output_dir: Path | str | None = None,
    formats: Sequence[str] = OUTPUT_FORMATS,
    codebook: Optional[Codebook] = None,
    codebook_path: Path | str | None = None,
    min_items: Optional[int] = None,
    stamp_date: Optional[date] = None,
) -> PipelineResult:
    """Load a raw export, run the pipeline and write the coded data and report."""
    table = load_table(path)
    codebook = resolve_codebook(codebook, codebook_path)
    result = run_pipeline(
        table.frame,
        codebook=codebook,
        labelled=table.labelled_columns,
        min_items=min_items,
        column_labels=table.column_labels,
    )

    out_dir = Path(output_dir) if output_dir is not None else OUTPUT_DIR
    written = write_coded_dataset(
        result.coded,
        out_dir,
        formats=formats,
        stamp_date=stamp_date,
        codebook=codebook,
        column_labels=table.column_labels,
    )
    written.update(
        {
            f"report_{k}": v
            for k, v in write_report(
                result.report_text(),
                comparisons_frame(result.report, ranked=True),
                out_dir,
                stamp_date=stamp_date,
            ).items()
        }
    )
    result.written = written
    return result
