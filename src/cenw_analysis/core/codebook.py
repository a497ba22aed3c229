from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from cenw_analysis.config import REFERENCE_YEAR

logger = logging.getLogger(__name__)

# Variable kinds
NOMINAL = "nominal"
ORDINAL = "ordinal"
RATIO = "ratio"
LIKERT_ITEM = "likert_item"

KINDS = (NOMINAL, ORDINAL, RATIO, LIKERT_ITEM)
CATEGORICAL_KINDS = frozenset({NOMINAL, ORDINAL, LIKERT_ITEM})

LevelMap = Tuple[Tuple[float, str], ...]


class CodebookError(ValueError):
    """Raised when a codebook declaration is malformed."""


def _normalize_levels(levels: Iterable[Tuple[Any, str]]) -> LevelMap:
    return tuple((float(code), str(label)) for code, label in levels)


@dataclass(frozen=True)
class CodebookEntry:
    """
    Recoding rule for one raw survey variable.

    - raw_name:      column in the raw export (e.g. 'W1_Geslacht')
    - kind:          nominal | ordinal | ratio | likert_item
    - level_map:     ordered (code, label) pairs; empty for ratio variables
    - ordered:       whether the resulting categorical is ordered
    - target_name:   output column; None replaces the raw column in place
    - transform:     ratio only, maps the raw number to the derived value
    - missing_codes: sentinel codes that mean "no answer"
    """
    raw_name: str
    kind: str
    level_map: LevelMap = ()
    ordered: bool = False
    target_name: Optional[str] = None
    transform: Optional[Callable[[float], float]] = field(default=None, compare=False)
    missing_codes: Tuple[float, ...] = ()

    def __post_init__(self) -> None:
        if self.kind not in KINDS:
            raise CodebookError(f"{self.raw_name}: unknown kind {self.kind!r} (expected one of {KINDS}).")

        object.__setattr__(self, "level_map", _normalize_levels(self.level_map))
        object.__setattr__(self, "missing_codes", tuple(float(c) for c in self.missing_codes))

        if self.kind == RATIO:
            if self.level_map:
                raise CodebookError(f"{self.raw_name}: ratio variables do not declare levels.")
            return

        if self.transform is not None:
            raise CodebookError(f"{self.raw_name}: only ratio variables accept a transform.")
        if not self.level_map:
            raise CodebookError(f"{self.raw_name}: {self.kind} variables need at least one level.")

        codes = [c for c, _ in self.level_map]
        labels = [lab for _, lab in self.level_map]
        if len(set(codes)) != len(codes):
            raise CodebookError(f"{self.raw_name}: duplicate codes in level_map {codes}.")
        if len(set(labels)) != len(labels):
            raise CodebookError(f"{self.raw_name}: duplicate labels in level_map {labels}.")
        overlap = set(codes) & set(self.missing_codes)
        if overlap:
            raise CodebookError(f"{self.raw_name}: codes {sorted(overlap)} are both levels and missing codes.")

    @property
    def output_name(self) -> str:
        return self.target_name or self.raw_name

    @property
    def is_categorical(self) -> bool:
        return self.kind in CATEGORICAL_KINDS

    @property
    def labels(self) -> List[str]:
        return [label for _, label in self.level_map]

    def code_to_label(self) -> Dict[float, str]:
        return dict(self.level_map)

    def label_to_code(self) -> Dict[str, float]:
        return {label: code for code, label in self.level_map}


@dataclass(frozen=True)
class LikertTemplate:
    """
    One shared answer scale applied to items prefix1..prefixN.

    The template stands in for N identical declarations, e.g.
    LikertTemplate('W1_Angst', 6, ANXIETY_LEVELS) -> W1_Angst1 .. W1_Angst6.
    """
    prefix: str
    n_items: int
    level_map: LevelMap
    first_index: int = 1
    missing_codes: Tuple[float, ...] = ()

    def __post_init__(self) -> None:
        if self.n_items < 1:
            raise CodebookError(f"{self.prefix}: a Likert template needs at least one item.")
        object.__setattr__(self, "level_map", _normalize_levels(self.level_map))

    @property
    def item_names(self) -> List[str]:
        return [f"{self.prefix}{i}" for i in range(self.first_index, self.first_index + self.n_items)]

    @property
    def scale_name(self) -> str:
        return self.prefix.rstrip("_")

    def expand(self) -> List[CodebookEntry]:
        return [
            CodebookEntry(
                raw_name=name,
                kind=LIKERT_ITEM,
                level_map=self.level_map,
                ordered=True,
                missing_codes=self.missing_codes,
            )
            for name in self.item_names
        ]


class Codebook:
    """
    Immutable, ordered set of recoding rules keyed by raw variable name.

    Built once at startup and shared read-only by every stage.
    """

    def __init__(
        self,
        entries: Sequence[CodebookEntry] = (),
        templates: Sequence[LikertTemplate] = (),
    ) -> None:
        ordered: Dict[str, CodebookEntry] = {}
        for entry in list(entries) + [e for t in templates for e in t.expand()]:
            if entry.raw_name in ordered:
                raise CodebookError(f"Variable {entry.raw_name} is declared more than once.")
            ordered[entry.raw_name] = entry

        outputs = [e.output_name for e in ordered.values()]
        dupes = sorted({n for n in outputs if outputs.count(n) > 1})
        if dupes:
            raise CodebookError(f"Several entries write to the same output column: {dupes}")

        self._entries = ordered
        self._templates = tuple(templates)

    def __iter__(self) -> Iterator[CodebookEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, raw_name: object) -> bool:
        return raw_name in self._entries

    def get(self, raw_name: str) -> Optional[CodebookEntry]:
        return self._entries.get(raw_name)

    def __getitem__(self, raw_name: str) -> CodebookEntry:
        try:
            return self._entries[raw_name]
        except KeyError:
            raise KeyError(f"{raw_name} is not declared in the codebook") from None

    @property
    def templates(self) -> Tuple[LikertTemplate, ...]:
        return self._templates

    @property
    def raw_names(self) -> List[str]:
        return list(self._entries)

    def code_for(self, raw_name: str, label: str) -> float:
        """Reverse mapping: the raw code a label was recoded from."""
        mapping = self[raw_name].label_to_code()
        if label not in mapping:
            raise KeyError(f"{label!r} is not a level of {raw_name}")
        return mapping[label]

    def by_output_name(self) -> Dict[str, CodebookEntry]:
        return {e.output_name: e for e in self}


# ---------------------------------------------------------------------------
# Corona & Welzijn answer scales
# ---------------------------------------------------------------------------

def _no_yes(no: str, yes: str) -> Tuple[Tuple[int, str], ...]:
    return ((0, no), (1, yes))


GENDER_LEVELS = _no_yes("Man", "Vrouw")

NATIONALITY_LEVELS = (
    (1, "België (beide ouders)"),
    (2, "België (één ouder)"),
    (3, "Niet België geboren"),
)
CIVIL_STATUS_LEVELS = ((1, "Ongehuwd"), (2, "Gehuwd"), (3, "Weduwe/Weduwnaar"), (4, "Gescheiden"))
DIPLOMA_LEVELS = ((1, "Geen/Lager"), (2, "Middelbaar"), (3, "Hoger onderwijs"))
ACTIVITY_LEVELS = ((1, "Studeert thuis"), (2, "Werkt thuis"), (3, "Werkt op werkplek"))
OWN_ROOM_LEVELS = ((1, "Ja zeer zeker"), (2, "Ja beetje"), (3, "Nee niet echt"), (4, "Nee helemaal niet"))
HEALTH_LEVELS = ((1, "Slecht"), (2, "Redelijk"), (3, "Goed"), (4, "Erg goed"), (5, "Zeer goed"))
CORONA_LEVELS = (
    (1, "Geen symptomen"),
    (2, "Symptomen geen test"),
    (3, "Test negatief"),
    (4, "Test positief"),
)
LIVING_LEVELS = ((1, "Samen wonend"), (2, "Deeltijds samen"), (3, "Niet samen wonend"))
PARTNER_ACTIVITY_LEVELS = (
    (1, "Studeert"),
    (2, "Werkt thuis"),
    (3, "Werkt op werkplek"),
    (4, "Werkloos"),
    (5, "Huiswerk/zorg"),
    (6, "Ander"),
)
INCOME_LEVELS = tuple(
    [(1, "< €500")]
    + [(i + 2, f"€{500 * (i + 1)}-€{500 * (i + 2) - 1}") for i in range(16)]
    + [(18, "> €8500")]
)

ANXIETY_LEVELS = ((1, "Helemaal niet"), (2, "Minder dan helft"), (3, "Meer dan helft"), (4, "Bijna elke dag"))
DEPRESSION_LEVELS = ((1, "Zelden/nooit"), (2, "Soms/weinig"), (3, "Regelmatig"), (4, "Meestal/altijd"))
FREQUENCY_LEVELS = ((1, "Nooit"), (2, "Zelden"), (3, "Soms"), (4, "Vaak"), (5, "Altijd"))
CONCENTRATION_LEVELS = ((1, "Veel minder"), (2, "Minder"), (3, "Net zoveel"), (4, "Meer"), (5, "Veel meer"))
AGREEMENT_LEVELS = ((1, "Niet akkoord"), (2, "Eerder niet"), (3, "Noch/noch"), (4, "Eerder"), (5, "Zeer akkoord"))
STRESSFUL_LEVELS = ((1, "Niet stressvol"), (2, "Beetje"), (3, "Matig"), (4, "Behoorlijk"), (5, "Zeer stressvol"))

# (base name, kind, levels, ordered)
CATEGORICAL_DECLARATIONS: Tuple[Tuple[str, str, Sequence[Tuple[int, str]], bool], ...] = (
    ("Geslacht", NOMINAL, GENDER_LEVELS, False),
    ("Relatiestatus", NOMINAL, _no_yes("Geen relatie", "In relatie"), False),
    ("Nationaliteit", NOMINAL, NATIONALITY_LEVELS, False),
    ("Burg_staat", NOMINAL, CIVIL_STATUS_LEVELS, False),
    ("Ouder", NOMINAL, _no_yes("Geen kinderen", "Ouder"), False),
    ("Handicap", NOMINAL, _no_yes("Geen handicap", "Heeft handicap"), False),
    ("W_ICT", NOMINAL, _no_yes("Geen ICT", "Gebruik ICT"), False),
    ("W_ICTDeel", NOMINAL, _no_yes("Niet delen", "Delen apparaat"), False),
    ("Contact", NOMINAL, _no_yes("Geen contact", "Contact gewenst"), False),
    ("Diploma", ORDINAL, DIPLOMA_LEVELS, True),
    ("ACT", ORDINAL, ACTIVITY_LEVELS, False),
    ("Eigen_ruimte", ORDINAL, OWN_ROOM_LEVELS, True),
    ("Gezondheid", ORDINAL, HEALTH_LEVELS, True),
    ("Corona", NOMINAL, CORONA_LEVELS, False),
    ("Leefsit", NOMINAL, LIVING_LEVELS, False),
    ("ACT_partner", NOMINAL, PARTNER_ACTIVITY_LEVELS, False),
    ("Gesl_Partner", NOMINAL, GENDER_LEVELS, False),
    ("Inkomen", NOMINAL, INCOME_LEVELS, False),
)

# Counts kept as numbers
RATIO_DECLARATIONS = ("RESID01", "Kinderen", "Soc_kap", "Relduur", "Rel_Tevreden")

# (item prefix, levels) with item counts per wave; Wave 2 shortened two scales
LIKERT_DECLARATIONS: Tuple[Tuple[str, Sequence[Tuple[int, str]]], ...] = (
    ("Angst", ANXIETY_LEVELS),
    ("Depressie", DEPRESSION_LEVELS),
    ("W_STRESS", FREQUENCY_LEVELS),
    ("W_CONC", CONCENTRATION_LEVELS),
    ("Eenz", FREQUENCY_LEVELS),
    ("Corstress", AGREEMENT_LEVELS),
    ("VerbAgr", FREQUENCY_LEVELS),
    ("QMI", AGREEMENT_LEVELS),
    ("Relstress1_", STRESSFUL_LEVELS),
    ("Relstress2_", STRESSFUL_LEVELS),
    ("FINSTRESS", AGREEMENT_LEVELS),
)

WAVE_ITEM_COUNTS: Dict[int, Dict[str, int]] = {
    1: {
        "Angst": 6, "Depressie": 3, "W_STRESS": 4, "W_CONC": 3, "Eenz": 4, "Corstress": 3,
        "VerbAgr": 3, "QMI": 5, "Relstress1_": 4, "Relstress2_": 4, "FINSTRESS": 3,
    },
    2: {
        "Angst": 4, "Depressie": 3, "W_STRESS": 4, "W_CONC": 3, "Eenz": 3, "Corstress": 3,
        "VerbAgr": 3, "QMI": 5, "Relstress1_": 4, "Relstress2_": 4, "FINSTRESS": 3,
    },
}


def age_from_birth_year(birth_year: float, reference_year: int = REFERENCE_YEAR) -> float:
    return float(reference_year) - float(birth_year)


def build_cenw_codebook(waves: Sequence[int] = (1, 2), reference_year: int = REFERENCE_YEAR) -> Codebook:
    """
    Declare every recoded C&W variable for the requested waves.

    Categorical variables are recoded in place (W1_Geslacht keeps its name);
    birth year additionally yields W{n}_Leeftijd.
    """
    entries: List[CodebookEntry] = []
    templates: List[LikertTemplate] = []

    for wave in waves:
        if wave not in WAVE_ITEM_COUNTS:
            raise CodebookError(f"No item counts declared for wave {wave}.")
        prefix = f"W{wave}_"

        for base, kind, levels, ordered in CATEGORICAL_DECLARATIONS:
            entries.append(CodebookEntry(prefix + base, kind, levels, ordered=ordered))

        entries.append(
            CodebookEntry(
                prefix + "Gebjaar",
                RATIO,
                target_name=prefix + "Leeftijd",
                transform=partial(age_from_birth_year, reference_year=reference_year),
            )
        )
        for base in RATIO_DECLARATIONS:
            entries.append(CodebookEntry(prefix + base, RATIO))

        counts = WAVE_ITEM_COUNTS[wave]
        for base, levels in LIKERT_DECLARATIONS:
            templates.append(LikertTemplate(prefix + base, counts[base], levels))

    return Codebook(entries, templates)


CENW_CODEBOOK = build_cenw_codebook()


# ---------------------------------------------------------------------------
# Codebook workbook (CODEBOOK sheet)
# ---------------------------------------------------------------------------

def _parse_bool(val: Any) -> bool:
    if val is None or (isinstance(val, float) and math.isnan(val)):
        return False
    return str(val).strip().lower() in {"1", "true", "yes", "ja", "y"}


def load_codebook_workbook(path: Path | str, sheet_name: str = "CODEBOOK") -> Codebook:
    """
    Load codebook entries from a long-format Excel sheet.

    Expected columns (case-insensitive):
      - 'variable'  (raw column, e.g. 'W1_Geslacht')
      - 'kind'      (nominal / ordinal / ratio / likert_item)
      - 'code'      (numeric code; blank for ratio variables)
      - 'label'     (label for that code)
      - 'ordered'   (optional, yes/no)
      - 'target'    (optional output column)

    One row per (variable, code). Row order defines level order.
    """
    path = Path(path)
    if not path.exists():
        raise CodebookError(f"Codebook workbook not found: {path}")
    logger.info("Loading codebook workbook: %s", path)
    df = pd.read_excel(path, sheet_name=sheet_name)

    lower = {str(c).strip().lower(): c for c in df.columns}
    var_col = lower.get("variable")
    kind_col = lower.get("kind")
    code_col = lower.get("code")
    label_col = lower.get("label")
    if not (var_col and kind_col and code_col and label_col):
        raise CodebookError(
            f"{sheet_name} sheet does not contain the expected columns ('variable', 'kind', 'code', 'label')."
        )
    ordered_col = lower.get("ordered")
    target_col = lower.get("target")

    grouped: Dict[str, Dict[str, Any]] = {}
    for _, row in df.iterrows():
        name = str(row[var_col]).strip()
        if not name or name.lower() == "nan":
            continue

        decl = grouped.setdefault(
            name,
            {
                "kind": str(row[kind_col]).strip().lower(),
                "levels": [],
                "ordered": False,
                "target": None,
            },
        )
        if ordered_col is not None and _parse_bool(row[ordered_col]):
            decl["ordered"] = True
        if target_col is not None and pd.notna(row[target_col]) and str(row[target_col]).strip():
            decl["target"] = str(row[target_col]).strip()
        if pd.notna(row[code_col]):
            decl["levels"].append((float(row[code_col]), str(row[label_col]).strip()))

    entries = [
        CodebookEntry(
            raw_name=name,
            kind=decl["kind"],
            level_map=tuple(decl["levels"]),
            ordered=decl["ordered"] or decl["kind"] == LIKERT_ITEM,
            target_name=decl["target"],
        )
        for name, decl in grouped.items()
    ]
    logger.info("Codebook workbook declares %d variables.", len(entries))
    return Codebook(entries)
