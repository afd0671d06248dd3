"""
CKD classification rules.

Maps raw lab measurements onto the KDIGO categories used throughout the
toolkit: eGFR → CKD stage, albumin-to-creatinine ratio → proteinuria level,
and (stage, proteinuria level) → progression risk.

Every function here is pure: no I/O, no logging, no shared state. Inputs are
not validated; negative values and NaN fall through the same comparisons as
any other number (plausibility checks live in the calling layer, see
``CKD.measurement``).
"""

import typing

from dataclasses import dataclass
from enum import Enum


def _normalize_label(label: str) -> str:
    return label.strip().lower().replace("-", " ").replace("_", " ").replace(" ", "")


class CKDStage(Enum):
    """
    CKD stage (KDIGO G-category), ordered from best to worst kidney function.
    """
    STAGE_1 = "Stage 1"
    STAGE_2 = "Stage 2"
    STAGE_3A = "Stage 3A"
    STAGE_3B = "Stage 3B"
    STAGE_4 = "Stage 4"
    STAGE_5 = "Stage 5"

    @classmethod
    def from_label(cls, label: typing.Union[str, "CKDStage"]) -> "CKDStage":
        """
        Convert 'Stage 3A', 'stage 3a', '3A' or 'G3a' into the corresponding enum.
        """
        if isinstance(label, cls):
            return label
        key = _normalize_label(str(label))
        for prefix in ("stage", "g"):
            if key.startswith(prefix):
                key = key[len(prefix):]
                break
        mapping = {
            "1": cls.STAGE_1,
            "2": cls.STAGE_2,
            "3a": cls.STAGE_3A,
            "3b": cls.STAGE_3B,
            "4": cls.STAGE_4,
            "5": cls.STAGE_5,
        }
        try:
            return mapping[key]
        except KeyError:
            raise ValueError(f"Unknown CKD stage label: {label!r}")

    @property
    def rank(self) -> int:
        return _STAGE_ORDER.index(self) + 1

    @property
    def egfr_range(self) -> tuple[float, float | None]:
        """(inclusive lower bound, exclusive upper bound or None) in mL/min/1.73m²."""
        return _EGFR_RANGES[self]


class ProteinuriaLevel(Enum):
    """
    Albuminuria category (KDIGO A-category), ordered by increasing ACR.
    """
    A1 = "A1"
    A2 = "A2"
    A3 = "A3"

    @classmethod
    def from_label(cls, label: typing.Union[str, "ProteinuriaLevel"]) -> "ProteinuriaLevel":
        if isinstance(label, cls):
            return label
        key = _normalize_label(str(label))
        mapping = {"a1": cls.A1, "a2": cls.A2, "a3": cls.A3}
        try:
            return mapping[key]
        except KeyError:
            raise ValueError(f"Unknown proteinuria level label: {label!r}")

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self) + 1

    @property
    def acr_range(self) -> tuple[float, float | None]:
        """
        (lower, upper) in mg/g. A1 is [0, 30), A2 is the closed interval
        [30, 300], A3 is (300, ∞).
        """
        return _ACR_RANGES[self]


class ProgressionRisk(Enum):
    """
    Risk of CKD progression from the KDIGO heat map.
    """
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"
    VERY_HIGH = "Very High"

    @classmethod
    def from_label(cls, label: typing.Union[str, "ProgressionRisk"]) -> "ProgressionRisk":
        if isinstance(label, cls):
            return label
        key = _normalize_label(str(label))
        mapping = {
            "low": cls.LOW,
            "moderate": cls.MODERATE,
            "high": cls.HIGH,
            "veryhigh": cls.VERY_HIGH,
        }
        try:
            return mapping[key]
        except KeyError:
            raise ValueError(f"Unknown progression risk label: {label!r}")

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self) + 1

    @property
    def explanation(self) -> str:
        return _RISK_EXPLANATIONS[self]


_STAGE_ORDER = tuple(CKDStage)
_LEVEL_ORDER = tuple(ProteinuriaLevel)
_RISK_ORDER = tuple(ProgressionRisk)

# Evaluated top-down; each stage owns its inclusive lower bound.
EGFR_STAGE_THRESHOLDS: tuple[tuple[float, CKDStage], ...] = (
    (90, CKDStage.STAGE_1),
    (60, CKDStage.STAGE_2),
    (45, CKDStage.STAGE_3A),
    (30, CKDStage.STAGE_3B),
    (15, CKDStage.STAGE_4),
)

_EGFR_RANGES = {
    CKDStage.STAGE_1: (90, None),
    CKDStage.STAGE_2: (60, 90),
    CKDStage.STAGE_3A: (45, 60),
    CKDStage.STAGE_3B: (30, 45),
    CKDStage.STAGE_4: (15, 30),
    CKDStage.STAGE_5: (0, 15),
}

ACR_A2_LOWER = 30
ACR_A2_UPPER = 300

_ACR_RANGES = {
    ProteinuriaLevel.A1: (0, ACR_A2_LOWER),
    ProteinuriaLevel.A2: (ACR_A2_LOWER, ACR_A2_UPPER),
    ProteinuriaLevel.A3: (ACR_A2_UPPER, None),
}

_L, _M, _H, _VH = (
    ProgressionRisk.LOW,
    ProgressionRisk.MODERATE,
    ProgressionRisk.HIGH,
    ProgressionRisk.VERY_HIGH,
)

# KDIGO heat map: rows are stages, columns A1 / A2 / A3
RISK_TABLE: dict[tuple[CKDStage, ProteinuriaLevel], ProgressionRisk] = {
    (stage, level): risk
    for stage, row in {
        CKDStage.STAGE_1: (_L, _M, _H),
        CKDStage.STAGE_2: (_L, _M, _H),
        CKDStage.STAGE_3A: (_M, _H, _VH),
        CKDStage.STAGE_3B: (_H, _VH, _VH),
        CKDStage.STAGE_4: (_VH, _VH, _VH),
        CKDStage.STAGE_5: (_VH, _VH, _VH),
    }.items()
    for level, risk in zip(ProteinuriaLevel, row)
}

_RISK_EXPLANATIONS = {
    ProgressionRisk.LOW: (
        "The patient has a low risk of CKD progression. Regular monitoring is recommended."
    ),
    ProgressionRisk.MODERATE: (
        "The patient has a moderate risk of CKD progression. More frequent monitoring is advised."
    ),
    ProgressionRisk.HIGH: (
        "The patient has a high risk of CKD progression. Close monitoring and management is necessary."
    ),
    ProgressionRisk.VERY_HIGH: (
        "The patient has a very high risk of CKD progression. "
        "Specialist referral and intensive management is required."
    ),
}


def stage_from_egfr(egfr: float) -> CKDStage:
    """
    Map an eGFR value (mL/min/1.73m²) to its CKD stage.
    Anything below 15, including negative values and NaN, is Stage 5.
    """
    for lower_bound, stage in EGFR_STAGE_THRESHOLDS:
        if egfr >= lower_bound:
            return stage
    return CKDStage.STAGE_5


def proteinuria_level_from_acr(acr: float) -> ProteinuriaLevel:
    """
    Map an albumin-to-creatinine ratio (mg/g) to its proteinuria level.
    30 and 300 both belong to A2. NaN fails both comparisons and lands in A3.
    """
    if acr < ACR_A2_LOWER:
        return ProteinuriaLevel.A1
    if acr <= ACR_A2_UPPER:
        return ProteinuriaLevel.A2
    return ProteinuriaLevel.A3


def risk_for(stage: CKDStage | str, proteinuria_level: ProteinuriaLevel | str) -> ProgressionRisk:
    """Look up the heat-map cell for a stage / proteinuria level pair."""
    return RISK_TABLE[(CKDStage.from_label(stage), ProteinuriaLevel.from_label(proteinuria_level))]


def progression_risk(egfr: float, proteinuria_level: ProteinuriaLevel | str) -> ProgressionRisk:
    """
    KDIGO progression risk for an eGFR value and a proteinuria level
    (enum member or its label, e.g. 'A2').
    """
    return risk_for(stage_from_egfr(egfr), proteinuria_level)


@dataclass(frozen=True)
class Classification:
    """
    All categories derived from one pair of measurements.

    Attributes:
        egfr: eGFR the stage was derived from.
        acr: Albumin-to-creatinine ratio, or None when not measured.
        stage: CKD stage.
        proteinuria_level: None when ``acr`` is None.
        progression_risk: None when ``acr`` is None.
    """

    egfr: float
    acr: float | None
    stage: CKDStage
    proteinuria_level: ProteinuriaLevel | None = None
    progression_risk: ProgressionRisk | None = None

    def to_dict(self) -> dict:
        return {
            "egfr": self.egfr,
            "acr": self.acr,
            "ckd_stage": self.stage.value,
            "proteinuria_level": self.proteinuria_level.value if self.proteinuria_level else None,
            "progression_risk": self.progression_risk.value if self.progression_risk else None,
        }


def classify(egfr: float, acr: float | None = None) -> Classification:
    """Stage, proteinuria level and progression risk in one call."""
    stage = stage_from_egfr(egfr)
    if acr is None:
        return Classification(egfr=egfr, acr=None, stage=stage)
    level = proteinuria_level_from_acr(acr)
    return Classification(
        egfr=egfr,
        acr=acr,
        stage=stage,
        proteinuria_level=level,
        progression_risk=RISK_TABLE[(stage, level)],
    )
