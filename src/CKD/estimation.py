"""
Reciprocal and synthetic-value helpers.

These helpers produce *plausible* numbers for seeding fixtures and demo
workbooks. They are approximations and must not be used for diagnosis.

The MDRD helpers carry no race coefficient. Generators take an optional
``random.Random`` and otherwise create their own, so seeded runs are
reproducible and concurrent callers never share a generator.
"""

import datetime
import random
import typing

import pandas as pd

from .measurement import KNOWN_TESTS
from .staging import CKDStage, ProteinuriaLevel, stage_from_egfr

MDRD_CONSTANT = 175.0
MDRD_CREATININE_EXPONENT = -1.154
MDRD_AGE_EXPONENT = -0.203
MDRD_FEMALE_FACTOR = 0.742

# Inclusive integer bounds, each strictly inside its category
EGFR_SAMPLING_BOUNDS = {
    CKDStage.STAGE_1: (90, 119),
    CKDStage.STAGE_2: (60, 89),
    CKDStage.STAGE_3A: (45, 59),
    CKDStage.STAGE_3B: (30, 44),
    CKDStage.STAGE_4: (15, 29),
    CKDStage.STAGE_5: (1, 14),
}

ACR_SAMPLING_BOUNDS = {
    ProteinuriaLevel.A1: (1, 29),
    ProteinuriaLevel.A2: (30, 300),
    ProteinuriaLevel.A3: (301, 2000),
}

# Offset from a systolic baseline of 120 mmHg, inclusive
SYSTOLIC_VARIANCE = {
    CKDStage.STAGE_1: (-10, 9),
    CKDStage.STAGE_2: (0, 19),
    CKDStage.STAGE_3A: (5, 29),
    CKDStage.STAGE_3B: (10, 39),
    CKDStage.STAGE_4: (15, 49),
    CKDStage.STAGE_5: (20, 59),
}
SYSTOLIC_BASELINE = 120


def _rng(rng: typing.Optional[random.Random]) -> random.Random:
    return rng if rng is not None else random.Random()


def calculate_mdrd(creatinine: float, age: float, is_female: bool = False) -> float:
    """
    Simplified (4-variable, race-free) MDRD eGFR from serum creatinine in mg/dL.
    """
    if creatinine <= 0 or age <= 0:
        raise ValueError(f"creatinine and age must be positive, got {creatinine!r} and {age!r}")
    egfr = MDRD_CONSTANT * creatinine ** MDRD_CREATININE_EXPONENT * age ** MDRD_AGE_EXPONENT
    if is_female:
        egfr *= MDRD_FEMALE_FACTOR
    return round(egfr, 2)


def estimate_creatinine_from_egfr(egfr: float, age: float = 50, is_female: bool = False) -> float:
    """
    Invert the simplified MDRD equation to get the serum creatinine (mg/dL)
    that would produce ``egfr`` for a patient of this age and sex.
    The female factor multiplies the eGFR side of the equation.

    Fixture generation only; the result is rounded to 2 decimals.
    """
    if egfr <= 0 or age <= 0:
        raise ValueError(f"egfr and age must be positive, got {egfr!r} and {age!r}")
    scale = MDRD_CONSTANT * age ** MDRD_AGE_EXPONENT
    if is_female:
        scale *= MDRD_FEMALE_FACTOR
    creatinine = (egfr / scale) ** (1 / MDRD_CREATININE_EXPONENT)
    return round(creatinine, 2)


def generate_egfr_for_stage(stage: CKDStage | str, rng: typing.Optional[random.Random] = None) -> int:
    """
    Random eGFR that classifies back to ``stage``.
    """
    low, high = EGFR_SAMPLING_BOUNDS[CKDStage.from_label(stage)]
    return _rng(rng).randint(low, high)


def generate_acr_for_level(level: ProteinuriaLevel | str, rng: typing.Optional[random.Random] = None) -> int:
    """
    Random albumin-to-creatinine ratio (mg/g) that classifies back to ``level``.
    """
    low, high = ACR_SAMPLING_BOUNDS[ProteinuriaLevel.from_label(level)]
    return _rng(rng).randint(low, high)


def generate_systolic_bp(stage: CKDStage | str, rng: typing.Optional[random.Random] = None) -> int:
    """Systolic pressure drifts upwards with advancing stage."""
    low, high = SYSTOLIC_VARIANCE[CKDStage.from_label(stage)]
    return SYSTOLIC_BASELINE + _rng(rng).randint(low, high)


def generate_diastolic_bp(systolic: float, rng: typing.Optional[random.Random] = None) -> int:
    # roughly two thirds of systolic, ±5
    return int(systolic * 0.65) + _rng(rng).randint(-5, 4)


SAMPLE_WORKFLOWS = [
    # workflow_name, ckd_stage, test_name, frequency, alert_threshold, action
    ("Stage 4 follow-up", "Stage 4", "egfr", "every 3 months", "< 20", "Start renal replacement planning"),
    ("Stage 4 follow-up", "Stage 4", "acr", "every 3 months", "> 300", "Review RAAS blockade"),
    ("Stage 5 care", "Stage 5", "egfr", "monthly", "< 10", "Refer for dialysis assessment"),
    ("Blood pressure", "", "systolic_bp", "every visit", ">= 160", "Review antihypertensive treatment"),
]


def sample_workflows_table() -> pd.DataFrame:
    """Demo workflows sheet, indexed by workflow_name."""
    return pd.DataFrame(
        SAMPLE_WORKFLOWS,
        columns=["workflow_name", "ckd_stage", "test_name", "frequency", "alert_threshold", "action"],
    ).set_index("workflow_name")


def generate_cohort(
    size: int,
    seed: typing.Optional[int] = None,
    result_date: typing.Optional[datetime.date] = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Build a synthetic demo cohort.

    Returns two DataFrames shaped like the workbook sheets the mapper reads:
      - patients: indexed by patient_id with birth_date and gender
      - lab_results: one row per test (egfr, acr, creatinine, systolic_bp,
        diastolic_bp) per patient, indexed by patient_id
    """
    if size < 0:
        raise ValueError(f"cohort size must be non-negative, got {size}")
    rng = random.Random(seed)
    result_date = result_date or datetime.date.today()
    date_str = result_date.isoformat()
    # very low eGFR inverts to creatinine above what the lab sheet accepts
    max_creatinine = KNOWN_TESTS["creatinine"][1]

    patient_rows = []
    lab_rows = []
    for number in range(1, size + 1):
        patient_id = f"P{number:04d}"
        stage = rng.choice(list(CKDStage))
        level = rng.choice(list(ProteinuriaLevel))
        age = rng.randint(25, 85)
        is_female = rng.random() < 0.5
        birth_date = result_date - datetime.timedelta(days=int(age * 365.25) + rng.randint(1, 300))

        egfr = generate_egfr_for_stage(stage, rng)
        systolic = generate_systolic_bp(stage_from_egfr(egfr), rng)
        patient_rows.append({
            "patient_id": patient_id,
            "birth_date": birth_date.isoformat(),
            "gender": "F" if is_female else "M",
        })
        measured = [
            ("egfr", egfr, "mL/min/1.73m²"),
            ("acr", generate_acr_for_level(level, rng), "mg/g"),
            ("creatinine", min(estimate_creatinine_from_egfr(egfr, age, is_female), max_creatinine), "mg/dL"),
            ("systolic_bp", systolic, "mmHg"),
            ("diastolic_bp", generate_diastolic_bp(systolic, rng), "mmHg"),
        ]
        for test_name, value, unit in measured:
            lab_rows.append({
                "patient_id": patient_id,
                "test_name": test_name,
                "result_value": value,
                "unit": unit,
                "result_date": date_str,
            })

    patients = pd.DataFrame(patient_rows, columns=["patient_id", "birth_date", "gender"]).set_index("patient_id")
    lab_results = pd.DataFrame(
        lab_rows, columns=["patient_id", "test_name", "result_value", "unit", "result_date"]
    ).set_index("patient_id")
    return patients, lab_results
