import random

import pytest

from CKD.estimation import (
    calculate_mdrd,
    estimate_creatinine_from_egfr,
    generate_acr_for_level,
    generate_cohort,
    generate_diastolic_bp,
    generate_egfr_for_stage,
    generate_systolic_bp,
    sample_workflows_table,
)
from CKD.measurement import is_plausible
from CKD.staging import CKDStage, ProteinuriaLevel, proteinuria_level_from_acr, stage_from_egfr


@pytest.mark.parametrize("stage", list(CKDStage))
def test_generated_egfr_classifies_back_to_its_stage(stage):
    rng = random.Random(1234)
    for _ in range(1000):
        assert stage_from_egfr(generate_egfr_for_stage(stage, rng)) is stage


@pytest.mark.parametrize("level", list(ProteinuriaLevel))
def test_generated_acr_classifies_back_to_its_level(level):
    rng = random.Random(99)
    for _ in range(1000):
        assert proteinuria_level_from_acr(generate_acr_for_level(level, rng)) is level


def test_generators_accept_labels():
    rng = random.Random(0)
    assert 45 <= generate_egfr_for_stage("Stage 3A", rng) < 60
    assert generate_acr_for_level("A3", rng) > 300


def test_unknown_labels_raise():
    with pytest.raises(ValueError):
        generate_egfr_for_stage("Stage 7")
    with pytest.raises(ValueError):
        generate_acr_for_level("A0")


def test_seeded_generators_are_reproducible():
    first = [generate_egfr_for_stage(CKDStage.STAGE_2, random.Random(42)) for _ in range(3)]
    second = [generate_egfr_for_stage(CKDStage.STAGE_2, random.Random(42)) for _ in range(3)]
    assert first == second


def test_generators_leave_global_random_state_alone():
    random.seed(7)
    state = random.getstate()
    generate_egfr_for_stage(CKDStage.STAGE_4)
    generate_acr_for_level(ProteinuriaLevel.A2)
    generate_systolic_bp(CKDStage.STAGE_5)
    assert random.getstate() == state


def test_calculate_mdrd_has_no_race_coefficient():
    assert calculate_mdrd(1.0, 50) == round(175 * 50 ** -0.203, 2)
    assert calculate_mdrd(1.0, 50, is_female=True) == round(175 * 50 ** -0.203 * 0.742, 2)


@pytest.mark.parametrize("egfr", [8, 22, 37, 52, 75, 110])
@pytest.mark.parametrize("age", [30, 65])
@pytest.mark.parametrize("is_female", [False, True])
def test_creatinine_estimate_inverts_mdrd(egfr, age, is_female):
    creatinine = estimate_creatinine_from_egfr(egfr, age, is_female)
    assert calculate_mdrd(creatinine, age, is_female) == pytest.approx(egfr, rel=0.02)


def test_creatinine_falls_as_egfr_rises():
    values = [estimate_creatinine_from_egfr(e) for e in (10, 30, 60, 90)]
    assert values == sorted(values, reverse=True)


def test_female_estimate_is_lower():
    assert estimate_creatinine_from_egfr(60, 50, is_female=True) < estimate_creatinine_from_egfr(60, 50)


@pytest.mark.parametrize("egfr, age", [(0, 50), (-10, 50), (60, 0)])
def test_creatinine_estimate_rejects_non_positive_input(egfr, age):
    with pytest.raises(ValueError):
        estimate_creatinine_from_egfr(egfr, age)


@pytest.mark.parametrize(
    "stage, low, high",
    [(CKDStage.STAGE_1, 110, 129), (CKDStage.STAGE_3A, 125, 149), (CKDStage.STAGE_5, 140, 179)],
)
def test_systolic_bp_range(stage, low, high):
    rng = random.Random(3)
    for _ in range(200):
        assert low <= generate_systolic_bp(stage, rng) <= high


def test_diastolic_bp_tracks_systolic():
    rng = random.Random(5)
    for _ in range(200):
        assert 86 <= generate_diastolic_bp(140, rng) <= 95


def test_generate_cohort_shape_and_round_trip():
    patients, lab_results = generate_cohort(10, seed=11)
    assert len(patients) == 10
    assert patients.index.name == "patient_id"
    assert set(patients.columns) == {"birth_date", "gender"}
    assert len(lab_results) == 50
    assert set(lab_results["test_name"]) == {"egfr", "acr", "creatinine", "systolic_bp", "diastolic_bp"}
    assert (lab_results["result_value"] > 0).all()


def test_generate_cohort_is_reproducible():
    a_patients, a_labs = generate_cohort(5, seed=3)
    b_patients, b_labs = generate_cohort(5, seed=3)
    assert a_patients.equals(b_patients)
    assert a_labs.equals(b_labs)


def test_generate_cohort_empty_and_negative():
    patients, lab_results = generate_cohort(0, seed=1)
    assert patients.empty and lab_results.empty
    with pytest.raises(ValueError):
        generate_cohort(-1)


def test_generate_cohort_creatinine_stays_plausible():
    # Stage 5 eGFR of 1-3 would invert to 25-50 mg/dL
    for seed in range(20):
        _, lab_results = generate_cohort(50, seed=seed)
        creatinine = lab_results.loc[lab_results["test_name"] == "creatinine", "result_value"]
        assert all(is_plausible("creatinine", value) for value in creatinine)


def test_sample_workflows_table_columns():
    table = sample_workflows_table()
    assert table.index.name == "workflow_name"
    assert {"ckd_stage", "test_name", "frequency", "alert_threshold", "action"}.issubset(table.columns)
