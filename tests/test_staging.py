import math

import pytest

from CKD.staging import (
    RISK_TABLE,
    CKDStage,
    Classification,
    ProgressionRisk,
    ProteinuriaLevel,
    classify,
    progression_risk,
    proteinuria_level_from_acr,
    risk_for,
    stage_from_egfr,
)


@pytest.mark.parametrize(
    "egfr, expected",
    [
        (90, CKDStage.STAGE_1),
        (89.999, CKDStage.STAGE_2),
        (60, CKDStage.STAGE_2),
        (59.999, CKDStage.STAGE_3A),
        (45, CKDStage.STAGE_3A),
        (44.999, CKDStage.STAGE_3B),
        (30, CKDStage.STAGE_3B),
        (29.999, CKDStage.STAGE_4),
        (15, CKDStage.STAGE_4),
        (14.999, CKDStage.STAGE_5),
        (0, CKDStage.STAGE_5),
        (250, CKDStage.STAGE_1),
    ],
)
def test_stage_boundaries(egfr, expected):
    assert stage_from_egfr(egfr) is expected


def test_stage_intervals_partition_the_half_line():
    """Every value lands in exactly the stage whose interval contains it."""
    for tenth in range(0, 2000):
        egfr = tenth / 10
        stage = stage_from_egfr(egfr)
        lower, upper = stage.egfr_range
        assert lower <= egfr and (upper is None or egfr < upper)
        containing = [
            s for s in CKDStage
            if s.egfr_range[0] <= egfr and (s.egfr_range[1] is None or egfr < s.egfr_range[1])
        ]
        assert containing == [stage]


def test_stage_is_monotonic_in_egfr():
    ranks = [stage_from_egfr(x).rank for x in range(0, 150)]
    assert ranks == sorted(ranks, reverse=True)


def test_out_of_domain_egfr_falls_into_stage_5():
    """No validation here: negative and NaN values flow through silently."""
    assert stage_from_egfr(-5) is CKDStage.STAGE_5
    assert stage_from_egfr(math.nan) is CKDStage.STAGE_5


@pytest.mark.parametrize(
    "acr, expected",
    [
        (0, ProteinuriaLevel.A1),
        (29.999, ProteinuriaLevel.A1),
        (30, ProteinuriaLevel.A2),
        (150, ProteinuriaLevel.A2),
        (300, ProteinuriaLevel.A2),
        (300.001, ProteinuriaLevel.A3),
        (5000, ProteinuriaLevel.A3),
    ],
)
def test_proteinuria_boundaries(acr, expected):
    assert proteinuria_level_from_acr(acr) is expected


def test_out_of_domain_acr():
    assert proteinuria_level_from_acr(-1) is ProteinuriaLevel.A1
    assert proteinuria_level_from_acr(math.nan) is ProteinuriaLevel.A3


def test_risk_table_is_complete():
    assert len(RISK_TABLE) == len(CKDStage) * len(ProteinuriaLevel)
    for stage in CKDStage:
        for level in ProteinuriaLevel:
            assert isinstance(RISK_TABLE[(stage, level)], ProgressionRisk)


@pytest.mark.parametrize("level", list(ProteinuriaLevel))
def test_risk_never_decreases_as_egfr_falls(level):
    ranks = [progression_risk(egfr, level).rank for egfr in range(150, -1, -1)]
    assert ranks == sorted(ranks)


@pytest.mark.parametrize("egfr", [120, 90, 75, 60, 50, 45, 35, 30, 20, 15, 5])
def test_risk_never_decreases_as_proteinuria_rises(egfr):
    ranks = [progression_risk(egfr, level).rank for level in ProteinuriaLevel]
    assert ranks == sorted(ranks)


@pytest.mark.parametrize(
    "stage, row",
    [
        (CKDStage.STAGE_1, ("Low", "Moderate", "High")),
        (CKDStage.STAGE_2, ("Low", "Moderate", "High")),
        (CKDStage.STAGE_3A, ("Moderate", "High", "Very High")),
        (CKDStage.STAGE_3B, ("High", "Very High", "Very High")),
        (CKDStage.STAGE_4, ("Very High", "Very High", "Very High")),
        (CKDStage.STAGE_5, ("Very High", "Very High", "Very High")),
    ],
)
def test_heat_map_rows(stage, row):
    assert tuple(risk_for(stage, level).value for level in ProteinuriaLevel) == row


@pytest.mark.parametrize(
    "egfr, acr, stage, level, risk",
    [
        (55, 45, "Stage 3A", "A2", "High"),
        (95, 10, "Stage 1", "A1", "Low"),
        (10, 500, "Stage 5", "A3", "Very High"),
    ],
)
def test_scenarios(egfr, acr, stage, level, risk):
    assert stage_from_egfr(egfr).value == stage
    assert proteinuria_level_from_acr(acr).value == level
    assert progression_risk(egfr, level).value == risk


def test_progression_risk_accepts_enum_or_label():
    assert progression_risk(55, ProteinuriaLevel.A2) is ProgressionRisk.HIGH
    assert progression_risk(55, "a2") is ProgressionRisk.HIGH
    with pytest.raises(ValueError):
        progression_risk(55, "A4")


@pytest.mark.parametrize(
    "label, expected",
    [
        ("Stage 3A", CKDStage.STAGE_3A),
        ("stage 3b", CKDStage.STAGE_3B),
        ("3A", CKDStage.STAGE_3A),
        ("G4", CKDStage.STAGE_4),
        (" Stage 1 ", CKDStage.STAGE_1),
        (CKDStage.STAGE_5, CKDStage.STAGE_5),
    ],
)
def test_stage_from_label(label, expected):
    assert CKDStage.from_label(label) is expected


@pytest.mark.parametrize("bad", ["Stage 6", "3", "", "advanced"])
def test_stage_from_label_invalid_raises(bad):
    with pytest.raises(ValueError):
        CKDStage.from_label(bad)


def test_risk_from_label_and_explanation():
    assert ProgressionRisk.from_label("very high") is ProgressionRisk.VERY_HIGH
    assert ProgressionRisk.from_label("Very_High") is ProgressionRisk.VERY_HIGH
    assert "Specialist referral" in ProgressionRisk.VERY_HIGH.explanation
    with pytest.raises(ValueError):
        ProgressionRisk.from_label("extreme")


def test_ranks_follow_declaration_order():
    assert [s.rank for s in CKDStage] == [1, 2, 3, 4, 5, 6]
    assert [p.rank for p in ProteinuriaLevel] == [1, 2, 3]
    assert [r.rank for r in ProgressionRisk] == [1, 2, 3, 4]


def test_classify_combines_all_categories():
    result = classify(55, 45)
    assert result == Classification(
        egfr=55,
        acr=45,
        stage=CKDStage.STAGE_3A,
        proteinuria_level=ProteinuriaLevel.A2,
        progression_risk=ProgressionRisk.HIGH,
    )
    assert result.to_dict() == {
        "egfr": 55,
        "acr": 45,
        "ckd_stage": "Stage 3A",
        "proteinuria_level": "A2",
        "progression_risk": "High",
    }


def test_classify_without_acr_leaves_level_and_risk_blank():
    result = classify(40)
    assert result.stage is CKDStage.STAGE_3B
    assert result.proteinuria_level is None
    assert result.progression_risk is None
    assert result.to_dict()["progression_risk"] is None
