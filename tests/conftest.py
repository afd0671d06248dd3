import pandas as pd
import pytest


def build_patients() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "birth_date": ["1970-05-01", "1950-01-01", "1985-03-15"],
            "gender": ["F", "M", "M"],
            "last_egfr_value": [float("nan"), float("nan"), 95.0],
            "last_acr_value": [float("nan"), float("nan"), 10.0],
        },
        index=pd.Index(["P1", "P2", "P3"], name="patient_id"),
    )


def build_lab_results() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "test_name": ["egfr", "egfr", "acr", "egfr", "acr", "systolic_bp"],
            "result_value": [70, 55, 45, 10, 500, 170],
            "unit": ["mL/min/1.73m²", "mL/min/1.73m²", "mg/g", "mL/min/1.73m²", "mg/g", "mmHg"],
            "result_date": ["2024-01-10", "2024-06-01", "2024-06-01", "2024-05-01", "2024-05-01", "2024-05-01"],
        },
        index=pd.Index(["P1", "P1", "P1", "P2", "P2", "P2"], name="patient_id"),
    )


def build_workflows() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "ckd_stage": ["Stage 5", ""],
            "test_name": ["egfr", "systolic_bp"],
            "frequency": ["monthly", "every visit"],
            "alert_threshold": ["< 12", ">= 160"],
            "action": ["Refer for dialysis assessment", "Review antihypertensive treatment"],
        },
        index=pd.Index(["Stage 5 care", "Blood pressure"], name="workflow_name"),
    )


@pytest.fixture
def sample_tables() -> dict[str, pd.DataFrame]:
    """
    In-memory tables shaped like a loaded workbook:
      - P1: latest eGFR 55, ACR 45 → Stage 3A / A2 / High
      - P2: eGFR 10, ACR 500, systolic 170 → Stage 5 / A3 / Very High, two alerts
      - P3: no lab results, patient-sheet values 95 / 10 → Stage 1 / A1 / Low
    """
    return {
        "patients": build_patients(),
        "lab_results": build_lab_results(),
        "workflows": build_workflows(),
    }


@pytest.fixture
def sample_workbook(tmp_path) -> str:
    """The sample_tables content written to an .xlsx workbook."""
    path = tmp_path / "cohort.xlsx"
    with pd.ExcelWriter(path, engine="openpyxl") as w:
        build_patients().to_excel(w, sheet_name="patients")
        build_lab_results().to_excel(w, sheet_name="lab_results")
        build_workflows().to_excel(w, sheet_name="workflows")
    return str(path)
