"""
Patient domain model.

Defines the PatientRecord dataclass, latest-result selection, and the
PatientSummary row produced for each classified patient.
"""

import datetime
import math
import typing

from dataclasses import dataclass, field

from .measurement import DATE_PATTERN, VALID_ID, LabResult, normalize_test_name
from .staging import Classification
from .workflow import WorkflowAlert

GENDER_MAP = {
    "m": "M",
    "male": "M",
    "f": "F",
    "female": "F",
    "other": "Other",
    "autre": "Other",
    "o": "Other",
}


@dataclass
class PatientRecord:
    """
    Represents a patient entry.

    Attributes:
        patient_ID: Unique alphanumeric patient identifier.
        birth_date: Date string in 'YYYY-MM-DD' format.
        gender: 'M', 'F' or 'Other' (common spellings are normalized).
        last_egfr_value: Last recorded eGFR, used when no lab result is available.
        last_acr_value: Last recorded ACR, used when no lab result is available.
    """

    patient_ID: str
    birth_date: str
    gender: str
    last_egfr_value: typing.Optional[float] = None
    last_acr_value: typing.Optional[float] = None

    def __post_init__(self):
        if not VALID_ID.match(self.patient_ID):
            raise ValueError(f"Invalid patient ID: {self.patient_ID!r}")

        if not isinstance(self.birth_date, str) or not DATE_PATTERN.match(self.birth_date):
            raise ValueError(f"Invalid birth_date: {self.birth_date!r}")
        # catches 2023-02-30 and friends
        datetime.date.fromisoformat(self.birth_date)

        gender = GENDER_MAP.get(str(self.gender).strip().lower())
        if gender is None:
            raise ValueError(f"Invalid gender: {self.gender!r}")
        self.gender = gender

        for name in ("last_egfr_value", "last_acr_value"):
            value = getattr(self, name)
            if value is None:
                continue
            if math.isnan(value) or math.isinf(value):
                raise ValueError(f"{name} must be finite, got {value!r}")
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value!r}")

    @property
    def is_female(self) -> bool:
        return self.gender == "F"

    def age(self, on: typing.Optional[datetime.date] = None) -> int:
        """Age in whole years on ``on`` (today by default)."""
        on = on or datetime.date.today()
        birth = datetime.date.fromisoformat(self.birth_date)
        years = on.year - birth.year
        if (on.month, on.day) < (birth.month, birth.day):
            years -= 1
        return years


def latest_result(results: typing.Iterable[LabResult], test_name: str) -> typing.Optional[LabResult]:
    """
    Most recent result for ``test_name``. Undated results sort before dated ones;
    among equal dates the last one listed wins.
    """
    wanted = normalize_test_name(test_name)
    latest = None
    for result in results:
        if result.test_name != wanted:
            continue
        if latest is None or result.result_date >= latest.result_date:
            latest = result
    return latest


@dataclass
class PatientSummary:
    """
    Classification outcome for one patient.

    ``classification`` is None when no eGFR was available.
    """

    patient_ID: str
    age: typing.Optional[int] = None
    latest_values: dict[str, float] = field(default_factory=dict)
    classification: typing.Optional[Classification] = None
    alerts: list[WorkflowAlert] = field(default_factory=list)

    def to_dict(self) -> dict:
        row = {
            "patient_id": self.patient_ID,
            "age": self.age,
            "egfr": self.latest_values.get("egfr"),
            "acr": self.latest_values.get("acr"),
            "ckd_stage": None,
            "proteinuria_level": None,
            "progression_risk": None,
            "alert_count": len(self.alerts),
        }
        if self.classification is not None:
            c = self.classification.to_dict()
            row["ckd_stage"] = c["ckd_stage"]
            row["proteinuria_level"] = c["proteinuria_level"]
            row["progression_risk"] = c["progression_risk"]
        return row
