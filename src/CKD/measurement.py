"""
Lab result domain model.

Defines the LabResult dataclass for one quantitative lab measurement and the
table of tests the toolkit knows how to interpret.
"""

import math
import re

from dataclasses import dataclass

VALID_ID = re.compile(r"^[A-Za-z0-9]+$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# test name → (default unit, plausible upper bound)
KNOWN_TESTS = {
    "egfr": ("mL/min/1.73m²", 200.0),
    "acr": ("mg/g", 5000.0),
    "creatinine": ("mg/dL", 20.0),
    "systolic_bp": ("mmHg", 300.0),
    "diastolic_bp": ("mmHg", 200.0),
}

TEST_ALIASES = {
    "dfg": "egfr",
    "gfr": "egfr",
    "uacr": "acr",
    "albumin_creatinine_ratio": "acr",
    "albumin_to_creatinine_ratio": "acr",
    "proteinuria": "acr",
    "creat": "creatinine",
    "serum_creatinine": "creatinine",
    "systolic": "systolic_bp",
    "sbp": "systolic_bp",
    "diastolic": "diastolic_bp",
    "dbp": "diastolic_bp",
}


def normalize_test_name(name: str) -> str:
    """
    'eGFR', 'DFG' and 'Albumin creatinine ratio' become 'egfr', 'egfr' and 'acr'.
    Unknown names are returned normalized but otherwise unchanged.
    """
    key = re.sub(r"[\s\-]+", "_", str(name).strip().lower())
    return TEST_ALIASES.get(key, key)


def is_plausible(test_name: str, value: float) -> bool:
    """True if ``value`` does not exceed the test's plausible upper bound."""
    _, upper = KNOWN_TESTS[normalize_test_name(test_name)]
    return value <= upper


@dataclass
class LabResult:
    """
    Represents one lab result for a patient.

    Attributes:
        patient_ID: Unique alphanumeric patient identifier.
        test_name: One of KNOWN_TESTS (aliases are normalized).
        result_value: Non-negative, finite numeric value.
        unit: Unit string; the test's default unit when left empty.
        result_date: 'YYYY-MM-DD' or empty when unknown.
    """

    patient_ID: str
    test_name: str
    result_value: float
    unit: str = ""
    result_date: str = ""

    def __post_init__(self):
        if not VALID_ID.match(self.patient_ID):
            raise ValueError(f"Invalid patient ID: {self.patient_ID!r}")

        self.test_name = normalize_test_name(self.test_name)
        if self.test_name not in KNOWN_TESTS:
            raise ValueError(f"Unknown lab test: {self.test_name!r}")

        # rejected here so the classifier never sees them
        if isinstance(self.result_value, bool) or not isinstance(self.result_value, (int, float)):
            raise TypeError(
                f"result_value must be a number, got {type(self.result_value).__name__}"
            )
        if math.isnan(self.result_value) or math.isinf(self.result_value):
            raise ValueError(f"{self.test_name} value must be finite, got {self.result_value!r}")
        if self.result_value < 0:
            raise ValueError(f"{self.test_name} value must be non-negative, got {self.result_value!r}")

        if not self.unit:
            self.unit = KNOWN_TESTS[self.test_name][0]

        if self.result_date and not DATE_PATTERN.match(self.result_date):
            raise ValueError(f"Invalid result_date: {self.result_date!r}")
