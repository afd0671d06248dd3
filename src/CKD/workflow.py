"""
Workflow domain model.

A workflow is a staged-care rule set: for patients at a given CKD stage it
lists the tests to run, how often, and the threshold at which a result should
raise an alert.
"""

import operator
import re
import typing

from dataclasses import dataclass, field

from .measurement import normalize_test_name
from .staging import CKDStage

_THRESHOLD_PATTERN = re.compile(
    r"""
    ^\s*
    (?P<op><=|>=|<|>|=)         # comparison
    \s*
    (?P<value>\d+(?:\.\d+)?)    # number
    \s*
    (?P<unit>\S.*)?             # optional trailing unit, ignored
    $
    """,
    re.VERBOSE,
)

_OPERATORS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "=": operator.eq,
}


def parse_threshold(threshold: str) -> tuple[str, float]:
    """
    Parse '< 30', '>=300 mg/g' or '> 160' into (operator symbol, value).
    """
    m = _THRESHOLD_PATTERN.match(str(threshold))
    if not m:
        raise ValueError(f"Cannot parse alert threshold {threshold!r}")
    return m.group("op"), float(m.group("value"))


@dataclass
class WorkflowRequirement:
    """
    One required test in a workflow.

    Attributes:
        test_name: Lab test to run (aliases are normalized, e.g. 'DFG' → 'egfr').
        frequency: Free-text schedule, e.g. 'every 3 months'.
        alert_threshold: Comparison such as '< 30'; empty means never alert.
        action: What to do when the threshold is crossed.
    """

    test_name: str
    frequency: str
    alert_threshold: str = ""
    action: str = ""

    def __post_init__(self):
        self.test_name = normalize_test_name(self.test_name)
        if not self.test_name:
            raise ValueError("Workflow requirement needs a test name")
        if not str(self.frequency).strip():
            raise ValueError(f"Workflow requirement for {self.test_name!r} needs a frequency")
        # fail early on malformed thresholds
        if self.alert_threshold:
            parse_threshold(self.alert_threshold)

    def is_triggered(self, value: float) -> bool:
        if not self.alert_threshold:
            return False
        symbol, limit = parse_threshold(self.alert_threshold)
        return _OPERATORS[symbol](value, limit)


@dataclass
class WorkflowAlert:
    """A requirement whose threshold was crossed by a patient's latest result."""

    patient_ID: str
    workflow_name: str
    test_name: str
    value: float
    threshold: str
    action: str = ""

    @property
    def message(self) -> str:
        text = (
            f"Patient {self.patient_ID}: {self.test_name} = {self.value:g} "
            f"crossed threshold {self.threshold.strip()} ({self.workflow_name})"
        )
        if self.action:
            text += f"; action: {self.action}"
        return text

    def to_dict(self) -> dict:
        return {
            "patient_id": self.patient_ID,
            "workflow": self.workflow_name,
            "test_name": self.test_name,
            "value": self.value,
            "threshold": self.threshold,
            "action": self.action,
            "message": self.message,
        }


@dataclass
class Workflow:
    """
    Attributes:
        name: Workflow name.
        ckd_stage: Stage the workflow targets, or None for every stage.
        requirements: Tests required by the workflow.
        description: Optional free text.
    """

    name: str
    ckd_stage: typing.Optional[CKDStage] = None
    requirements: list[WorkflowRequirement] = field(default_factory=list)
    description: str = ""

    def __post_init__(self):
        if not str(self.name).strip():
            raise ValueError("Workflow name must not be empty")
        if self.ckd_stage is not None:
            self.ckd_stage = CKDStage.from_label(self.ckd_stage)

    def applies_to(self, stage: typing.Optional[CKDStage]) -> bool:
        if self.ckd_stage is None:
            return True
        return stage is not None and stage == self.ckd_stage

    def evaluate(
        self,
        patient_id: str,
        stage: typing.Optional[CKDStage],
        latest_values: dict[str, float],
    ) -> list[WorkflowAlert]:
        """
        Check each requirement against the patient's latest value for that test.
        Tests without a value are skipped.
        """
        if not self.applies_to(stage):
            return []
        alerts: list[WorkflowAlert] = []
        for requirement in self.requirements:
            value = latest_values.get(requirement.test_name)
            if value is None:
                continue
            if requirement.is_triggered(value):
                alerts.append(
                    WorkflowAlert(
                        patient_ID=patient_id,
                        workflow_name=self.name,
                        test_name=requirement.test_name,
                        value=value,
                        threshold=requirement.alert_threshold,
                        action=requirement.action,
                    )
                )
        return alerts
