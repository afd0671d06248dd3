import abc
import datetime
import logging
import typing

import pandas as pd

from collections import defaultdict
from dataclasses import dataclass

from stairval.notepad import Notepad

from .measurement import KNOWN_TESTS, LabResult, is_plausible
from .patient import PatientRecord, PatientSummary, latest_result
from .staging import CKDStage, classify
from .workflow import Workflow, WorkflowRequirement

logger = logging.getLogger(__name__)

# Minimal required columns (after renaming) to identify each sheet type.
# The first column of every sheet is its index and is brought in separately.
PATIENT_KEY_COLUMNS = {"birth_date", "gender"}
LAB_RESULT_KEY_COLUMNS = {"test_name", "result_value"}
WORKFLOW_KEY_COLUMNS = {"test_name", "frequency"}

# Friendly aliases → reduces friction while keeping behavior explicit
KNOWN_SHEET_ALIASES: dict[str, set[str]] = {"patients": {"patients", "patient"},
                                            "lab_results": {"lab_results", "lab_result", "labs", "results",
                                                            "measurements"},
                                            "workflows": {"workflows", "workflow", "rules"}}


def classify_sheet(sheet_name: str, df: pd.DataFrame) -> str:
    """
    Sheet kind by name first ('labs' → 'lab_results'), then by columns.
    Returns 'patients', 'lab_results', 'workflows' or 'skip'.
    """
    key = str(sheet_name).strip().casefold()
    for kind, aliases in KNOWN_SHEET_ALIASES.items():
        if key in aliases:
            return kind
    cols = set(df.columns)
    # workflows also carry test_name, so check them first
    if WORKFLOW_KEY_COLUMNS.issubset(cols):
        return "workflows"
    if LAB_RESULT_KEY_COLUMNS.issubset(cols):
        return "lab_results"
    if PATIENT_KEY_COLUMNS.issubset(cols):
        return "patients"
    return "skip"


@dataclass
class TypedTables:
    """
    Explicit, typed access to workbook sheets.
    Any field can be `None`, meaning that the sheet was not provided.
    """
    patients: pd.DataFrame | None
    lab_results: pd.DataFrame | None
    workflows: pd.DataFrame | None


class TableMapper(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def apply_mapping(
            self, tables: dict[str, pd.DataFrame], notepad: Notepad
    ) -> typing.Sequence[PatientSummary]:
        # return one classified summary per patient
        raise NotImplementedError


class DefaultMapper(TableMapper):
    def __init__(self, strict: bool = False, reference_date: datetime.date | None = None):
        """
        - strict False: implausible values are logged as WARNINGS
        - strict True : implausible values are logged as ERRORS
        reference_date is the day ages are computed on (today by default).
        """
        self.strict = strict
        self.reference_date = reference_date
        # filled by apply_mapping, handy for writing alert tables
        self.workflows: list[Workflow] = []

    def apply_mapping(
            self, tables: dict[str, pd.DataFrame], notepad: Notepad
    ) -> list[PatientSummary]:
        """
        Process:
        1) choose/validate input tables
        2) map rows to domain records
        3) group records per patient
        4) classify each patient and evaluate workflows
        """
        typed_tables = self._choose_named_tables(tables, notepad)
        patient_records = self._map_patients_table(typed_tables.patients, notepad)
        lab_results = self._map_lab_results_table(typed_tables.lab_results, notepad)
        self.workflows = self._map_workflows_table(typed_tables.workflows, notepad)

        grouped = self._group_records_by_patient(patient_records, lab_results, notepad)
        summaries = [
            self.summarise_patient(patient_id, bundle, self.workflows, notepad)
            for patient_id, bundle in grouped.items()
        ]
        logger.info(
            f"Mapped {len(patient_records)} patients, {len(lab_results)} lab results, "
            f"{len(self.workflows)} workflows"
        )
        return summaries

    @staticmethod
    def _prepare_sheet(df: pd.DataFrame, id_column: str) -> pd.DataFrame:
        """Bring the index into a column and name it appropriately."""
        working = df.reset_index()
        original = working.columns[0]
        return working.rename(columns={original: id_column})

    @staticmethod
    def _cell_str(value: typing.Any) -> str:
        """Trimmed string; None, NaN and blank cells become ''."""
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return ""
        return str(value).strip()

    @staticmethod
    def _cell_float(value: typing.Any) -> float | None:
        """
        Float value of a cell; None, NaN and blank cells become None.
        Non-numeric text raises ValueError.
        """
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        if not isinstance(value, str) and pd.isna(value):
            return None
        return float(value)

    @staticmethod
    def _normalize_date(value: typing.Any) -> str:
        """
        Dates as 'YYYY-MM-DD':
        - date / datetime / pandas Timestamp cells are formatted
        - other strings are parsed with pandas; unparsable text is returned unchanged
        - empty/NaN/NaT -> empty string
        """
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return ""
        if isinstance(value, datetime.date):
            return value.strftime("%Y-%m-%d")
        s = str(value).strip()
        if not s:
            return ""
        try:
            return pd.Timestamp(s).strftime("%Y-%m-%d")
        except ValueError:
            return s

    def _choose_named_tables(self, tables: dict[str, pd.DataFrame], notepad: Notepad) -> TypedTables:
        """
        Prefer explicit sheet names (plus common aliases), then fall back to
        column-based classification for the remaining sheets.
        """
        chosen: dict[str, pd.DataFrame] = {}
        by_name = {name: classify_sheet(name, pd.DataFrame()) for name in tables}
        for sheet_name, kind in by_name.items():
            if kind != "skip" and kind not in chosen:
                chosen[kind] = tables[sheet_name]
        for sheet_name, df in tables.items():
            if by_name[sheet_name] != "skip":
                continue
            kind = classify_sheet(sheet_name, df)
            if kind == "skip":
                notepad.add_warning(f"Sheet {sheet_name!r}: Skipping sheet: cannot classify")
            elif kind not in chosen:
                chosen[kind] = df

        selected = TypedTables(
            patients=chosen.get("patients"),
            lab_results=chosen.get("lab_results"),
            workflows=chosen.get("workflows"),
        )

        # Hard-minimum: at least patients or lab results must exist
        if selected.patients is None and selected.lab_results is None:
            notepad.add_error("Missing required sheet: either 'patients' or 'lab_results'.")

        return selected

    # Table-level wrapper mappers
    def _map_patients_table(self, df: pd.DataFrame | None, notepad: Notepad) -> list[PatientRecord]:
        """
        Sheet-level wrapper for patient rows:
          - normalize index to 'patient_ID'
          - require the key patient columns
          - delegate row conversion to parse_patient_row
        """
        if df is None:
            return []
        working = self._prepare_sheet(df, "patient_ID")
        missing = sorted(PATIENT_KEY_COLUMNS - set(working.columns))
        if missing:
            notepad.add_error(f"Sheet 'patients': missing required columns: {missing}")
            return []

        records: list[PatientRecord] = []
        seen: set[str] = set()
        for index, row in working.iterrows():
            record = self.parse_patient_row(row, "patients", index, notepad, self.strict)
            if record is None:
                continue
            if record.patient_ID in seen:
                notepad.add_error(f"Sheet 'patients', row {index}: duplicate patient ID {record.patient_ID!r}")
                continue
            seen.add(record.patient_ID)
            records.append(record)
        return records

    def _map_lab_results_table(self, df: pd.DataFrame | None, notepad: Notepad) -> list[LabResult]:
        """
        Sheet-level wrapper for lab result rows:
          - normalize index to 'patient_ID'
          - require the key lab result columns
          - delegate row conversion to parse_lab_result_row
        """
        if df is None:
            return []
        working = self._prepare_sheet(df, "patient_ID")
        missing = sorted(LAB_RESULT_KEY_COLUMNS - set(working.columns))
        if missing:
            notepad.add_error(f"Sheet 'lab_results': missing required columns: {missing}")
            return []

        records: list[LabResult] = []
        for index, row in working.iterrows():
            result = self.parse_lab_result_row(row, "lab_results", index, notepad, self.strict)
            if result is not None:
                records.append(result)
        return records

    def _map_workflows_table(self, df: pd.DataFrame | None, notepad: Notepad) -> list[Workflow]:
        """
        Sheet-level wrapper for workflow rows. Each row is one requirement;
        rows sharing a workflow name form one Workflow.
        """
        if df is None:
            return []
        working = self._prepare_sheet(df, "workflow_name")
        missing = sorted(WORKFLOW_KEY_COLUMNS - set(working.columns))
        if missing:
            notepad.add_error(f"Sheet 'workflows': missing required columns: {missing}")
            return []

        workflows: dict[str, Workflow] = {}
        for index, row in working.iterrows():
            name = self._cell_str(row.get("workflow_name"))
            stage_label = self._cell_str(row.get("ckd_stage"))
            try:
                requirement = WorkflowRequirement(
                    test_name=self._cell_str(row.get("test_name")),
                    frequency=self._cell_str(row.get("frequency")),
                    alert_threshold=self._cell_str(row.get("alert_threshold")),
                    action=self._cell_str(row.get("action")),
                )
                workflow = workflows.get(name)
                if workflow is None:
                    workflow = Workflow(
                        name=name,
                        ckd_stage=stage_label or None,
                        description=self._cell_str(row.get("description")),
                    )
                    workflows[name] = workflow
                elif (stage_label and workflow.ckd_stage is not None
                      and CKDStage.from_label(stage_label) != workflow.ckd_stage):
                    # a workflow targets a single stage
                    raise ValueError(
                        f"workflow {name!r} already targets {workflow.ckd_stage.value!r}, cannot add a "
                        f"{stage_label!r} requirement"
                    )
            except (ValueError, TypeError) as exception:
                notepad.add_error(f"Sheet 'workflows', row {index}: {exception}")
                continue
            workflow.requirements.append(requirement)
        return list(workflows.values())

    @staticmethod
    def parse_patient_row(row: pd.Series, sheet_name: str, index: typing.Any,
                          notepad: Notepad, strict: bool = False) -> PatientRecord | None:
        """
        Parse a single patient row. Returns None (and records an error) if validation fails.
        Implausibly high last eGFR/ACR values are kept but flagged like lab results.
        """
        try:
            record = PatientRecord(
                patient_ID=DefaultMapper._cell_str(row["patient_ID"]),
                birth_date=DefaultMapper._normalize_date(row.get("birth_date")),
                gender=DefaultMapper._cell_str(row.get("gender")),
                last_egfr_value=DefaultMapper._cell_float(row.get("last_egfr_value")),
                last_acr_value=DefaultMapper._cell_float(row.get("last_acr_value")),
            )
        except (ValueError, TypeError) as exception:
            notepad.add_error(f"Sheet {sheet_name!r}, row {index}: {exception}")
            return None

        for test_name, value in (("egfr", record.last_egfr_value), ("acr", record.last_acr_value)):
            if value is not None and not is_plausible(test_name, value):
                msg = (f"Sheet {sheet_name!r}, row {index}: implausible last {test_name} value {value:g} "
                       f"for patient {record.patient_ID}")
                (notepad.add_error if strict else notepad.add_warning)(msg)
        return record

    @staticmethod
    def parse_lab_result_row(row: pd.Series, sheet_name: str, index: typing.Any,
                             notepad: Notepad, strict: bool = False) -> LabResult | None:
        """
        Parse a single lab result row. Returns None (and records an error) if
        validation fails; implausibly high values are kept but flagged.
        """
        try:
            value = DefaultMapper._cell_float(row.get("result_value"))
            if value is None:
                raise ValueError("missing result_value")
            result = LabResult(
                patient_ID=DefaultMapper._cell_str(row["patient_ID"]),
                test_name=DefaultMapper._cell_str(row.get("test_name")),
                result_value=value,
                unit=DefaultMapper._cell_str(row.get("unit")),
                result_date=DefaultMapper._normalize_date(row.get("result_date")),
            )
        except (ValueError, TypeError) as exception:
            notepad.add_error(f"Sheet {sheet_name!r}, row {index}: {exception}")
            return None

        if not is_plausible(result.test_name, result.result_value):
            msg = (f"Sheet {sheet_name!r}, row {index}: implausible {result.test_name} value "
                   f"{result.result_value:g} for patient {result.patient_ID}")
            (notepad.add_error if strict else notepad.add_warning)(msg)
        return result

    # Grouping and classification
    def _group_records_by_patient(self, patient_records: list[PatientRecord], lab_results: list[LabResult],
                                  notepad: Notepad) -> dict[str, dict[str, typing.Any]]:
        """
        Group all domain records by patient identifier, producing a bundle per patient
        """
        grouped = defaultdict(lambda: {"patient": None, "lab_results": []})
        for patient in patient_records:
            grouped[patient.patient_ID]["patient"] = patient
        known = set(grouped)
        for result in lab_results:
            if patient_records and result.patient_ID not in known:
                notepad.add_warning(f"Sheet 'lab_results': lab results for unknown patient {result.patient_ID!r}")
                known.add(result.patient_ID)
            grouped[result.patient_ID]["lab_results"].append(result)
        return grouped

    def summarise_patient(self, patient_id: str, bundle: dict[str, typing.Any], workflows: list[Workflow],
                          notepad: Notepad) -> PatientSummary:
        """
        Latest value per known test (lab results first, patient-sheet values as
        fallback), classification, and any workflow alerts.
        """
        patient: PatientRecord | None = bundle.get("patient")
        results: list[LabResult] = bundle.get("lab_results", [])

        latest_values: dict[str, float] = {}
        for test_name in KNOWN_TESTS:
            result = latest_result(results, test_name)
            if result is not None:
                latest_values[test_name] = result.result_value
        if patient is not None:
            if "egfr" not in latest_values and patient.last_egfr_value is not None:
                latest_values["egfr"] = patient.last_egfr_value
            if "acr" not in latest_values and patient.last_acr_value is not None:
                latest_values["acr"] = patient.last_acr_value

        summary = PatientSummary(
            patient_ID=patient_id,
            age=patient.age(self.reference_date) if patient is not None else None,
            latest_values=latest_values,
        )

        if "egfr" not in latest_values:
            notepad.add_warning(f"Patient {patient_id!r}: no eGFR available, not classified")
        else:
            if "acr" not in latest_values:
                notepad.add_warning(f"Patient {patient_id!r}: no ACR available, proteinuria level and risk left blank")
            summary.classification = classify(latest_values["egfr"], latest_values.get("acr"))

        stage = summary.classification.stage if summary.classification is not None else None
        for workflow in workflows:
            summary.alerts.extend(workflow.evaluate(patient_id, stage, latest_values))

        logger.debug(
            f"Patient {patient_id}: "
            f"{summary.classification.to_dict() if summary.classification else 'unclassified'}, "
            f"{len(summary.alerts)} alert(s)"
        )
        return summary
