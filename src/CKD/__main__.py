"""
Command‑line interface for the CKD toolkit.
Classifies single measurements or whole workbooks of patients and lab
results, audits workbooks, and generates synthetic demo cohorts.
"""

import json
import logging
import math
import pathlib
import sys
import typing

from collections import namedtuple
from datetime import datetime

import click
import pandas as pd

from stairval.notepad import Notepad, create_notepad

from .estimation import generate_cohort, sample_workflows_table
from .loader import load_sheets_as_tables
from .mapper import (
    LAB_RESULT_KEY_COLUMNS,
    PATIENT_KEY_COLUMNS,
    WORKFLOW_KEY_COLUMNS,
    DefaultMapper,
    classify_sheet,
)
from .staging import classify as classify_values

AuditEntry = namedtuple("AuditEntry", ["step", "sheet", "message", "level"])

REQUIRED_COLUMNS = {
    "patients": PATIENT_KEY_COLUMNS,
    "lab_results": LAB_RESULT_KEY_COLUMNS,
    "workflows": WORKFLOW_KEY_COLUMNS,
}


def _configure_logging(verbose_logging: bool, log_file_path: typing.Optional[str]) -> None:
    handlers: list[logging.Handler] = []
    if log_file_path:
        handlers.append(logging.FileHandler(log_file_path, mode="a", encoding="utf-8"))
    if verbose_logging:
        handlers.append(logging.StreamHandler(sys.stderr))
    if handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose_logging else logging.INFO,
            format="%(asctime)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            handlers=handlers,
            force=True,
        )


@click.group()
@click.option("--verbose-logging", is_flag=True, help="Also emit debug logs to stderr")
@click.option(
    "--log-file-path",
    type=click.Path(dir_okay=False, writable=True),
    help="Append timestamped logs to this file",
)
def main(verbose_logging: bool, log_file_path: typing.Optional[str]):
    """CKD: stage, proteinuria and progression-risk classification of kidney lab data."""
    _configure_logging(verbose_logging, log_file_path)


def _validate_measurement(ctx, param, value):
    # the classifier accepts anything; the CLI does not
    if value is None:
        return value
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise click.BadParameter(f"must be a finite, non-negative number, got {value}")
    return value


@main.command(name="classify")
@click.option("--egfr", required=True, type=float, callback=_validate_measurement,
              help="eGFR in mL/min/1.73m²")
@click.option("--acr", type=float, default=None, callback=_validate_measurement,
              help="albumin-to-creatinine ratio in mg/g")
@click.option("-r", "--raw", is_flag=True, help="Emit JSON instead of text")
def classify(egfr: float, acr: typing.Optional[float], raw: bool):
    """
    Classify a single eGFR (and optionally ACR) measurement.
    """
    result = classify_values(egfr, acr)
    if raw:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.echo(f"CKD stage:         {result.stage.value}")
    if result.proteinuria_level is not None:
        click.echo(f"Proteinuria level: {result.proteinuria_level.value}")
        click.echo(f"Progression risk:  {result.progression_risk.value}")
        click.echo(result.progression_risk.explanation)


@main.command(name="classify-excel")
@click.option(
    "-e",
    "--excel-path",
    "excel_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="path to the Excel workbook (or CSV file)",
)
@click.option("--strict/--no-strict", default=False,
              help="Treat implausible values as errors and exit non-zero on errors (default: warn).")
@click.option("--verbose", is_flag=True, help="Show preprocessing and classification steps")
def classify_excel(excel_file: str, strict: bool = False, verbose: bool = False):
    """
    Read each sheet, pick out patients, lab results and workflows, then:
      - classify every patient from their latest eGFR and ACR
      - evaluate workflow alert thresholds against the latest results
    Results are written as CSV to a timestamped output folder.
    """
    # 1) Read all sheets into DataFrames
    try:
        tables = load_sheets_as_tables(excel_file)
    except Exception as e:
        logging.error(f"Failed to read '{excel_file}': {e}")
        click.echo(f"Error: cannot read {excel_file}: {e}", err=True)
        sys.exit(1)

    # optionally audit preprocessing
    if verbose:
        click.echo("")
        for entry in preprocess(tables):
            click.echo("              " + _style_entry(f"{entry.step:20} {entry.sheet:15} {entry.message}", entry))
        click.echo("")  # a blank line before mapping output

    # 2) Map and classify, collecting issues
    mapper = DefaultMapper(strict=strict)
    notepad = create_notepad("ckd")
    summaries = mapper.apply_mapping(tables, notepad)

    # 3) Report any errors or warnings
    _report_issues(notepad)
    if strict and notepad.has_errors(include_subsections=True):
        click.echo("Aborting: errors found in strict mode.", err=True)
        sys.exit(1)

    # 4) Write results
    output_dir = _prepare_output_dir()
    alerts = _write_results(summaries, output_dir)

    # 5) Final summary
    classified = sum(1 for s in summaries if s.classification is not None)
    click.echo(f"Wrote classifications to {output_dir}")
    click.echo(f"Classified {classified} patients")
    click.echo(f"Raised {alerts} workflow alerts")


@main.command(name="audit-excel")
@click.option(
    "-e",
    "--excel-path",
    "excel_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="path to the Excel workbook (or CSV file)",
)
@click.option("-r", "--raw", is_flag=True, help="Emit JSON instead of a table")
def audit_excel(excel_file: str, raw: bool):
    """
    Run the preprocessing audit only and print it as a table or JSON.
    """
    entries = preprocess(load_sheets_as_tables(excel_file))
    if raw:
        click.echo(json.dumps([entry._asdict() for entry in entries], indent=2))
        return
    click.echo(f"{'SHEET':15}  {'STEP':20}  {'LEVEL':7}  MESSAGE")
    for entry in entries:
        line = f"{entry.sheet:15}  {entry.step:20}  {entry.level:7}  {entry.message}"
        click.echo(_style_entry(line, entry))


@main.command(name="generate")
@click.option(
    "-o",
    "--output",
    "output_path",
    required=True,
    type=click.Path(dir_okay=False, writable=True),
    help="where to write the demo workbook (.xlsx)",
)
@click.option("-n", "--size", default=20, show_default=True, type=click.IntRange(min=0),
              help="number of synthetic patients")
@click.option("--seed", type=int, default=None, help="random seed for reproducible output")
@click.option("--with-workflows/--without-workflows", default=True, help="include a sample workflows sheet")
def generate(output_path: str, size: int, seed: typing.Optional[int], with_workflows: bool):
    """
    Write a synthetic demo workbook (patients, lab_results and optionally
    workflows sheets). Values are plausible, not clinical.
    """
    patients, lab_results = generate_cohort(size, seed=seed)
    out = pathlib.Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(out, engine="openpyxl") as writer:
        patients.to_excel(writer, sheet_name="patients")
        lab_results.to_excel(writer, sheet_name="lab_results")
        if with_workflows:
            sample_workflows_table().to_excel(writer, sheet_name="workflows")
    logging.info(f"Generated {size} synthetic patients into '{out}'")
    click.echo(f"Wrote {size} synthetic patients to {out}")


def _style_entry(line: str, entry: AuditEntry) -> str:
    # color by level
    if entry.level == "error":
        return click.style(line, fg="red")
    if entry.level in ("warn", "warning"):
        return click.style(line, fg="yellow")
    return click.style(line, fg="cyan")


def _report_issues(notepad: Notepad):
    # if there were errors, show them
    if notepad.has_errors(include_subsections=True):
        click.echo("Errors found in mapping:")
        for err in notepad.errors():
            click.echo(f"- {err.message}")
    # show any warnings but keep going
    if notepad.has_warnings(include_subsections=True):
        click.echo("Warnings found in mapping:")
        for w in notepad.warnings():
            click.echo(f"- {w.message}")


def _prepare_output_dir() -> pathlib.Path:
    # use YYYY-MM-DD_HH-MM-SS for human-readable timestamps
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    output_dir = pathlib.Path.cwd() / "ckd_classifications" / timestamp
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


def _write_results(summaries: list, output_dir: pathlib.Path) -> int:
    """Write classifications.csv and alerts.csv; return the number of alerts."""
    classification_columns = [
        "patient_id", "age", "egfr", "acr", "ckd_stage", "proteinuria_level", "progression_risk", "alert_count",
    ]
    alert_columns = ["patient_id", "workflow", "test_name", "value", "threshold", "action", "message"]

    rows = [summary.to_dict() for summary in summaries]
    alert_rows = [alert.to_dict() for summary in summaries for alert in summary.alerts]

    pd.DataFrame(rows, columns=classification_columns).to_csv(output_dir / "classifications.csv", index=False)
    pd.DataFrame(alert_rows, columns=alert_columns).to_csv(output_dir / "alerts.csv", index=False)
    return len(alert_rows)


def preprocess(tables: dict[str, pd.DataFrame]) -> list[AuditEntry]:
    """
    Run lightweight audits on each sheet:
      - header normalization
      - sheet classification
      - required-column presence
    """
    entries: list[AuditEntry] = []

    # Step 1: header counts
    for name, df in tables.items():
        entries.append(AuditEntry(
            step="normalize-headers",
            sheet=name,
            message=f"{len(df.columns)} cols",
            level="info",
        ))

    # Step 2: classify
    kinds = {name: classify_sheet(name, df) for name, df in tables.items()}
    for name, kind in kinds.items():
        entries.append(AuditEntry(
            step="classify-sheet",
            sheet=name,
            message=kind,
            level="info" if kind != "skip" else "warning",
        ))

    # Step 3: required columns
    for name, df in tables.items():
        required = REQUIRED_COLUMNS.get(kinds[name])
        if required is None:
            continue
        missing = sorted(required - set(df.columns))
        if missing:
            entries.append(AuditEntry(
                step="column-check",
                sheet=name,
                message=f"missing {', '.join(missing)}",
                level="error",
            ))
    return entries


if __name__ == "__main__":
    main()
