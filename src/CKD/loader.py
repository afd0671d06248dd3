import pathlib

import pandas as pd

# Columns that need renaming → target dataclass fields
RENAME_MAP = {
    # patient columns
    "id": "patient_id",
    "dob": "birth_date",
    "date_of_birth": "birth_date",
    "sex": "gender",
    "last_egfr": "last_egfr_value",
    "last_dfg": "last_egfr_value",
    "last_acr": "last_acr_value",
    "last_proteinuria_value": "last_acr_value",
    # lab result columns
    "test": "test_name",
    "lab_test": "test_name",
    "value": "result_value",
    "result": "result_value",
    "date": "result_date",
    # workflow columns
    "workflow": "workflow_name",
    "name": "workflow_name",
    "stage": "ckd_stage",
    "threshold": "alert_threshold",
}


def _normalize_headers(df: pd.DataFrame) -> pd.DataFrame:
    df.columns = (
        df.columns.astype(str)
        .str.strip()
        .str.replace(r"\s*\(.*?\)", "", regex=True)  # drop any "(…)" e.g. units
        .str.replace(r"\s+", "_", regex=True)  # spaces → underscore
        .str.replace(":", "", regex=False)  # drop colons
        .str.lower()
    )
    return df.rename(
        columns={
            orig: target
            for orig, target in RENAME_MAP.items()
            if orig in df.columns and target not in df.columns
        }
    )


def load_sheets_as_tables(workbook_path: str) -> dict[str, pd.DataFrame]:
    """
    Read each worksheet into a DataFrame:
      - first row = header
      - first column = index (the patient identifier)
      - normalize all headers to snake_case lowercase
      - apply renames from RENAME_MAP
    A .csv file is read as a single table named after the file stem.
    """
    path = pathlib.Path(workbook_path)
    tables: dict[str, pd.DataFrame] = {}

    if path.suffix.lower() == ".csv":
        df = pd.read_csv(path, header=0, index_col=0)
        tables[path.stem] = _normalize_headers(df)
        return tables

    excel = pd.ExcelFile(path, engine="openpyxl")
    for sheet_name in excel.sheet_names:
        df = pd.read_excel(
            excel, sheet_name=sheet_name, header=0, index_col=0, engine="openpyxl"
        )
        tables[sheet_name] = _normalize_headers(df)

    return tables
