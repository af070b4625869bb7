from pathlib import Path

import numpy as np
import pandas as pd

from config.constants import (EXPOSURE_COLUMNS, ORGANISM_COLUMNS, SPECIES_COLUMN, SAMPLING_HOUR_COLUMN,
                              HOURS_PER_DAY)
from paramest.errors import InputError


def load_data(path, sheet=None):
    """
    Load a table from an Excel workbook or a CSV file.

    Args:
        path (str | Path): .xlsx / .xls / .csv file.
        sheet (str, optional): Sheet name for workbooks; first sheet if None.

    Returns:
        pd.DataFrame
    """
    path = Path(path)
    if not path.exists():
        raise InputError(f"Input file not found: {path}")
    if path.suffix.lower() in (".xlsx", ".xlsm", ".xls"):
        return pd.read_excel(path, sheet_name=sheet if sheet is not None else 0)
    return pd.read_csv(path)


def filter_species(df, species):
    """
    Keep rows of one species when the table has a Species column.
    """
    if species is None or SPECIES_COLUMN not in df.columns:
        return df
    out = df[df[SPECIES_COLUMN].astype(str).str.strip().str.lower() == str(species).strip().lower()]
    if out.empty:
        raise InputError(f"No rows for species '{species}'")
    return out


def _require_columns(df, required, table):
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise InputError(f"Missing columns in the {table} table: {', '.join(missing)}")


def load_exposure(path, sheet=None, species=None):
    """
    Exposure table: Day and one concentration column per isotope, sorted by Day.
    """
    df = filter_species(load_data(path, sheet), species)
    _require_columns(df, [EXPOSURE_COLUMNS[k] for k in ("day", "iso1", "iso2")], "exposure")
    return df.sort_values(EXPOSURE_COLUMNS["day"]).reset_index(drop=True)


def resolve_sampling_hours(df):
    """
    Add the sampling time in hours: Hour where present, otherwise Day * 24.
    """
    day_col, hour_col = ORGANISM_COLUMNS["day"], ORGANISM_COLUMNS["hour"]
    if hour_col not in df.columns and day_col not in df.columns:
        raise InputError(f"Organism table needs a '{hour_col}' or '{day_col}' column")

    hours = pd.Series(np.nan, index=df.index, dtype=float)
    if hour_col in df.columns:
        hours = pd.to_numeric(df[hour_col], errors="coerce")
    if day_col in df.columns:
        hours = hours.fillna(pd.to_numeric(df[day_col], errors="coerce") * HOURS_PER_DAY)

    out = df.copy()
    out[SAMPLING_HOUR_COLUMN] = hours.astype(float)
    return out


def load_organisms(path, sheet=None, species=None):
    """
    Organism table with ids as strings and the resolved sampling-hour column.
    """
    df = filter_species(load_data(path, sheet), species)
    _require_columns(df, [ORGANISM_COLUMNS[k] for k in ("id", "iso1", "iso2", "weight")], "organism")
    df = resolve_sampling_hours(df)
    df[ORGANISM_COLUMNS["id"]] = df[ORGANISM_COLUMNS["id"]].astype(str)
    return df.reset_index(drop=True)


def trajectories_frame(trajectories):
    """
    Stack per-individual trajectories into one long table with an ID column.
    """
    if not trajectories:
        return pd.DataFrame(columns=["ID", "Day", "m_iso1", "m_iso2"])
    frames = []
    for ident, traj in trajectories.items():
        frame = traj.copy()
        frame.insert(0, "ID", ident)
        frames.append(frame)
    return pd.concat(frames, ignore_index=True)


def save_result(batch, run_dir, settings=None):
    """
    Write the batch outputs into the run directory.

    Files:
        results.csv  - one row per individual
        results.xlsx - sheets 'results', 'trajectories', 'seeds'

    Args:
        batch (BatchResult): Output of paramest.core.run_batch.
        run_dir (str | Path): Target directory (created if missing).
        settings (dict, optional): Run settings recorded in the 'seeds' sheet.

    Returns:
        dict: Paths of the written files.
    """
    run_dir = Path(run_dir)
    run_dir.mkdir(parents=True, exist_ok=True)

    csv_path = run_dir / "results.csv"
    xlsx_path = run_dir / "results.xlsx"
    batch.table.to_csv(csv_path, index=False)

    seeds = {"ke_seed": batch.ke_seed}
    seeds.update(settings or {})
    seeds_df = pd.DataFrame({"Setting": list(seeds.keys()), "Value": [str(v) for v in seeds.values()]})

    with pd.ExcelWriter(xlsx_path, engine='xlsxwriter') as writer:
        batch.table.to_excel(writer, sheet_name="results", index=False)
        trajectories_frame(batch.trajectories).to_excel(writer, sheet_name="trajectories", index=False)
        seeds_df.to_excel(writer, sheet_name="seeds", index=False)

    return {"csv": csv_path, "xlsx": xlsx_path}
