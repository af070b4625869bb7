from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.metrics import mean_squared_error, mean_absolute_error
from tqdm import tqdm

from config.constants import (ORGANISM_COLUMNS, SAMPLING_HOUR_COLUMN, SAMPLING_HOUR_TOL, HOURS_PER_DAY, NG_PER_UG,
                              REPORT_STEP, ESTIMATION_MODE, MAX_NFEV, FIT_TIMEOUT, FIX_KE, STATUS_FAILED)
from config.logconf import setup_logger, TqdmToLogger
from models.forcing import build_forcing_functions
from models.tkmod import solve_ode
from paramest.errors import InputError, IntegrationError
from paramest.initest import elimination_seed_from_organisms, uptake_rate_seed
from paramest.normest import fit_individual

logger = setup_logger()

RESULT_COLUMNS = [
    "ID", "kin", "ke", "ku",
    "measured_iso1", "measured_iso2", "fitted_iso1", "fitted_iso2", "body_weight",
    "r_iso1", "r_iso2", "kin_seed", "ke_seed", "status", "nfev", "message",
]


@dataclass
class BatchResult:
    """
    Everything a batch run hands to the reporting layer.

    Attributes:
        table: One row per fitted individual, in input order.
        trajectories: Individual id -> DataFrame (Day, m_iso1, m_iso2) under fitted parameters.
        ke_seed: Shared elimination-rate seed.
        forcing: The ForcingPair used for all fits.
    """
    table: pd.DataFrame
    trajectories: dict
    ke_seed: float
    forcing: object


def normalized_uptake_rate(kin, body_weight, factor=NG_PER_UG):
    """
    ku = kin / factor / body_weight.
    """
    return kin / factor / body_weight


def terminal_records(organisms: pd.DataFrame, t2_hours: float, columns: dict = None) -> pd.DataFrame:
    """
    Rows sampled at the terminal time, validated for fitting.

    Raises:
        InputError: no rows at T2, duplicate ids, or non-positive contents / body weight.
    """
    columns = columns or ORGANISM_COLUMNS
    hours = organisms[SAMPLING_HOUR_COLUMN].to_numpy(dtype=float)
    terminal = organisms.loc[np.isclose(hours, t2_hours, atol=SAMPLING_HOUR_TOL)]
    if terminal.empty:
        raise InputError(f"No organism rows at the terminal sampling time T2={t2_hours} h")

    dup = terminal[columns["id"]][terminal[columns["id"]].duplicated()]
    if not dup.empty:
        raise InputError(f"Duplicate individual ids at T2: {', '.join(map(str, dup.unique()))}")

    for key, label in (("iso1", "isotope-1 content"), ("iso2", "isotope-2 content"), ("weight", "body weight")):
        values = terminal[columns[key]]
        bad = terminal.loc[~(values > 0), columns["id"]]
        if not bad.empty:
            raise InputError(f"Non-positive or missing {label} for: {', '.join(map(str, bad))}")
    return terminal


def process_individual(record, forcing, ke_seed, fix_ke=FIX_KE, mode=ESTIMATION_MODE, max_nfev=MAX_NFEV,
                       timeout=FIT_TIMEOUT, step=REPORT_STEP):
    """
    Fit one individual and derive its outputs.

    Args:
        record (dict): id, hour, iso1, iso2, weight, kin_seed.
        forcing: ForcingPair shared read-only by all individuals.
        ke_seed (float): Shared elimination-rate seed.

    Returns:
        tuple: (result row dict, trajectory DataFrame or None)
    """
    ident = record["id"]
    t_end = record["hour"] / HOURS_PER_DAY
    measured = np.array([record["iso1"], record["iso2"]], dtype=float)
    seeds = (record["kin_seed"], ke_seed)

    fit = fit_individual(ident, measured, forcing, t_end, seeds, fix_ke=fix_ke, mode=mode,
                         max_nfev=max_nfev, timeout=timeout, step=step)

    status, message = fit.status, fit.message
    trajectory = None
    try:
        t, sol = solve_ode(fit.params, forcing, t_end, step=step)
        fitted = sol[-1]
        trajectory = pd.DataFrame({"Day": t, "m_iso1": sol[:, 0], "m_iso2": sol[:, 1]})
    except IntegrationError as e:
        logger.warning(f"[{ident}] Re-simulation with fitted parameters failed: {e}")
        fitted = np.full(2, np.nan)
        status, message = STATUS_FAILED, f"re-simulation failed: {e}"

    residuals = fitted / measured - 1.0
    row = {
        "ID": ident,
        "kin": fit.kin,
        "ke": fit.ke,
        "ku": normalized_uptake_rate(fit.kin, record["weight"]),
        "measured_iso1": measured[0],
        "measured_iso2": measured[1],
        "fitted_iso1": fitted[0],
        "fitted_iso2": fitted[1],
        "body_weight": record["weight"],
        "r_iso1": residuals[0],
        "r_iso2": residuals[1],
        "kin_seed": seeds[0],
        "ke_seed": seeds[1],
        "status": status,
        "nfev": fit.nfev,
        "message": message,
    }
    return row, trajectory


def run_batch(exposure, organisms, t1_hours, t2_hours, ke_seed=None, fix_ke=FIX_KE, mode=ESTIMATION_MODE,
              max_nfev=MAX_NFEV, timeout=FIT_TIMEOUT, step=REPORT_STEP, max_workers=1, columns=None):
    """
    Fit every individual sampled at T2.

    All input checks (forcing series, elimination seed, terminal rows, uptake
    seeds) run before the first fit, so a fatal InputError never leaves a
    half-finished batch. Individual fits are independent: they can run in a
    process pool and are collected by id, then emitted in input order.

    Args:
        exposure (pd.DataFrame): Exposure table (Day, C_iso1, C_iso2).
        organisms (pd.DataFrame): Organism table with the resolved sampling-hour column.
        t1_hours (float): First sampling time (hours).
        t2_hours (float): Terminal sampling time (hours).
        ke_seed (float, optional): Elimination-rate seed; estimated from T1/T2 medians if None.
        fix_ke (bool): Hold ke at the seed.
        mode (str): Optimizer backend.
        max_nfev (int): Per-individual evaluation cap.
        timeout (float): Per-individual wall-clock cap (seconds).
        step (float): Reporting step (days).
        max_workers (int): Processes for the fits; 1 runs in-process.
        columns (dict): Organism column mapping.

    Returns:
        BatchResult
    """
    columns = columns or ORGANISM_COLUMNS
    forcing = build_forcing_functions(exposure)

    if ke_seed is None:
        ke_seed = elimination_seed_from_organisms(organisms, t1_hours, t2_hours, columns)
    elif not ke_seed > 0:
        raise InputError(f"Supplied elimination-rate seed must be positive, got {ke_seed}")

    terminal = terminal_records(organisms, t2_hours, columns)
    mean_c2 = forcing.iso2.mean()

    records = []
    for _, row in terminal.iterrows():
        hour = float(row[SAMPLING_HOUR_COLUMN])
        records.append({
            "id": row[columns["id"]],
            "hour": hour,
            "iso1": float(row[columns["iso1"]]),
            "iso2": float(row[columns["iso2"]]),
            "weight": float(row[columns["weight"]]),
            "kin_seed": uptake_rate_seed(float(row[columns["iso2"]]), hour / HOURS_PER_DAY, mean_c2),
        })

    logger.info(f"Fitting {len(records)} individuals | ke0 = {ke_seed:.4g} 1/day | "
                f"mode = {mode} | fix ke = {fix_ke} | workers = {max_workers}")

    kwargs = dict(fix_ke=fix_ke, mode=mode, max_nfev=max_nfev, timeout=timeout, step=step)
    results = {}
    progress = TqdmToLogger(logger)

    if max_workers <= 1:
        for rec in tqdm(records, desc="Fitting", file=progress, mininterval=5):
            results[rec["id"]] = process_individual(rec, forcing, ke_seed, **kwargs)
    else:
        with ProcessPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(process_individual, rec, forcing, ke_seed, **kwargs): rec["id"]
                for rec in records
            }
            for future in tqdm(as_completed(futures), total=len(futures), desc="Fitting", file=progress,
                               mininterval=5):
                results[futures[future]] = future.result()

    table = pd.DataFrame([results[rec["id"]][0] for rec in records], columns=RESULT_COLUMNS)
    trajectories = {rec["id"]: results[rec["id"]][1] for rec in records if results[rec["id"]][1] is not None}

    log_goodness_of_fit(table)
    return BatchResult(table=table, trajectories=trajectories, ke_seed=float(ke_seed), forcing=forcing)


def log_goodness_of_fit(table: pd.DataFrame):
    """
    Log batch-level fit diagnostics: MSE / MAE of the relative residuals and the status counts.
    """
    ok = table[["r_iso1", "r_iso2"]].dropna()
    if not ok.empty:
        r = ok.to_numpy().ravel()
        mse = mean_squared_error(np.zeros_like(r), r)
        mae = mean_absolute_error(np.zeros_like(r), r)
        logger.info("           --------------------------------")
        logger.info(f"Relative residuals | MSE: {mse:.3e} | MAE: {mae:.3e}")
    counts = table["status"].value_counts()
    logger.info("Fit status: " + ", ".join(f"{k}={v}" for k, v in counts.items()))
    logger.info("           --------------------------------")
