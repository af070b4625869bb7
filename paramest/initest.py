import numpy as np
import pandas as pd

from config.constants import (ORGANISM_COLUMNS, SAMPLING_HOUR_COLUMN, SAMPLING_HOUR_TOL, HOURS_PER_DAY,
                              LOWER_FACTOR, UPPER_FACTOR)
from config.logconf import setup_logger
from paramest.errors import InputError

logger = setup_logger()


def elimination_rate_seed(median_a: float, median_b: float, t_a: float, t_b: float) -> float:
    """
    Elimination-rate guess from the log-linear decay between two sampling times.

        ke0 = -(ln(median_b) - ln(median_a)) / (t_b - t_a)

    Args:
        median_a (float): Median content at t_a.
        median_b (float): Median content at t_b.
        t_a (float): Earlier sampling time (days).
        t_b (float): Later sampling time (days).

    Returns:
        float: ke0 (1/day).
    """
    if not t_b > t_a:
        raise InputError(f"Sampling times must satisfy t_a < t_b, got t_a={t_a}, t_b={t_b}")
    if median_a <= 0 or median_b <= 0:
        raise InputError(f"Median contents must be positive, got {median_a} and {median_b}")
    return -(np.log(median_b) - np.log(median_a)) / (t_b - t_a)


def elimination_seed_from_organisms(organisms: pd.DataFrame, t1_hours: float, t2_hours: float,
                                    columns: dict = None) -> float:
    """
    Shared elimination-rate seed from the median isotope-1 content at T1 and T2.

    `organisms` must carry the resolved sampling-hour column. The seed is
    computed once per run and used for every individual.
    """
    columns = columns or ORGANISM_COLUMNS
    hours = organisms[SAMPLING_HOUR_COLUMN].to_numpy(dtype=float)

    distinct = np.unique(np.round(hours[np.isfinite(hours)], 6))
    if distinct.size < 2:
        raise InputError(
            f"Elimination-rate seed needs observations on at least two distinct sampling times, "
            f"found {distinct.size}; supply it externally instead"
        )

    at_t1 = organisms.loc[np.isclose(hours, t1_hours, atol=SAMPLING_HOUR_TOL), columns["iso1"]].dropna()
    at_t2 = organisms.loc[np.isclose(hours, t2_hours, atol=SAMPLING_HOUR_TOL), columns["iso1"]].dropna()
    if at_t1.empty or at_t2.empty:
        raise InputError(
            f"No isotope-1 observations at T1={t1_hours} h ({len(at_t1)}) "
            f"or T2={t2_hours} h ({len(at_t2)})"
        )

    median_a = float(at_t1.median())
    median_b = float(at_t2.median())
    ke0 = elimination_rate_seed(median_a, median_b, t1_hours / HOURS_PER_DAY, t2_hours / HOURS_PER_DAY)
    logger.info(f"Elimination seed: median(T1)={median_a:.4g}, median(T2)={median_b:.4g}, ke0={ke0:.4g} 1/day")

    if not ke0 > 0:
        raise InputError(
            f"Elimination-rate seed is not positive (ke0={ke0:.4g}): isotope-1 content does not "
            f"decay between T1={t1_hours} h and T2={t2_hours} h"
        )
    return float(ke0)


def uptake_rate_seed(measured_iso2: float, duration_days: float, mean_conc_iso2: float) -> float:
    """
    Per-individual uptake-rate guess.

        kin0 = measured_iso2 / duration_days / mean_conc_iso2

    Isotope 2 is used by convention for both isotopes.
    """
    if not duration_days > 0:
        raise InputError(f"Exposure duration must be positive, got {duration_days}")
    if not mean_conc_iso2 > 0:
        raise InputError(f"Mean isotope-2 exposure concentration must be positive, got {mean_conc_iso2}")
    if not measured_iso2 > 0:
        raise InputError(f"Measured isotope-2 content must be positive, got {measured_iso2}")
    return measured_iso2 / duration_days / mean_conc_iso2


def parameter_bounds(seeds, lower=LOWER_FACTOR, upper=UPPER_FACTOR):
    """
    Closed search box [lower * seed, upper * seed] for each parameter.

    Returns:
        tuple: (lower_bounds, upper_bounds) as arrays.
    """
    seeds = np.asarray(seeds, dtype=float)
    if np.any(seeds <= 0) or not np.all(np.isfinite(seeds)):
        raise InputError(f"Seeds must be finite and positive, got {seeds.tolist()}")
    return lower * seeds, upper * seeds
