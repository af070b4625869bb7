"""
Forcing functions built from measured exposure concentrations.

Each isotope's exposure series is turned into a piecewise-linear interpolant
that is clamped to the first/last measured value outside the measured range.
The interpolants are evaluated inside the ODE right-hand side, so they must
accept any real time (the integrator probes times off the reporting grid and
not necessarily in increasing order).
"""
from dataclasses import dataclass
from typing import NamedTuple

import numpy as np
import pandas as pd

from config.constants import EXPOSURE_COLUMNS, ISOTOPES
from paramest.errors import InputError


@dataclass(frozen=True)
class ForcingFunction:
    """
    Piecewise-linear exposure concentration c(t) with flat extrapolation.

    Attributes:
        times (np.ndarray): Measured times (days), strictly increasing.
        values (np.ndarray): Measured concentrations at `times`.
        name (str): Isotope label, used in log and error messages.
    """
    times: np.ndarray
    values: np.ndarray
    name: str = ""

    def __post_init__(self):
        t = np.ascontiguousarray(self.times, dtype=np.float64)
        c = np.ascontiguousarray(self.values, dtype=np.float64)
        if t.ndim != 1 or t.shape != c.shape:
            raise InputError(f"[{self.name}] exposure times and concentrations must be 1-D and of equal length")
        if t.size < 2:
            raise InputError(f"[{self.name}] at least two exposure points are needed to interpolate, got {t.size}")
        if not (np.all(np.isfinite(t)) and np.all(np.isfinite(c))):
            raise InputError(f"[{self.name}] exposure series contains missing or non-finite values")
        if np.any(np.diff(t) <= 0):
            raise InputError(f"[{self.name}] exposure times must be strictly increasing")
        t.setflags(write=False)
        c.setflags(write=False)
        object.__setattr__(self, "times", t)
        object.__setattr__(self, "values", c)

    def __call__(self, t):
        # np.interp clamps to values[0] / values[-1] outside [times[0], times[-1]].
        out = np.interp(t, self.times, self.values)
        return float(out) if np.ndim(out) == 0 else out

    def mean(self) -> float:
        """Arithmetic mean of the measured concentrations."""
        return float(np.mean(self.values))


class ForcingPair(NamedTuple):
    iso1: ForcingFunction
    iso2: ForcingFunction


def build_forcing_functions(exposure: pd.DataFrame, columns: dict = None) -> ForcingPair:
    """
    Build one forcing function per isotope from the exposure table.

    Rows are sorted by time; rows where an isotope's concentration is
    missing are dropped for that isotope only.

    Args:
        exposure (pd.DataFrame): Exposure table with a time column (days) and
            one concentration column per isotope.
        columns (dict): Column mapping, defaults to EXPOSURE_COLUMNS.

    Returns:
        ForcingPair: (iso1, iso2) interpolants.
    """
    columns = columns or EXPOSURE_COLUMNS
    missing = [columns[k] for k in ("day", "iso1", "iso2") if columns[k] not in exposure.columns]
    if missing:
        raise InputError(f"Exposure table is missing columns: {', '.join(missing)}")

    ordered = exposure.sort_values(columns["day"])
    forcings = {}
    for iso in ISOTOPES:
        series = ordered[[columns["day"], columns[iso]]].dropna()
        forcings[iso] = ForcingFunction(
            times=series[columns["day"]].to_numpy(dtype=float),
            values=series[columns[iso]].to_numpy(dtype=float),
            name=iso,
        )
    return ForcingPair(**forcings)
