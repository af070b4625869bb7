import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from config.constants import EXPOSURE_COLUMNS, ORGANISM_COLUMNS
from models.forcing import ForcingFunction, ForcingPair, build_forcing_functions
from models.tkmod import terminal_state


@pytest.fixture
def pulse_exposure():
    # Isotope 1 is spiked for the first three days, isotope 2 stays constant,
    # so the two isotopes respond differently to ke.
    return pd.DataFrame({
        EXPOSURE_COLUMNS["day"]: [0.0, 1.0, 3.0, 4.0, 14.0],
        EXPOSURE_COLUMNS["iso1"]: [10.0, 10.0, 10.0, 0.5, 0.5],
        EXPOSURE_COLUMNS["iso2"]: [9.0, 9.0, 9.0, 9.0, 9.0],
    })


@pytest.fixture
def pulse_forcing(pulse_exposure):
    return build_forcing_functions(pulse_exposure)


@pytest.fixture
def constant_forcing():
    return ForcingPair(
        iso1=ForcingFunction(np.array([0.0, 1.0, 14.0]), np.array([10.0, 10.0, 10.0]), "iso1"),
        iso2=ForcingFunction(np.array([0.0, 1.0, 14.0]), np.array([9.0, 9.0, 9.0]), "iso2"),
    )


@pytest.fixture
def simulate_organisms():
    """
    Build an organism table from known (kin, ke) per individual, without noise.

    Each individual in `truths` gets a row at t2_hours. `t1_truths` adds
    individuals sampled at t1_hours only (used by the elimination seed).
    """

    def _make(forcing, truths, t1_truths=None, t1_hours=168.0, t2_hours=336.0, weight=2.0):
        rows = []
        for hour, group in ((t1_hours, t1_truths or {}), (t2_hours, truths)):
            for ident, params in group.items():
                m1, m2 = terminal_state(params, forcing, hour / 24.0)
                rows.append({
                    ORGANISM_COLUMNS["id"]: ident,
                    ORGANISM_COLUMNS["day"]: hour / 24.0,
                    ORGANISM_COLUMNS["hour"]: hour,
                    ORGANISM_COLUMNS["iso1"]: m1,
                    ORGANISM_COLUMNS["iso2"]: m2,
                    ORGANISM_COLUMNS["weight"]: weight,
                    "SamplingHour": hour,
                })
        return pd.DataFrame(rows)

    return _make
