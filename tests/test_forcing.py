import dataclasses

import numpy as np
import pandas as pd
import pytest

from models.forcing import ForcingFunction, build_forcing_functions
from paramest.errors import InputError


@pytest.fixture
def ramp():
    return ForcingFunction(np.array([0.0, 2.0, 6.0]), np.array([1.0, 5.0, 3.0]), "iso1")


def test_boundary_values_are_exact(ramp):
    assert ramp(0.0) == 1.0
    assert ramp(6.0) == 3.0


@pytest.mark.parametrize("t", [-1e6, -5.0, -1e-9])
def test_flat_extrapolation_before_first_point(ramp, t):
    assert ramp(t) == 1.0


@pytest.mark.parametrize("t", [6.0 + 1e-9, 20.0, 1e9])
def test_flat_extrapolation_after_last_point(ramp, t):
    assert ramp(t) == 3.0


def test_linear_between_points(ramp):
    assert ramp(1.0) == pytest.approx(3.0)
    assert ramp(4.0) == pytest.approx(4.0)
    assert ramp(2.0) == pytest.approx(5.0)


def test_non_monotonic_queries(ramp):
    t = np.array([4.0, -1.0, 1.0, 10.0, 2.0])
    np.testing.assert_allclose(ramp(t), [4.0, 1.0, 3.0, 3.0, 5.0])
    # Repeated evaluation gives the same answer.
    assert ramp(1.0) == ramp(1.0)


def test_scalar_query_returns_float(ramp):
    assert isinstance(ramp(1.5), float)


def test_mean_of_measured_values(ramp):
    assert ramp.mean() == pytest.approx(3.0)


def test_forcing_is_immutable(ramp):
    with pytest.raises(dataclasses.FrozenInstanceError):
        ramp.values = np.zeros(3)
    with pytest.raises(ValueError):
        ramp.values[0] = 100.0


def test_requires_two_points():
    with pytest.raises(InputError):
        ForcingFunction(np.array([0.0]), np.array([1.0]))


def test_requires_strictly_increasing_times():
    with pytest.raises(InputError):
        ForcingFunction(np.array([0.0, 1.0, 1.0]), np.array([1.0, 2.0, 3.0]))
    with pytest.raises(InputError):
        ForcingFunction(np.array([0.0, 2.0, 1.0]), np.array([1.0, 2.0, 3.0]))


def test_rejects_non_finite_values():
    with pytest.raises(InputError):
        ForcingFunction(np.array([0.0, 1.0]), np.array([1.0, np.nan]))


def test_build_sorts_rows_and_drops_missing_per_isotope():
    exposure = pd.DataFrame({
        "Day": [14.0, 0.0, 7.0],
        "C_iso1": [2.0, 10.0, np.nan],
        "C_iso2": [1.0, 9.0, 5.0],
    })
    forcing = build_forcing_functions(exposure)
    np.testing.assert_array_equal(forcing.iso1.times, [0.0, 14.0])
    np.testing.assert_array_equal(forcing.iso2.times, [0.0, 7.0, 14.0])
    assert forcing.iso1(7.0) == pytest.approx(6.0)
    assert forcing.iso2(7.0) == pytest.approx(5.0)


def test_build_reports_missing_columns():
    with pytest.raises(InputError, match="C_iso2"):
        build_forcing_functions(pd.DataFrame({"Day": [0.0, 1.0], "C_iso1": [1.0, 1.0]}))
