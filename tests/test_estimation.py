import time

import numpy as np
import pytest
from scipy.optimize import OptimizeResult

from models.tkmod import terminal_state
from paramest.errors import IntegrationError
from paramest.initest import parameter_bounds, uptake_rate_seed
from paramest.normest import fit_individual, relative_residuals, FitResult
import paramest.toggle as toggle
from paramest.toggle import MinimizeResult, select_minimizer, lsq_minimizer

TRUE_PARAMS = (5.0, 0.05)
T_END = 14.0


@pytest.fixture
def measured_pulse(pulse_forcing):
    return terminal_state(TRUE_PARAMS, pulse_forcing, T_END)


@pytest.fixture
def pulse_seeds(pulse_forcing, measured_pulse):
    return uptake_rate_seed(measured_pulse[1], T_END, pulse_forcing.iso2.mean()), 0.03


def test_residuals_vanish_at_true_parameters(pulse_forcing, measured_pulse):
    r = relative_residuals(TRUE_PARAMS, pulse_forcing, T_END, measured_pulse)
    np.testing.assert_allclose(r, 0.0, atol=1e-12)


def test_fit_recovers_known_parameters(pulse_forcing, measured_pulse, pulse_seeds):
    fit = fit_individual("a", measured_pulse, pulse_forcing, T_END, pulse_seeds)
    assert fit.status == "converged"
    assert not fit.flagged
    assert fit.kin == pytest.approx(TRUE_PARAMS[0], rel=1e-2)
    assert fit.ke == pytest.approx(TRUE_PARAMS[1], rel=1e-2)


@pytest.mark.parametrize("ke_seed", [0.03, 0.08])
def test_lbfgsb_backend_recovers_known_parameters(pulse_forcing, measured_pulse, ke_seed):
    kin0 = uptake_rate_seed(measured_pulse[1], T_END, pulse_forcing.iso2.mean())
    fit = fit_individual("a", measured_pulse, pulse_forcing, T_END, (kin0, ke_seed), mode="lbfgsb")
    assert fit.status == "converged"
    assert fit.kin == pytest.approx(TRUE_PARAMS[0], rel=1e-2)
    assert fit.ke == pytest.approx(TRUE_PARAMS[1], rel=1e-2)


def test_lbfgsb_bound_hit_is_reported_as_bound(pulse_forcing, measured_pulse):
    seeds = (100.0, 0.05)
    lower, _ = parameter_bounds(seeds)
    fit = fit_individual("b", measured_pulse, pulse_forcing, T_END, seeds, mode="lbfgsb")
    assert fit.kin == lower[0]
    assert fit.at_bound[0]
    assert fit.status == "bound"


def _abnormal_stop(x, jac):
    return OptimizeResult(x=np.asarray(x), jac=np.asarray(jac), success=False, status=2, nfev=7,
                          message="ABNORMAL: ")


def test_lbfgsb_abnormal_stop_with_flat_gradient_is_converged(monkeypatch):
    monkeypatch.setattr(toggle, "minimize", lambda *a, **k: _abnormal_stop([1.0, 2.0], [1e-4, -2e-4]))
    res = toggle.lbfgsb_minimizer(lambda z: np.zeros(2), np.ones(2), (np.full(2, 0.1), np.full(2, 10.0)))
    assert res.status == "converged"
    assert "ABNORMAL" in res.message


def test_lbfgsb_abnormal_stop_ignores_gradient_into_active_bound(monkeypatch):
    # At the lower bound a positive gradient only points out of the box.
    monkeypatch.setattr(toggle, "minimize", lambda *a, **k: _abnormal_stop([0.1, 2.0], [0.8, 1e-4]))
    res = toggle.lbfgsb_minimizer(lambda z: np.zeros(2), np.ones(2), (np.full(2, 0.1), np.full(2, 10.0)))
    assert res.status == "converged"


def test_lbfgsb_abnormal_stop_with_steep_gradient_is_not_converged(monkeypatch):
    monkeypatch.setattr(toggle, "minimize", lambda *a, **k: _abnormal_stop([1.0, 2.0], [0.5, 0.0]))
    res = toggle.lbfgsb_minimizer(lambda z: np.zeros(2), np.ones(2), (np.full(2, 0.1), np.full(2, 10.0)))
    assert res.status == "maxiter"


def test_fit_is_deterministic(pulse_forcing, measured_pulse, pulse_seeds):
    a = fit_individual("a", measured_pulse, pulse_forcing, T_END, pulse_seeds)
    b = fit_individual("a", measured_pulse, pulse_forcing, T_END, pulse_seeds)
    assert (a.kin, a.ke, a.nfev) == (b.kin, b.ke, b.nfev)


def test_constant_exposure_with_fixed_elimination(constant_forcing):
    # Proportional exposures give r1 == r2, so only kin is identifiable.
    measured = terminal_state(TRUE_PARAMS, constant_forcing, T_END)
    kin0 = uptake_rate_seed(measured[1], T_END, constant_forcing.iso2.mean())
    fit = fit_individual("c", measured, constant_forcing, T_END, (kin0, 0.05), fix_ke=True)
    assert fit.status == "converged"
    assert fit.ke == 0.05
    assert fit.kin == pytest.approx(5.0, rel=1e-2)


def test_constant_exposure_free_fit_matches_measurements(constant_forcing):
    measured = terminal_state(TRUE_PARAMS, constant_forcing, T_END)
    kin0 = uptake_rate_seed(measured[1], T_END, constant_forcing.iso2.mean())
    fit = fit_individual("c", measured, constant_forcing, T_END, (kin0, 0.05))
    r = relative_residuals(fit.params, constant_forcing, T_END, measured)
    assert np.max(np.abs(r)) < 1e-3


def test_bound_hit_is_exact_and_flagged(pulse_forcing, measured_pulse):
    # Box for ke is [0.0002, 0.02], below the true value.
    seeds = (uptake_rate_seed(measured_pulse[1], T_END, pulse_forcing.iso2.mean()), 0.002)
    lower, upper = parameter_bounds(seeds)
    fit = fit_individual("b", measured_pulse, pulse_forcing, T_END, seeds)
    assert fit.ke == upper[1]
    assert fit.at_bound[1]
    assert fit.status == "bound"
    assert fit.flagged
    assert lower[0] <= fit.kin <= upper[0]


def test_fit_stays_inside_box(pulse_forcing, measured_pulse, pulse_seeds):
    lower, upper = parameter_bounds(pulse_seeds)
    fit = fit_individual("a", measured_pulse, pulse_forcing, T_END, pulse_seeds, max_nfev=3)
    assert np.all(fit.params >= lower)
    assert np.all(fit.params <= upper)


def test_minimizer_status_is_reported(pulse_forcing, measured_pulse, pulse_seeds):
    def stub(fun, x0, bounds, max_nfev):
        fun(x0)
        return MinimizeResult(x0 * 1.1, "maxiter", "evaluation cap reached", 1)

    fit = fit_individual("m", measured_pulse, pulse_forcing, T_END, pulse_seeds, minimizer=stub)
    assert fit.status == "maxiter"
    assert fit.nfev == 1
    assert fit.kin == pytest.approx(1.1 * pulse_seeds[0])
    assert fit.flagged


def test_wall_clock_cap_keeps_best_iterate(pulse_forcing, measured_pulse, pulse_seeds):
    def slow(fun, x0, bounds, max_nfev):
        fun(x0)
        time.sleep(0.05)
        fun(x0 * 2.0)
        raise AssertionError("objective should have stopped the search")

    fit = fit_individual("t", measured_pulse, pulse_forcing, T_END, pulse_seeds, timeout=0.01, minimizer=slow)
    assert fit.status == "timeout"
    assert fit.nfev == 1
    assert fit.kin == pytest.approx(pulse_seeds[0])
    assert fit.ke == pytest.approx(pulse_seeds[1])


def test_integration_failure_is_reported(pulse_forcing, measured_pulse, pulse_seeds):
    def broken(fun, t_span, y0, t_eval):
        raise IntegrationError("stiff")

    fit = fit_individual("f", measured_pulse, pulse_forcing, T_END, pulse_seeds, integrator=broken)
    assert fit.status == "failed"
    assert "stiff" in fit.message
    assert (fit.kin, fit.ke) == pytest.approx(pulse_seeds)


def test_select_minimizer():
    assert select_minimizer("lsq") is lsq_minimizer
    with pytest.raises(ValueError, match="Unknown estimation mode"):
        select_minimizer("nelder-mead")


def test_fit_result_flags():
    assert not FitResult(1.0, 0.1, "converged").flagged
    assert FitResult(1.0, 0.1, "bound", at_bound=(False, True)).flagged
    np.testing.assert_array_equal(FitResult(1.0, 0.1, "converged").params, [1.0, 0.1])
