import time
from dataclasses import dataclass, field

import numpy as np

from config.constants import (ESTIMATION_MODE, MAX_NFEV, FIT_TIMEOUT, REPORT_STEP, STATUS_CONVERGED, STATUS_BOUND,
                              STATUS_TIMEOUT, STATUS_FAILED)
from config.logconf import setup_logger
from models.tkmod import terminal_state, integrate_ivp
from paramest.errors import IntegrationError
from paramest.initest import parameter_bounds
from paramest.toggle import select_minimizer

logger = setup_logger()

# Relative distance (in seed units) under which a fitted value is treated as sitting on its bound.
BOUND_SNAP = 1e-6


@dataclass(frozen=True)
class FitResult:
    """
    Outcome of one individual's fit.

    Holds the parameters and convergence metadata only. The terminal state
    under the fitted parameters (fitted_iso1, fitted_iso2) and the trajectory
    come from the re-simulation in paramest.core.process_individual, which
    also marks the row failed when that re-simulation does not integrate.

    Attributes:
        kin, ke: Fitted parameter pair (last iterate when not converged).
        status: converged | bound | maxiter | timeout | failed
        message: Optimizer or integrator message.
        nfev: Residual evaluations spent.
        at_bound: Per-parameter flags (kin, ke) for values sitting on a bound.
    """
    kin: float
    ke: float
    status: str
    message: str = ""
    nfev: int = 0
    at_bound: tuple = field(default=(False, False))

    @property
    def params(self):
        return np.array([self.kin, self.ke])

    @property
    def flagged(self):
        return self.status != STATUS_CONVERGED


def relative_residuals(params, forcing, t_end, measured, step=REPORT_STEP, integrator=integrate_ivp):
    """
    Relative discrepancy of the model at the terminal time.

        r_i = model_i / measured_i - 1

    Dividing by the measured content weights each isotope by the reciprocal
    of its magnitude. Measured contents must be strictly positive.
    """
    model = terminal_state(params, forcing, t_end, step=step, integrator=integrator)
    measured = np.asarray(measured, dtype=float)
    return model / measured - 1.0


class _FitAborted(Exception):
    pass


class _Objective:
    """
    Residual function over scaled variables z = params / seed.

    Counts evaluations, keeps the best iterate seen so far and enforces the
    wall-clock cap by raising _FitAborted from inside the optimizer.
    """

    def __init__(self, forcing, t_end, measured, seeds, free, step, integrator, timeout):
        self.forcing = forcing
        self.t_end = t_end
        self.measured = measured
        self.seeds = np.asarray(seeds, dtype=float)
        self.free = free
        self.step = step
        self.integrator = integrator
        self.deadline = None if timeout is None else time.monotonic() + timeout
        self.nfev = 0
        self.best_z = None
        self.best_cost = np.inf

    def params(self, z):
        p = self.seeds.copy()
        p[self.free] = np.asarray(z, dtype=float) * self.seeds[self.free]
        return p

    def __call__(self, z):
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise _FitAborted(f"wall-clock cap exceeded after {self.nfev} evaluations")
        self.nfev += 1
        r = relative_residuals(self.params(z), self.forcing, self.t_end, self.measured,
                               step=self.step, integrator=self.integrator)
        cost = float(np.dot(r, r))
        if cost < self.best_cost:
            self.best_cost = cost
            self.best_z = np.array(z, dtype=float)
        return r


def fit_individual(ident, measured, forcing, t_end, seeds, fix_ke=False, mode=ESTIMATION_MODE,
                   max_nfev=MAX_NFEV, timeout=FIT_TIMEOUT, step=REPORT_STEP, minimizer=None,
                   integrator=integrate_ivp):
    """
    Fit (kin, ke) for one individual by bounded minimization of the squared relative residuals.

    The search runs on z = params / seed inside the box
    [LOWER_FACTOR, UPPER_FACTOR] per parameter, starting at z = 1. With
    `fix_ke`, ke stays at its seed and only kin is searched.

    Non-convergence, bound hits, the evaluation and wall-clock caps and
    integrator failures are reported in the returned FitResult, never raised.

    Args:
        ident: Individual identifier (for log messages).
        measured: (measured_iso1, measured_iso2) terminal contents, strictly positive.
        forcing: ForcingPair for both isotopes.
        t_end: Terminal time (days).
        seeds: (kin0, ke0).
        fix_ke: Hold ke at ke0.
        mode: Optimizer backend when `minimizer` is not given ('lsq' | 'lbfgsb').
        max_nfev: Residual evaluation cap.
        timeout: Wall-clock cap in seconds, None for no cap.
        step: Reporting grid step (days).
        minimizer: Optional callable(fun, x0, bounds, max_nfev) -> MinimizeResult.
        integrator: ODE integrator passed down to the TK model.

    Returns:
        FitResult
    """
    seeds = np.asarray(seeds, dtype=float)
    lower, upper = parameter_bounds(seeds)
    free = np.array([0]) if fix_ke else np.array([0, 1])
    z_lower = lower[free] / seeds[free]
    z_upper = upper[free] / seeds[free]
    minimizer = minimizer or select_minimizer(mode)

    objective = _Objective(forcing, t_end, np.asarray(measured, dtype=float), seeds, free, step, integrator,
                           timeout)
    z0 = np.ones(free.size)

    try:
        res = minimizer(objective, z0, (z_lower, z_upper), max_nfev)
        z, status, message = res.x, res.status, res.message
    except _FitAborted as e:
        logger.warning(f"[{ident}] Fit stopped: {e}")
        z, status, message = objective.best_z, STATUS_TIMEOUT, str(e)
    except IntegrationError as e:
        logger.warning(f"[{ident}] Integration failed during fit: {e}")
        z, status, message = objective.best_z, STATUS_FAILED, f"integration failed: {e}"

    if z is None:
        z = z0
    z = np.clip(np.asarray(z, dtype=float), z_lower, z_upper)

    # Snap values within BOUND_SNAP of a bound onto it, so bound hits are exact.
    on_lower = np.isclose(z, z_lower, rtol=BOUND_SNAP, atol=0.0)
    on_upper = np.isclose(z, z_upper, rtol=BOUND_SNAP, atol=0.0)
    params = objective.params(z)
    params[free[on_lower]] = lower[free[on_lower]]
    params[free[on_upper]] = upper[free[on_upper]]

    at_bound = [False, False]
    for i, idx in enumerate(free):
        at_bound[idx] = bool(on_lower[i] or on_upper[i])
    if status == STATUS_CONVERGED and any(at_bound):
        status = STATUS_BOUND

    if status != STATUS_CONVERGED:
        logger.warning(f"[{ident}] Fit flagged '{status}': kin={params[0]:.4g}, ke={params[1]:.4g} ({message})")
    else:
        logger.debug(f"[{ident}] Converged in {objective.nfev} evaluations: kin={params[0]:.4g}, ke={params[1]:.4g}")

    return FitResult(
        kin=float(params[0]),
        ke=float(params[1]),
        status=status,
        message=message,
        nfev=objective.nfev,
        at_bound=tuple(at_bound),
    )
