"""
Two-isotope toxicokinetic (TK) model.

State y = (m1, m2): mass of isotope 1 and isotope 2 in the organism.
Both isotopes share the uptake rate kin and the first-order elimination
rate ke; they differ only through their exposure forcing c_i(t):

    dm_i/dt = kin * c_i(t) - ke * m_i,    m_i(0) = 0

The right-hand side is a Numba kernel; the forcing functions enter it as
their raw (times, values) arrays and are interpolated in-kernel with the
same clamped linear rule as ForcingFunction.
"""
import numpy as np
from numba import njit
from scipy.integrate import solve_ivp

from config.constants import ODE_METHOD, ODE_RTOL, ODE_ATOL, REPORT_STEP
from paramest.errors import IntegrationError


@njit(cache=True)
def ode_core(t, y, kin, ke, t1, c1, t2, c2):
    """
    Time derivative of the TK state.

    Args:
        t: time (days)
        y: state (m1, m2)
        kin: uptake rate
        ke: elimination rate (1/day)
        t1, c1: exposure times / concentrations for isotope 1
        t2, c2: exposure times / concentrations for isotope 2

    Returns:
        dydt: array of derivatives
    """
    dydt = np.empty(2)
    dydt[0] = kin * np.interp(t, t1, c1) - ke * y[0]
    dydt[1] = kin * np.interp(t, t2, c2) - ke * y[1]
    return dydt


def make_rhs(forcing, kin, ke):
    """
    Create a `fun(t, y)` closure for scipy's solvers over the given forcing pair.
    """
    f1, f2 = forcing
    t1, c1 = f1.times, f1.values
    t2, c2 = f2.times, f2.values
    kin = float(kin)
    ke = float(ke)

    def fun(t, y):
        return ode_core(float(t), np.asarray(y, dtype=np.float64), kin, ke, t1, c1, t2, c2)

    return fun


def reporting_grid(t_end, step=REPORT_STEP):
    """
    Dense output grid 0, step, 2*step, ... ending exactly at t_end.
    """
    if t_end <= 0:
        raise ValueError(f"Terminal time must be positive, got {t_end}")
    n = int(np.floor(t_end / step + 1e-9))
    grid = np.arange(n + 1, dtype=np.float64) * step
    if t_end - grid[-1] > 1e-9 * max(1.0, t_end):
        grid = np.append(grid, t_end)
    else:
        grid[-1] = t_end
    return grid


def integrate_ivp(fun, t_span, y0, t_eval, method=ODE_METHOD, rtol=ODE_RTOL, atol=ODE_ATOL):
    """
    Default integrator: scipy.integrate.solve_ivp evaluated on `t_eval`.

    Returns:
        np.ndarray: states of shape (len(t_eval), len(y0)).

    Raises:
        IntegrationError: if the solver reports failure.
    """
    sol = solve_ivp(fun, t_span, y0, method=method, t_eval=t_eval, rtol=rtol, atol=atol)
    if not sol.success:
        raise IntegrationError(sol.message)
    return np.ascontiguousarray(sol.y.T, dtype=np.float64)


def solve_ode(params, forcing, t_end, step=REPORT_STEP, init_cond=None, integrator=integrate_ivp):
    """
    Solve the TK model from t=0 to t_end.

    Args:
        params: (kin, ke)
        forcing: ForcingPair (iso1, iso2)
        t_end: terminal time (days)
        step: reporting step (days)
        init_cond: initial masses, defaults to (0, 0)
        integrator: callable(fun, t_span, y0, t_eval) -> states

    Returns:
        t: reporting grid
        sol: states on the grid, shape (len(t), 2)
    """
    kin, ke = params
    y0 = np.zeros(2) if init_cond is None else np.asarray(init_cond, dtype=np.float64)
    if y0.shape != (2,):
        raise ValueError(f"Initial condition must hold two masses, got shape {y0.shape}")

    t = reporting_grid(t_end, step)
    sol = integrator(make_rhs(forcing, kin, ke), (0.0, float(t[-1])), y0, t)
    return t, sol


def terminal_state(params, forcing, t_end, step=REPORT_STEP, integrator=integrate_ivp):
    """
    Model masses (m1, m2) at the final grid point.
    """
    _, sol = solve_ode(params, forcing, t_end, step=step, integrator=integrator)
    return sol[-1]
