from typing import NamedTuple

import numpy as np
from scipy.optimize import least_squares, minimize

from config.constants import (DIFF_STEP, FTOL, XTOL, GTOL, LBFGSB_FTOL, LBFGSB_PGTOL, MAX_NFEV, STATUS_CONVERGED,
                              STATUS_MAXITER, STATUS_FAILED)


class MinimizeResult(NamedTuple):
    x: np.ndarray
    status: str
    message: str
    nfev: int


def lsq_minimizer(fun, x0, bounds, max_nfev=MAX_NFEV):
    """
    Bounded nonlinear least squares (trust-region reflective) on the residual vector.

    Args:
        fun: callable(x) -> residual vector
        x0: starting point, inside bounds
        bounds: (lower, upper) arrays
        max_nfev: residual evaluation cap

    Returns:
        MinimizeResult
    """
    res = least_squares(fun, x0, bounds=bounds, method='trf', diff_step=DIFF_STEP,
                        ftol=FTOL, xtol=XTOL, gtol=GTOL, max_nfev=max_nfev)
    if res.status > 0:
        status = STATUS_CONVERGED
    elif res.status == 0:
        status = STATUS_MAXITER
    else:
        status = STATUS_FAILED
    return MinimizeResult(np.asarray(res.x, dtype=float), status, str(res.message), int(res.nfev))


def projected_gradient(x, grad, lower, upper, rtol=1e-6):
    """
    Gradient with the components that push against an active bound zeroed.
    """
    pg = np.array(grad, dtype=float)
    at_lower = np.isclose(x, lower, rtol=rtol, atol=0.0)
    at_upper = np.isclose(x, upper, rtol=rtol, atol=0.0)
    pg[at_lower] = np.minimum(pg[at_lower], 0.0)
    pg[at_upper] = np.maximum(pg[at_upper], 0.0)
    return pg


def lbfgsb_minimizer(fun, x0, bounds, max_nfev=MAX_NFEV):
    """
    Bounded quasi-Newton (L-BFGS-B) on the sum of squared residuals.

    An abnormal line-search stop is classified by the projected gradient at
    the returned point: converged below LBFGSB_PGTOL, maxiter otherwise.
    """
    def cost(x):
        r = fun(x)
        return float(np.dot(r, r))

    lower, upper = (np.asarray(b, dtype=float) for b in bounds)
    res = minimize(cost, x0, method='L-BFGS-B', bounds=list(zip(lower, upper)),
                   options={'maxfun': max_nfev, 'ftol': LBFGSB_FTOL, 'gtol': GTOL, 'eps': DIFF_STEP})
    message = str(res.message)
    if res.success:
        status = STATUS_CONVERGED
    elif res.status == 1:
        status = STATUS_MAXITER
    elif res.status == 2:
        pg = projected_gradient(res.x, res.jac, lower, upper)
        pg_norm = float(np.max(np.abs(pg)))
        status = STATUS_CONVERGED if pg_norm <= LBFGSB_PGTOL else STATUS_MAXITER
        message = f"{message} (projected gradient {pg_norm:.2e})"
    else:
        status = STATUS_FAILED
    return MinimizeResult(np.asarray(res.x, dtype=float), status, message, int(res.nfev))


MINIMIZERS = {
    'lsq': lsq_minimizer,
    'lbfgsb': lbfgsb_minimizer,
}


def select_minimizer(mode):
    """
    Return the minimizer for an estimation mode ('lsq' or 'lbfgsb').

    Every minimizer has the signature
    `minimizer(fun, x0, bounds, max_nfev) -> MinimizeResult`.
    """
    try:
        return MINIMIZERS[mode]
    except KeyError:
        raise ValueError(f"Unknown estimation mode '{mode}'. Options: {', '.join(MINIMIZERS)}") from None
