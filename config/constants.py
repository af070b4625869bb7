import matplotlib.pyplot as plt
import matplotlib.colors as mcolors
from pathlib import Path

from config.env_loader import load_env_variables

# Flag to indicate if the code is in development mode.
# In development mode the batch runs sequentially in the main process.
DEV_TEST = False

########################################################################################################################
# GLOBAL CONSTANTS
# The following constants are used throughout the project.
# They define the sampling design, the integrator and optimizer settings,
# and the column layout of the two input tables.
# Every value here is a default; config.toml datasets and the command line override them.
########################################################################################################################
# Sampling design:
# T1_HOURS: first sampling time (hours since start of exposure). Organisms sampled here
#           only feed the elimination-rate seed (median decay between T1 and T2).
# T2_HOURS: terminal sampling time (hours). Every organism with a row at T2 is fitted.
T1_HOURS = 168.0
T2_HOURS = 336.0
HOURS_PER_DAY = 24.0
# REPORT_STEP:
# Fixed step (days) of the dense output grid the trajectory is reported on.
# The integrator's internal step control is independent of this grid.
REPORT_STEP = 1.0 / 48.0
# Search box for each parameter, as multiples of its seed:
#   lower = LOWER_FACTOR * seed, upper = UPPER_FACTOR * seed
LOWER_FACTOR = 0.1
UPPER_FACTOR = 10.0
# Unit conversion for the normalized uptake-rate constant:
#   ku = kin / NG_PER_UG / body_weight
# Contents are measured in ng, exposure in ug/L, weight in g.
NG_PER_UG = 1000.0
# ODE integrator (scipy.integrate.solve_ivp).
# 'LSODA' switches automatically between non-stiff and stiff methods.
# Other options: 'BDF', 'Radau' (stiff), 'RK45', 'DOP853' (non-stiff).
ODE_METHOD = 'LSODA'
ODE_RTOL = 1e-8
ODE_ATOL = 1e-10
# ESTIMATION_MODE: optimizer backend used by the per-individual fitter.
# 'lsq'    : scipy.optimize.least_squares, trust-region reflective, on the residual vector.
# 'lbfgsb' : scipy.optimize.minimize, L-BFGS-B quasi-Newton, on the sum of squared residuals.
ESTIMATION_MODE = 'lsq'
# Maximum number of residual evaluations per individual.
MAX_NFEV = 2000
# Wall-clock cap (seconds) per individual. None disables the cap.
# Exceeding either cap is reported as a non-convergent fit, never raised.
FIT_TIMEOUT = 120.0
# Relative finite-difference step for the Jacobian. Must stay well above
# ODE_RTOL so integrator noise does not dominate the difference quotient.
DIFF_STEP = 1e-5
# Termination tolerances of the optimizer.
FTOL = 1e-12
XTOL = 1e-12
GTOL = 1e-12
# L-BFGS-B works on the summed squared residuals, whose finite-difference gradient
# carries the integrator noise. LBFGSB_FTOL stops on the cost reduction above that
# noise. A failed line search (ABNORMAL) counts as converged when the projected
# gradient (in seed-scaled variables) is below LBFGSB_PGTOL.
LBFGSB_FTOL = 1e-10
LBFGSB_PGTOL = 1e-2
# Hold ke at its seed and fit kin only.
FIX_KE = False
# Fit status labels written to the result table.
STATUS_CONVERGED = 'converged'
STATUS_BOUND = 'bound'
STATUS_MAXITER = 'maxiter'
STATUS_TIMEOUT = 'timeout'
STATUS_FAILED = 'failed'
########################################################################################################################
# INPUT TABLE LAYOUT
# Exposure table: one row per measured day, one concentration column per isotope (ug/L).
# Organism table: one row per sampled individual (contents in ng, dry weight in g).
########################################################################################################################
ISOTOPES = ('iso1', 'iso2')
EXPOSURE_COLUMNS = {
    'day': 'Day',
    'iso1': 'C_iso1',
    'iso2': 'C_iso2',
}
ORGANISM_COLUMNS = {
    'id': 'ID',
    'day': 'Day',
    'hour': 'Hour',
    'iso1': 'Q_iso1',
    'iso2': 'Q_iso2',
    'weight': 'DW',
}
SPECIES_COLUMN = 'Species'
# Sampling time in hours, resolved from Hour (or Day * 24 when Hour is absent).
SAMPLING_HOUR_COLUMN = 'SamplingHour'
# Tolerance (hours) when matching a row's sampling time to T1 or T2.
SAMPLING_HOUR_TOL = 1e-6
########################################################################################################################
# PATHS, DIRECTORIES, AND FILES
# - PROJECT_ROOT: The root directory of the project, one level up from this file.
# - DATA_DIR: Directory containing input spreadsheets (ISOTK_DATA_DIR overrides).
# - OUT_DIR: Directory where timestamped run folders are created (ISOTK_OUT_DIR overrides).
# - LOG_DIR: Directory to store log files.
########################################################################################################################
PROJECT_ROOT = Path(__file__).resolve().parents[1]
_env = load_env_variables(PROJECT_ROOT / '.env')
DATA_DIR = Path(_env['DATA_DIR']) if _env['DATA_DIR'] else PROJECT_ROOT / 'data'
OUT_DIR = Path(_env['OUT_DIR']) if _env['OUT_DIR'] else PROJECT_ROOT / 'results'
LOG_DIR = OUT_DIR / 'logs'

# Plotting Style Configuration
COLOR_PALETTE = [mcolors.to_hex(plt.get_cmap('tab20')(i)) for i in range(0, 20, 2)]
ISOTOPE_LABELS = {'iso1': 'Isotope 1', 'iso2': 'Isotope 2'}
