from models.forcing import ForcingFunction, ForcingPair, build_forcing_functions
from models.tkmod import solve_ode, terminal_state
