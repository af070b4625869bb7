class IsoTKError(Exception):
    """Base class for all errors raised by the fitting pipeline."""


class InputError(IsoTKError):
    """
    Invalid or insufficient input data.

    Raised before any per-individual work starts; aborts the run.
    """


class IntegrationError(IsoTKError):
    """
    The ODE integrator failed for one parameter set.

    Caught by the fitter and reported in that individual's FitResult.
    """
