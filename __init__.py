"""
IsoTK: ODE-based toxicokinetic modelling of dual-isotope trace-metal uptake and elimination.
"""

__version__ = "0.1.0"
