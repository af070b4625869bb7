from plotting.plotting import Plotter
