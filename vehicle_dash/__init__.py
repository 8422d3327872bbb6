"""Vehicle instrument cluster, simulator and a SOME/IP-style UDP event layer."""

__version__ = "0.1.0"