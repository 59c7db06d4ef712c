"""Vehicle-side CCS charging logic: connection levels, SLAC, modem discovery, AC charging and hardware control."""

__version__ = "0.1.0"