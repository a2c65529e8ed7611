"""Cleveland & McGill graphical-perception experiment."""

__version__ = "0.1.0"
