"""Coverage-driven exploration agent for street-level panorama graphs."""

__version__ = "0.1.0"
