"""Power-meter readings, energy measurement and a self-learning power model for Linux."""

__version__ = "2.15.0"
__all__ = ["__version__"]