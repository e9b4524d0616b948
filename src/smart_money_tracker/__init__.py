"""Smart Money Tracker - position-splitting detection and smart-money wallet tracking."""

__version__ = "0.1.0"
