"""Fiat on/off-ramp anchor integrations for Stellar."""

__version__ = "0.1.0"
