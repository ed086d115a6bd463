"""Rental marketplace core: pricing, stock reservation and order hand-off."""

__version__ = "0.1.0"
