"""Rental lifecycle and inventory consistency engine."""

from equipment_rental.version import __app_name__, __version__

__all__ = ["__app_name__", "__version__"]
