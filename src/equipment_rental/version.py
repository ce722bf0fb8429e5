"""Version metadata for the equipment rental engine."""

__app_name__ = "Equipment Rental"
__company__ = "Surf Track"
__version__ = "1.0.0"
