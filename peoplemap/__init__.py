"""People Map Plus backend: OneDrive photo sync and location-history tracks."""

__version__ = "0.1.16"
