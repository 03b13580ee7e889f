"""acctscan — structural vulnerability detector for account-model programs."""

__version__ = "0.3.0"
