"""Road Import Version Service application."""

__version__ = "0.1.0"
