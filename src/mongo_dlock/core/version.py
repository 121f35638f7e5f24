"""Version information for mongo-dlock."""

__version__ = "0.4.0"
