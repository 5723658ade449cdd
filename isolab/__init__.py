"""Request-isolation load test and its demo target."""

__version__ = "0.1.0"
