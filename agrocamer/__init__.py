"""AgroCamer: agricultural advisory service for Cameroonian farmers."""

__version__ = "0.1.0"
