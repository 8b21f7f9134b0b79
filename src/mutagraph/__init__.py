"""MutaGraph - coverage-guided mutation testing over coordinate-addressed syntax trees."""

__version__ = "0.1.0"
