"""civicwatch: geospatial proximity & watch-zone notification engine."""

__version__ = "0.1.0"
