"""geonotes: location-tagged notes visible within a fixed radius."""

__version__ = "1.0.0"
