"""iotdash - automation rule engine for a home IoT dashboard."""

__version__ = "0.1.0"
