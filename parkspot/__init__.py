"""ParkSpot booking allocation and lifecycle core."""

__version__ = "0.1.0"
