"""MuteSpot - enforce a blocked-artist list across streaming accounts."""

__version__ = "0.1.0"
