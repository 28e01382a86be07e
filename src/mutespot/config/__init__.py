"""Configuration module for MuteSpot."""

from .settings import (
    DatabaseSettings,
    EnforcementSettings,
    ObservabilitySettings,
    RateLimitSettings,
    Settings,
    SpotifySettings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "EnforcementSettings",
    "ObservabilitySettings",
    "RateLimitSettings",
    "Settings",
    "SpotifySettings",
    "get_settings",
]
