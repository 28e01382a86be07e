"""External integration client implementations."""

from mutespot.infrastructure.integrations.spotify_client import SpotifyClient

__all__ = ["SpotifyClient"]
