"""Token broker for Spotify's web player endpoints and OAuth relay for the desktop player."""

__version__ = "0.1.0"
