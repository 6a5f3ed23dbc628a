"""LinkPool - domain pool manager for live-code redirects."""

__version__ = "0.1.0"
