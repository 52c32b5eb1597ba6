"""HeartHeals billing core: webhook authentication, rate limiting and feature entitlements."""

__version__ = "0.1.0"
