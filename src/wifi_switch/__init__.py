"""wifi-switch: switch between netctl wireless profiles from the command line."""

from .version import APP_VERSION

__all__ = ["APP_VERSION"]
