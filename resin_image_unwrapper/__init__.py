"""Extract the base image embedded in a resin flasher image."""

from .__version__ import __version__

__all__ = ["__version__"]
