"""Check and repair PARTUUID references in two-partition disk images."""

from .__version__ import __version__


__all__ = ["__version__"]
