# metaimage/__init__.py

from .metaimage import *
from .metaimage import __all__, __doc__, __version__, main

# constants are repeated for documentation

__version__ = __version__
"""Metaimage version string."""

COMPRESSED_DATA_SIZE = COMPRESSED_DATA_SIZE
"""Placeholder value written as CompressedDataSize."""
