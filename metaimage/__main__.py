# metaimage/__main__.py

"""Metaimage package command line script."""

import sys

from .metaimage import main

sys.exit(main())
