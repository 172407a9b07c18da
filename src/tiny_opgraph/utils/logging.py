"""
Package-wide logger.

Applications decide where records go; the library only attaches a
``NullHandler`` so nothing is printed by default.
"""

from __future__ import annotations

import logging

logger = logging.getLogger("tiny_opgraph")
logger.addHandler(logging.NullHandler())
