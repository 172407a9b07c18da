"""
Miscellaneous utilities shared across tiny-opgraph.
"""

from .logging import logger
from .config import config

__all__ = ["logger", "config"]
