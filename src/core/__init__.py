"""Core helpers shared by the messaging providers."""

from src.core import utils

__all__ = ["utils"]
