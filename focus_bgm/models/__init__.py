"""
Data Models Layer.

This package contains the Pydantic model for the application configuration.
"""

from .config import PlayerConfig

__all__ = ["PlayerConfig"]
