"""
Metadata Layer.

This package resolves display titles and validates media source URLs.
"""

from .metadata import OEmbedResolver, is_valid_source_url

__all__ = ["OEmbedResolver", "is_valid_source_url"]
