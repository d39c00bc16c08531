"""
focus-bgm: a dual-channel background audio controller.
"""

__version__ = "0.1.0"
