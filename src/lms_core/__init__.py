"""
Course delivery core.

Grading, progress tracking and the completion gate for an online learning
platform, with document-store backed services on top.
"""

from .config.loader import load_settings

__all__ = ["load_settings"]
