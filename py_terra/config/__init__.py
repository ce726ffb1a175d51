"""
Configuration for the territory service.
"""

from .config import Settings, settings

__all__ = ['Settings', 'settings']
