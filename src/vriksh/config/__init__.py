"""
Vriksh configuration.

Pydantic-based settings loaded from VRIKSH_* environment variables and .env files.
"""

from vriksh.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
