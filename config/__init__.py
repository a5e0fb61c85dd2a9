"""Configuration package for the Kuku Yetu API."""
from .settings import get_settings, Settings

__all__ = ["Settings", "get_settings"]
