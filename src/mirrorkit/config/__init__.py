"""Configuration loading and topology construction."""

from .manager import ConfigManager

__all__ = ["ConfigManager"]
