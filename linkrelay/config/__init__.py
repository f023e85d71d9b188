"""Configuration for link-relay."""

from linkrelay.config.settings import PROGRAM_NAME, Settings, get_settings

__all__ = ["PROGRAM_NAME", "Settings", "get_settings"]
