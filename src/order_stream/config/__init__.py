"""Configuration module"""

from .settings import Settings, build_settings, get_settings, load_yaml_config

__all__ = ["Settings", "build_settings", "get_settings", "load_yaml_config"]
