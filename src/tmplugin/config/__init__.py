"""
Configuration module for tmplugin.

Uses pydantic-settings for environment variable loading.
"""

from tmplugin.config.settings import (
    Settings,
    default_user_terramate_dir,
    is_env_var_set,
)

__all__ = ["Settings", "default_user_terramate_dir", "is_env_var_set"]
