"""
Settings configuration using pydantic-settings.

Loads configuration from:
1. Constructor arguments (highest precedence)
2. Environment variables with TM_ prefix
3. .env file named by TM_ENV_FILE (if set and present)
4. Field defaults

Examples:
  TM_USER_TERRAMATE_DIR=/home/me/.terramate
  TM_DISABLE_GRPC_PLUGINS=1
  TM_PLUGIN_START_TIMEOUT=30
"""

import os as _os
import pathlib as _pathlib
import typing as _typing

import pydantic as _pydantic
import pydantic_settings as _pydantic_settings

import tmplugin.constants as constants


def _get_env_file() -> str | None:
    """Determine which .env file to load.

    Only an explicit TM_ENV_FILE is honoured. If it is set but missing,
    nothing is loaded rather than silently falling back.
    """
    if env_file := _os.environ.get("TM_ENV_FILE"):
        if _pathlib.Path(env_file).exists():
            return env_file
    return None


def default_user_terramate_dir() -> _pathlib.Path:
    """Get the default user terramate directory (~/.terramate)."""
    return _pathlib.Path.home() / ".terramate"


def is_env_var_set(value: str | None) -> bool:
    """
    Interpret a feature-toggle environment value.

    Any non-empty value other than "0" and "false" counts as set.
    """
    return bool(value) and value not in ("0", "false")


class Settings(_pydantic_settings.BaseSettings):
    """
    tmplugin configuration settings.

    All settings can be overridden via environment variables with the
    TM_ prefix, e.g. TM_PLUGIN_CALL_TIMEOUT=120.
    """

    model_config = _pydantic_settings.SettingsConfigDict(
        env_prefix="TM_",
        env_file=_get_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def construct_without_dotenv(cls, **kwargs: _typing.Any) -> "Settings":
        """Create Settings from environment variables only, without loading .env file.

        Useful for test isolation and for reproducing issues without
        .env interference.
        """
        return cls(_env_file=None, **kwargs)  # type: ignore[call-arg]

    user_terramate_dir: _pathlib.Path = _pydantic.Field(
        default_factory=default_user_terramate_dir,
        description="User terramate directory; plugins live under its plugins/ subdirectory",
    )

    disable_grpc_plugins: str = _pydantic.Field(
        default="",
        description="Raw TM_DISABLE_GRPC_PLUGINS value (see plugins_disabled)",
    )

    plugin_start_timeout: float = _pydantic.Field(
        default=constants.DEFAULT_START_TIMEOUT,
        gt=0,
        description="Seconds allowed for plugin spawn + handshake",
    )

    plugin_call_timeout: float = _pydantic.Field(
        default=constants.DEFAULT_CALL_TIMEOUT,
        gt=0,
        description="Seconds allowed for a single unary plugin RPC",
    )

    post_init_timeout: float = _pydantic.Field(
        default=constants.DEFAULT_POST_INIT_TIMEOUT,
        gt=0,
        description="Seconds allowed for a plugin post-init hook",
    )

    generate_timeout: float = _pydantic.Field(
        default=constants.DEFAULT_GENERATE_TIMEOUT,
        gt=0,
        description="Seconds allowed for a plugin generate override",
    )

    log_level: _typing.Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = (
        _pydantic.Field(default="WARNING", description="Logging level for the CLI")
    )

    @_pydantic.field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: _typing.Any) -> _typing.Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @_pydantic.field_validator("user_terramate_dir", mode="after")
    @classmethod
    def _expand_user_dir(cls, value: _pathlib.Path) -> _pathlib.Path:
        return value.expanduser()

    @property
    def plugins_disabled(self) -> bool:
        """Whether TM_DISABLE_GRPC_PLUGINS turns plugin discovery off."""
        return is_env_var_set(self.disable_grpc_plugins)

    @property
    def plugins_dir(self) -> _pathlib.Path:
        """Directory holding one subdirectory per installed plugin."""
        return self.user_terramate_dir / constants.PLUGINS_DIR_NAME
