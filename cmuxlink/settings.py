"""Configuration loaded from CMUXLINK_* environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from cmuxlink.execution.capture import DEFAULT_SCREEN_LINES
from cmuxlink.execution.workspace import DEFAULT_META_FILENAME


class CmuxlinkSettings(BaseSettings):
    """cmuxlink settings.

    Every field is read from an environment variable with the ``CMUXLINK_``
    prefix, e.g. ``CMUXLINK_ROOT=~/work`` maps to ``root``.  CLI options
    override these per invocation.
    """

    model_config = SettingsConfigDict(
        env_prefix="CMUXLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "WARNING"

    # -- Workspaces ------------------------------------------------------------
    root: str = "."
    """Root holding ``workspaces/``, ``archive/`` and the local state dir."""

    workspace_meta_filename: str = DEFAULT_META_FILENAME

    # -- cmux runtime ----------------------------------------------------------
    cmux_bin: str = "cmux"
    socket_path: str | None = None
    password: SecretStr | None = None
    command_timeout: float = 30.0
    """Seconds before a single cmux invocation is killed."""

    # -- Behaviour -------------------------------------------------------------
    open_concurrency: int = 4
    """Worker count for ``open --multi``."""

    screen_lines: int = DEFAULT_SCREEN_LINES


def get_settings() -> CmuxlinkSettings:
    """Return a cached settings instance.

    Call ``_get_settings_cached.cache_clear()`` in tests after overriding env
    vars.
    """
    return _get_settings_cached()


@lru_cache(maxsize=1)
def _get_settings_cached() -> CmuxlinkSettings:
    return CmuxlinkSettings()


