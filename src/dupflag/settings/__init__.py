"""Public interface for dupflag configuration settings."""

from .config import ENV_VAR_NAME, MAX_PAGE_SIZE, PROJECT_ROOT, Settings, get_settings, reload_settings

__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "PROJECT_ROOT",
    "ENV_VAR_NAME",
    "MAX_PAGE_SIZE",
]
