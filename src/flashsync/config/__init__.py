"""
Configuration management.

File loading, placeholder resolution and typed pipeline settings.
"""

from flashsync.config.loader import Config, load_config
from flashsync.config.resolver import resolve_config
from flashsync.config.settings import SyncSettings, redact_url

__all__ = [
    "load_config",
    "Config",
    "resolve_config",
    "SyncSettings",
    "redact_url",
]
