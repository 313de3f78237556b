"""Warden core module.

Shared components used across the API and the worker:
- Configuration management
- Logging setup
- Domain error taxonomy
"""

from warden.core.config import (
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    IdempotencySettings,
    S3Settings,
    SecuritySettings,
    Settings,
    SMTPSettings,
    TokenSettings,
)
from warden.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "IdempotencySettings",
    "S3Settings",
    "SMTPSettings",
    "SecuritySettings",
    "Settings",
    "TokenSettings",
    "clear_settings_cache",
    "get_settings",
    "get_settings_safe",
]
