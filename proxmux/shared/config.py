"""Centralized configuration management for proxmux."""

import os
from typing import Optional
from functools import lru_cache

from .errors import ConfigError


def _optional_float(value: Optional[str]) -> Optional[float]:
    """Parse a timeout where empty or zero means disabled."""
    if not value:
        return None
    parsed = float(value)
    return parsed if parsed > 0 else None


class Config:
    """Configuration class with all environment variables."""

    # Rule file
    CONFIG_FILE: str = os.getenv('PROXMUX_CONFIG_FILE', 'proxies.json')

    # Listener Configuration
    SERVER_HOST: str = os.getenv('SERVER_HOST', '0.0.0.0')
    TCP_SNIFF_PORT: int = int(os.getenv('TCP_SNIFF_PORT', '2222'))
    SHUTDOWN_GRACE_SECONDS: float = float(os.getenv('SHUTDOWN_GRACE_SECONDS', '3'))

    # Hot reload
    RELOAD_DEBOUNCE_MS: int = int(os.getenv('RELOAD_DEBOUNCE_MS', '300'))
    WATCHER_RETRY_SECONDS: float = float(os.getenv('WATCHER_RETRY_SECONDS', '1'))

    # TCP sniffing
    SNIFF_BUFFER_SIZE: int = int(os.getenv('SNIFF_BUFFER_SIZE', '1024'))
    SNIFF_READ_TIMEOUT: Optional[float] = _optional_float(os.getenv('SNIFF_READ_TIMEOUT', '0'))

    # Proxy Configuration
    PROXY_REQUEST_TIMEOUT: int = int(os.getenv('PROXY_REQUEST_TIMEOUT', '120'))
    PROXY_CONNECT_TIMEOUT: int = int(os.getenv('PROXY_CONNECT_TIMEOUT', '30'))

    # Logging
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO').upper()
    LOG_FORMAT: str = os.getenv('LOG_FORMAT', 'console')

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration values."""
        errors = []

        if not cls.CONFIG_FILE:
            errors.append("PROXMUX_CONFIG_FILE is required")

        if not cls.SERVER_HOST:
            errors.append("SERVER_HOST is required")

        # Check port ranges
        if not (1 <= cls.TCP_SNIFF_PORT <= 65535):
            errors.append(f"TCP_SNIFF_PORT must be between 1 and 65535, got {cls.TCP_SNIFF_PORT}")

        if cls.SNIFF_BUFFER_SIZE <= 0:
            errors.append(f"SNIFF_BUFFER_SIZE must be positive, got {cls.SNIFF_BUFFER_SIZE}")

        if cls.RELOAD_DEBOUNCE_MS < 0:
            errors.append(f"RELOAD_DEBOUNCE_MS must not be negative, got {cls.RELOAD_DEBOUNCE_MS}")

        if cls.SHUTDOWN_GRACE_SECONDS <= 0:
            errors.append(f"SHUTDOWN_GRACE_SECONDS must be positive, got {cls.SHUTDOWN_GRACE_SECONDS}")

        # Check timeout hierarchy
        if cls.PROXY_CONNECT_TIMEOUT <= 0:
            errors.append("PROXY_CONNECT_TIMEOUT must be positive")

        if cls.PROXY_CONNECT_TIMEOUT >= cls.PROXY_REQUEST_TIMEOUT:
            errors.append("PROXY_CONNECT_TIMEOUT must be less than PROXY_REQUEST_TIMEOUT")

        if cls.LOG_FORMAT not in ('console', 'json'):
            errors.append(f"LOG_FORMAT must be 'console' or 'json', got {cls.LOG_FORMAT}")

        if errors:
            raise ConfigError(f"Configuration errors: {'; '.join(errors)}")

    @classmethod
    def reload_debounce_seconds(cls) -> float:
        """Debounce window in seconds."""
        return cls.RELOAD_DEBOUNCE_MS / 1000.0


@lru_cache()
def get_config() -> Config:
    """Get validated configuration instance."""
    Config.validate()
    return Config()
