"""Exception hierarchy for proxmux."""

from typing import Optional


class ProxmuxError(Exception):
    """Base class for all proxmux errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigError(ProxmuxError):
    """Invalid environment configuration."""


class RuleLoadError(ProxmuxError):
    """The rule file could not be read or its top-level shape is wrong.

    Raised for problems that make the whole document unusable. Problems with
    a single rule entry are logged and the entry is skipped instead.
    """

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot load rules from {path}: {reason}")


class ListenerBindError(ProxmuxError):
    """A listener could not bind its port."""

    def __init__(self, port: int, host: str, error: Optional[Exception] = None):
        self.port = port
        self.host = host
        self.error = error
        detail = f": {error}" if error else ""
        super().__init__(f"Cannot bind {host}:{port}{detail}")
