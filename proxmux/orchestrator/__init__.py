"""Reload engine: config watcher and the reconciliation loop."""

from .main_orchestrator import ProxyOrchestrator
from .watcher import ConfigWatcher

__all__ = ['ConfigWatcher', 'ProxyOrchestrator']
