"""Main orchestrator: owns the reload loop.

Reload signals from the config watcher are conflated in a single-slot queue
and consumed one at a time, so reconciliations never overlap and the
listener map is only touched from this loop.
"""

import asyncio
from pathlib import Path
from typing import Optional

from ..ports.manager import ListenerManager
from ..ports.models import derive_port_bindings, derive_sniff_table
from ..rules.models import RuleSet
from ..rules.store import dump_rules, load_rules
from ..shared.config import Config
from ..shared.errors import RuleLoadError
from ..shared.logging import get_logger
from .watcher import ConfigWatcher

logger = get_logger("orchestrator")


class ProxyOrchestrator:
    """Loads rules, reconciles listeners and reacts to rule file changes."""

    def __init__(
        self,
        config_path=None,
        manager: Optional[ListenerManager] = None,
        debounce: Optional[float] = None,
        force_polling: bool = False,
    ):
        self.config_path = Path(config_path or Config.CONFIG_FILE)
        self.manager = manager or ListenerManager()
        self.ruleset: Optional[RuleSet] = None
        self.generation = 0

        self._reload_queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self.watcher = ConfigWatcher(
            self.config_path,
            self.request_reload,
            debounce=debounce,
            force_polling=force_polling,
        )

    def request_reload(self):
        """Ask for a reload; extra requests while one is pending are dropped."""
        try:
            self._reload_queue.put_nowait(True)
        except asyncio.QueueFull:
            logger.debug("Reload already pending, signal conflated")

    async def reload(self, initial: bool = False) -> bool:
        """Load the rule file and reconcile listeners against it.

        Args:
            initial: Whether this is the startup load, where errors are fatal

        Returns:
            True if the new rules were applied, False if the previous
            generation was kept

        Raises:
            RuleLoadError: On the initial load only
            ListenerBindError: If a listener cannot bind its port
        """
        try:
            ruleset = load_rules(self.config_path)
        except RuleLoadError as e:
            if initial:
                raise
            logger.error("Reload failed, keeping previous rules", error=e.message, generation=self.generation)
            return False

        bindings = derive_port_bindings(ruleset)
        sniff_table = derive_sniff_table(ruleset)
        await self.manager.apply(bindings, sniff_table)

        self.ruleset = ruleset
        self.generation += 1
        logger.info("Rules applied", generation=self.generation, **ruleset.summary())
        logger.debug("Active rules", generation=self.generation, rules=dump_rules(ruleset))
        return True

    async def run(self, stop_event: asyncio.Event):
        """Serve until ``stop_event`` is set."""
        await self.reload(initial=True)

        watcher_task = asyncio.create_task(self.watcher.run(stop_event), name="config-watcher")
        stop_task = asyncio.create_task(stop_event.wait())
        try:
            while not stop_event.is_set():
                get_task = asyncio.create_task(self._reload_queue.get())
                done, _ = await asyncio.wait({get_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
                if get_task not in done:
                    get_task.cancel()
                    break
                await self.reload()
        finally:
            stop_event.set()
            stop_task.cancel()
            self.watcher.cancel_pending()
            try:
                await asyncio.wait_for(watcher_task, timeout=Config.SHUTDOWN_GRACE_SECONDS)
            except asyncio.TimeoutError:
                watcher_task.cancel()
            await self.manager.stop_all()
            logger.info("Orchestrator stopped", generation=self.generation)
