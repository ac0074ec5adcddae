"""Config change monitor: debounced file watching for the rule file."""

import asyncio
from pathlib import Path
from typing import Callable, Optional

import watchfiles

from ..shared.config import Config
from ..shared.logging import get_logger

logger = get_logger("watcher")


class ConfigWatcher:
    """Watch the rule file and call ``on_change`` once per burst of events.

    The parent directory is watched rather than the file itself, so editors
    that replace the file through a rename are still seen.
    """

    def __init__(
        self,
        path,
        on_change: Callable[[], None],
        debounce: Optional[float] = None,
        retry_seconds: Optional[float] = None,
        force_polling: bool = False,
    ):
        self.path = Path(path).resolve()
        self.on_change = on_change
        self.debounce = debounce if debounce is not None else Config.reload_debounce_seconds()
        self.retry_seconds = retry_seconds if retry_seconds is not None else Config.WATCHER_RETRY_SECONDS
        self.force_polling = force_polling
        self._timer: Optional[asyncio.Task] = None

    def _is_config_file(self, change: watchfiles.Change, path: str) -> bool:
        return Path(path).name == self.path.name

    def notify(self):
        """Record a change event, (re)arming the debounce timer."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.create_task(self._fire_after_quiet())

    async def _fire_after_quiet(self):
        await asyncio.sleep(self.debounce)
        logger.info("Config file changed", path=str(self.path))
        self.on_change()

    async def run(self, stop_event: asyncio.Event):
        """Watch until ``stop_event`` is set, restarting the watch after errors."""
        watch_dir = self.path.parent
        logger.info("Watching config file", path=str(self.path))

        while not stop_event.is_set():
            try:
                async for changes in watchfiles.awatch(
                    watch_dir,
                    watch_filter=self._is_config_file,
                    stop_event=stop_event,
                    force_polling=self.force_polling,
                ):
                    logger.debug("Filesystem events", count=len(changes))
                    self.notify()
            except (OSError, RuntimeError) as e:
                logger.warning("Config watcher error, retrying", error=str(e), retry_in=self.retry_seconds)
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.retry_seconds)
                except asyncio.TimeoutError:
                    pass

        self.cancel_pending()

    def cancel_pending(self):
        """Drop a pending debounced notification."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
