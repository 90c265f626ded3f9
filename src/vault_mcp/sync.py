"""Background refresh scheduler for the vault index.

Runs an asyncio task that periodically calls ``index.refresh()`` to keep the
in-memory snapshot in step with changes made in Obsidian.
"""

import asyncio
import logging

from vault_mcp.index import VaultIndex

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Manages periodic background refresh of the vault index.

    Lives on the server's event loop; start it from the lifespan and stop it
    on shutdown.
    """

    def __init__(self, index: VaultIndex, interval: float, refresh_on_start: bool = True):
        """Initialize the scheduler.

        Args:
            index: The vault index to refresh.
            interval: Refresh interval in seconds. Must be > 0.
            refresh_on_start: Build the index immediately instead of after
                the first interval.
        """
        if interval <= 0:
            raise ValueError(f"Refresh interval must be positive, got {interval}")

        self._index = index
        self._interval = interval
        self._refresh_on_start = refresh_on_start
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background refresh task (requires a running loop)."""
        if self.running:
            logger.warning("Index refresh task already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._refresh_loop(), name="vault-index-refresh")
        logger.info("Index refresh scheduled every %ds", self._interval)

    async def stop(self) -> None:
        """Stop the background task, cancelling a refresh in progress."""
        if not self.running:
            self._task = None
            return

        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Index refresh stopped")

    async def _refresh_loop(self) -> None:
        logger.debug("Refresh loop started")
        first = True

        while not self._stop_event.is_set():
            if not (first and self._refresh_on_start):
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                    break  # Stop event was set
                except asyncio.TimeoutError:
                    pass
            first = False

            try:
                generation = await self._index.refresh()
                logger.debug("Scheduled refresh done (generation %d)", generation)
            except Exception:
                logger.exception("Error during scheduled index refresh")

        logger.debug("Refresh loop stopped")
