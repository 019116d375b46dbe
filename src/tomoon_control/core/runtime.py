"""Control runtime: shared state, startup health check and settings persistence.

The runtime owns the five shared cells and one background thread. On start it:
- runs a health check that turns ``enable`` off and resets the system network
  when settings claim the core is on but no core process exists, which is what
  an unclean shutdown leaves behind
- starts the persistence loop, which writes the settings file whenever the
  runtime state is dirty

Lock failures inside the loop are logged and the iteration is skipped; the
loop keeps running until ``shutdown`` is called.

Example:
    runtime = ControlRuntime.create(layout)
    runtime.start()
    ...
    runtime.shutdown()
"""

import threading
from pathlib import Path

from loguru import logger

from tomoon_control.core.config import PERSIST_INTERVAL, CoreLayout, settings_path
from tomoon_control.core.exceptions import LockError
from tomoon_control.core.network import SystemNetwork
from tomoon_control.core.settings import RuntimeState, Settings
from tomoon_control.core.state import DownloadStatus, Guarded, SharedState
from tomoon_control.core.supervisor import CoreSupervisor

THREAD_JOIN_TIMEOUT = 5.0  # Seconds


class ControlRuntime:
    """Shared state plus the settings persistence loop."""

    def __init__(
        self,
        shared: SharedState,
        network: SystemNetwork,
        interval: float = PERSIST_INTERVAL,
    ) -> None:
        self.shared = shared
        self.network = network
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @classmethod
    def create(
        cls,
        layout: CoreLayout,
        home: Path | None = None,
        network: SystemNetwork | None = None,
        interval: float = PERSIST_INTERVAL,
    ) -> "ControlRuntime":
        """Build a runtime with settings loaded from ``home``.

        Args:
            layout: Core layout
            home: Home directory holding the settings file, defaults to ``~``
            network: Network capabilities, defaults to ``SystemNetwork(layout)``
            interval: Seconds between persistence checks
        """
        state = RuntimeState() if home is None else RuntimeState(home=Path(home))
        settings = Settings.open_or_default(settings_path(state.home))
        if network is None:
            network = SystemNetwork(layout)

        download_status = Guarded(DownloadStatus.NONE, "download_status")
        supervisor = CoreSupervisor(layout, network, download_status=download_status)
        shared = SharedState(
            settings=Guarded(settings, "settings"),
            state=Guarded(state, "state"),
            supervisor=Guarded(supervisor, "supervisor"),
            download_status=download_status,
        )
        return cls(shared, network, interval)

    def health_check(self) -> None:
        """Recover from a shutdown that left ``enable`` set without a core."""
        reset = False
        try:
            with self.shared.settings.write() as guard:
                if guard.value.enable and not self.network.is_core_process_running():
                    logger.warning("Settings say the core is enabled but it is not running")
                    guard.value.enable = False
                    reset = True
        except LockError as e:
            logger.error(f"runtime failed to acquire settings write lock: {e}")
            return

        if not reset:
            return

        self.mark_dirty()
        try:
            self.network.reset_system_network()
        except Exception as e:
            logger.error(f"Failed to reset system network: {e}")

    def mark_dirty(self) -> None:
        try:
            with self.shared.state.write() as guard:
                guard.value.mark_dirty()
        except LockError as e:
            logger.error(f"runtime failed to acquire state write lock: {e}")

    def flush_settings(self) -> bool:
        """Write the settings file if the state is dirty.

        Returns:
            bool: True if the settings file was written
        """
        try:
            with self.shared.state.read() as guard:
                if not guard.value.dirty:
                    return False
                path = settings_path(guard.value.home)
                revision = guard.value.revision
        except LockError as e:
            logger.error(f"runtime failed to acquire state read lock: {e}")
            return False

        try:
            with self.shared.settings.read() as guard:
                snapshot = guard.value.copy()
        except LockError as e:
            logger.error(f"runtime failed to acquire settings read lock: {e}")
            return False

        try:
            snapshot.save(path)
        except OSError as e:
            logger.error(f"Settings.save({path}) error: {e}")
            return False

        try:
            with self.shared.state.write() as guard:
                if guard.value.revision == revision:
                    guard.value.dirty = False
        except LockError as e:
            logger.error(f"runtime failed to acquire state write lock: {e}")
            return False

        logger.debug(f"Settings saved to {path}")
        return True

    def _persist_loop(self) -> None:
        logger.debug("Persistence loop started")
        while True:
            self.flush_settings()
            if self._stop_event.wait(self.interval):
                break
        logger.debug("Persistence loop stopped")

    def start(self) -> threading.Thread:
        """Run the health check and start the persistence thread."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread

        self.health_check()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._persist_loop,
            name="settings-persistence",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def shutdown(self) -> None:
        """Stop the persistence thread after a final flush."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=THREAD_JOIN_TIMEOUT)
            self._thread = None
        self.flush_settings()
