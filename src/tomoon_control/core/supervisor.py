"""Process supervision for the Clash core.

This module owns the core process handle. Starting the core:
- records the base configuration path
- derives the running configuration (downloading rule providers)
- launches the core with its output sent to the process log
- routes system DNS through the core

Stopping kills the core, waits for it and restores the resolver file.

At most one core process is owned at a time. Calling ``run`` while the core is
alive stops it first; a handle whose process already exited is discarded. A
process that survives the kill stays owned and ``stop`` raises ``CoreError``.

``run`` is ``prepare`` followed by ``launch``. Callers sharing the supervisor
can call ``prepare`` without exclusive access, since it never touches the
owned process.

Example:
    supervisor = CoreSupervisor(layout, SystemNetwork(layout))
    supervisor.run(layout.base_config)
    ...
    supervisor.stop()
"""

import subprocess
from functools import partial
from pathlib import Path

from loguru import logger

from tomoon_control.core.config import CoreLayout
from tomoon_control.core.downloader import download_rule_providers
from tomoon_control.core.exceptions import (
    ConfigFormatError,
    CoreError,
    CoreNotFoundError,
    NetworkError,
)
from tomoon_control.core.network import SystemNetwork, restore_resolver
from tomoon_control.core.state import DownloadStatus, Guarded
from tomoon_control.core.transformer import ProviderDownloader, transform_config

PROCESS_WAIT_TIMEOUT = 10.0  # Seconds


class CoreSupervisor:
    """Owner of the Clash core process.

    Attributes:
        layout: Paths of the executable, configs and logs
        network: System network capabilities
        path: Core executable
        config: Base configuration used by the next ``run``
        process: Live process handle, if any
    """

    def __init__(
        self,
        layout: CoreLayout,
        network: SystemNetwork,
        download_status: Guarded[DownloadStatus] | None = None,
        download: ProviderDownloader | None = None,
    ) -> None:
        self.layout = layout
        self.network = network
        self.path = layout.executable
        self.config = layout.base_config
        self.process: subprocess.Popen | None = None
        if download is None:
            download = partial(download_rule_providers, status=download_status)
        self._download = download

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    def is_running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def update_config_path(self, path: str | Path) -> None:
        self.config = Path(path)

    def prepare(self, config_path: str | Path) -> Path:
        """Derive the running config without touching the owned process.

        Only the layout and the downloader are used, so this can run without
        holding the supervisor cell while rule providers download.

        Args:
            config_path: Base configuration to derive the running config from

        Returns:
            Path: The running config that was written

        Raises:
            ConfigNotFoundError: If the base configuration is missing
            ConfigFormatError: If the configuration cannot be transformed
            RuleProviderDownloadError: If a rule provider cannot be fetched
        """
        try:
            return transform_config(Path(config_path), self.layout, self._download)
        except CoreError:
            raise
        except Exception as e:
            raise ConfigFormatError(str(e)) from e

    def launch(self, config_path: str | Path, running_config: Path) -> None:
        """Start the core on an already derived running config.

        Args:
            config_path: Base configuration the running config came from
            running_config: Output of ``prepare``

        Raises:
            CoreError: If a live core does not exit when restarted
            CoreNotFoundError: If the core executable cannot be launched
            NetworkError: If system DNS cannot be pointed at the core
        """
        if self.process is not None:
            if self.is_running():
                logger.info("Core already running, restarting it")
                self.stop()
            else:
                logger.info(f"Discarding exited core process (code {self.process.returncode})")
                self.process = None

        self.update_config_path(config_path)
        self.process = self._spawn(running_config)

        try:
            self.network.apply_system_network()
        except Exception as e:
            logger.error(f"Error occurred while setting system network: {e}")
            message = e.message if isinstance(e, CoreError) else str(e)
            try:
                self.stop()
            except CoreError as stop_error:
                logger.error(f"Failed to clean up after network error: {stop_error}")
            raise NetworkError(message) from e
        logger.info("Successfully set network status")

    def run(self, config_path: str | Path) -> None:
        """Start the core with a freshly derived running config.

        Args:
            config_path: Base configuration to derive the running config from

        Raises:
            ConfigNotFoundError: If the base configuration is missing
            ConfigFormatError: If the configuration cannot be transformed
            RuleProviderDownloadError: If a rule provider cannot be fetched
            CoreNotFoundError: If the core executable cannot be launched
            NetworkError: If system DNS cannot be pointed at the core
        """
        running_config = self.prepare(config_path)
        self.launch(config_path, running_config)

    def _spawn(self, running_config: Path) -> subprocess.Popen:
        try:
            self.layout.process_log.parent.mkdir(parents=True, exist_ok=True)
            with self.layout.process_log.open("w") as log_file:
                process = subprocess.Popen(
                    [
                        str(self.path),
                        "-d",
                        str(self.layout.providers_root),
                        "-f",
                        str(running_config),
                    ],
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                )
        except OSError as e:
            logger.error(f"run Clash failed: {e}")
            msg = f"Failed to launch {self.path}: {e}"
            raise CoreNotFoundError(msg) from e
        logger.info(f"Core started with pid {process.pid}")
        return process

    def stop(self) -> None:
        """Kill the core and restore the resolver file.

        Does nothing when no core process is owned. A process that survives
        the kill stays owned and the resolver is left alone.

        Raises:
            CoreError: If the core does not exit after being killed
            NetworkError: If the resolver backup cannot be copied back
        """
        process = self.process
        if process is None:
            return

        if process.poll() is None:
            process.kill()
        try:
            process.wait(timeout=PROCESS_WAIT_TIMEOUT)
        except subprocess.TimeoutExpired as e:
            logger.error(f"Core process {process.pid} did not exit after kill")
            msg = f"Core process {process.pid} did not exit within {PROCESS_WAIT_TIMEOUT}s"
            raise CoreError(msg) from e
        self.process = None
        logger.info(f"Core process {process.pid} stopped")

        restore_resolver(self.layout)
