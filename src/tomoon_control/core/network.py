"""System network helpers used around the proxy core.

This module provides the OS-level capabilities the supervisor and runtime
invoke:
- Detecting whether a core process is alive
- Pointing the system resolver at the core's DNS listener
- Restoring the resolver and restarting NetworkManager
- Probing the core's DNS listener

The live resolver file is made immutable while the core runs so that
NetworkManager or DHCP hooks cannot rewrite it underneath the core. Every
restore therefore clears the flag first.

Example:
    network = SystemNetwork(layout)
    if not network.is_core_process_running():
        network.reset_system_network()
"""

import shutil
import subprocess
from pathlib import Path
from typing import cast

import dns.exception
import dns.resolver
import psutil
from loguru import logger

from tomoon_control.core.config import CONNECTIVITY_CHECK_HOST, CORE_EXECUTABLE, CoreLayout
from tomoon_control.core.exceptions import NetworkError

# DNS probe constants
PROBE_NAMESERVER = "127.0.0.1"
PROBE_PORT = 53
PROBE_TIMEOUT = 1.0  # seconds
PROBE_LIFETIME = 3.0  # seconds

LOCAL_RESOLV_CONF = f"nameserver {PROBE_NAMESERVER}\n"
NETWORK_MANAGER_RESTART = ["systemctl", "restart", "NetworkManager"]


def set_immutable(path: Path | str, *, immutable: bool) -> bool:
    """Toggle the filesystem immutable flag on ``path``.

    Returns:
        bool: True if ``chattr`` succeeded
    """
    flag = "+i" if immutable else "-i"
    try:
        result = subprocess.run(
            ["chattr", flag, str(path)],
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        logger.warning("chattr not available, resolver file flags left unchanged")
        return False
    if result.returncode != 0:
        logger.warning(f"chattr {flag} {path} failed: {result.stderr.strip()}")
        return False
    return True


def restore_resolver(layout: CoreLayout) -> bool:
    """Copy the resolver backup over the live resolver file.

    The backup is removed once restored so the next launch backs up the
    resolver as it is then, not as it was before the first launch.

    Returns:
        bool: False if there was no backup to restore

    Raises:
        NetworkError: If the backup cannot be copied or removed
    """
    if not layout.resolv_backup.exists():
        logger.warning(f"No resolver backup at {layout.resolv_backup}")
        return False

    set_immutable(layout.resolv_conf, immutable=False)
    try:
        shutil.copyfile(layout.resolv_backup, layout.resolv_conf)
        layout.resolv_backup.unlink()
    except OSError as e:
        msg = f"Could not restore {layout.resolv_conf}: {e}"
        raise NetworkError(msg) from e
    logger.info(f"Restored {layout.resolv_conf} from {layout.resolv_backup}")
    return True


class SystemNetwork:
    """OS network capabilities for a given core layout."""

    def __init__(self, layout: CoreLayout, process_name: str = CORE_EXECUTABLE) -> None:
        self.layout = layout
        self.process_name = process_name

    def is_core_process_running(self) -> bool:
        for process in psutil.process_iter(["name", "status"]):
            info = process.info
            if info.get("name") == self.process_name and info.get("status") != psutil.STATUS_ZOMBIE:
                return True
        return False

    def apply_system_network(self) -> None:
        """Route system DNS through the core.

        The current resolver file is backed up unless a backup left by an
        unclean shutdown is still waiting to be restored, then replaced with
        a local nameserver entry and locked against rewrites.

        Raises:
            NetworkError: If the resolver file cannot be backed up or written
        """
        resolv_conf = self.layout.resolv_conf
        try:
            if not self.layout.resolv_backup.exists():
                shutil.copyfile(resolv_conf, self.layout.resolv_backup)
                logger.debug(f"Backed up {resolv_conf} to {self.layout.resolv_backup}")
            set_immutable(resolv_conf, immutable=False)
            resolv_conf.write_text(LOCAL_RESOLV_CONF, encoding="utf-8")
        except OSError as e:
            msg = f"Could not update {resolv_conf}: {e}"
            raise NetworkError(msg) from e
        set_immutable(resolv_conf, immutable=True)

    def reset_system_network(self) -> None:
        """Put the resolver back and restart NetworkManager.

        Raises:
            NetworkError: If the resolver cannot be restored or the restart fails
        """
        restore_resolver(self.layout)
        try:
            result = subprocess.run(
                NETWORK_MANAGER_RESTART,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            msg = "systemctl not available"
            raise NetworkError(msg) from e
        if result.returncode != 0:
            msg = f"Restarting NetworkManager failed: {result.stderr.strip()}"
            raise NetworkError(msg)
        logger.info("System network reset")

    def probe_core_dns(self, host: str = CONNECTIVITY_CHECK_HOST) -> str | None:
        """Resolve ``host`` through the core's DNS listener.

        Returns:
            str | None: First A record, or None if the listener did not answer
        """
        resolver = cast("dns.resolver.Resolver", dns.resolver.Resolver(configure=False))
        resolver.nameservers = [PROBE_NAMESERVER]
        resolver.port = PROBE_PORT
        resolver.timeout = PROBE_TIMEOUT
        resolver.lifetime = PROBE_LIFETIME
        try:
            answer = resolver.resolve(host, "A")
        except dns.exception.DNSException as e:
            logger.debug(f"Core DNS probe for {host} failed: {e}")
            return None
        return str(answer[0])
