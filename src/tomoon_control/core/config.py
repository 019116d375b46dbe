"""Filesystem layout and fixed values used by the control plane.

This module centralizes:
- Paths of the core executable and its configuration files
- The recommended sub-documents written into the running configuration
- Timeouts and intervals

All paths hang off a single base directory so tests and alternative installs
can relocate the whole tree. The defaults assume the control plane runs as root
on the device, which is needed to touch ``/etc/resolv.conf`` and to start the
core in TUN mode.

Example:
    layout = CoreLayout.from_base_dir(Path("/home/deck/homebrew/plugins/tomoon"))
    print(layout.running_config)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

# Environment overrides
BASE_DIR_ENV: Final = "TOMOON_BASE_DIR"
PROVIDERS_ROOT_ENV: Final = "TOMOON_PROVIDERS_ROOT"

# Core layout relative to the base directory
CORE_DIR: Final = Path("bin/core")
CORE_EXECUTABLE: Final = "clash"
BASE_CONFIG_NAME: Final = "config.yaml"
RUNNING_CONFIG_NAME: Final = "running_config.yaml"
WEBUI_DIR_NAME: Final = "web"
RESOLV_BACKUP_NAME: Final = "resolv.conf.bk"

# Privileged system locations
DEFAULT_PROVIDERS_ROOT: Final = Path("/root/.config/clash")
DEFAULT_PROCESS_LOG: Final = Path("/tmp/tomoon.clash.log")
DEFAULT_RESOLV_CONF: Final = Path("/etc/resolv.conf")

# Settings file relative to the user's home
SETTINGS_RELATIVE_PATH: Final = Path(".config/tomoon/tomoon.json")

# Timing
DOWNLOAD_TIMEOUT: Final = 15.0  # Seconds
PERSIST_INTERVAL: Final = 1.0  # Seconds

# Running config literals
CONTROLLER_ADDRESS: Final = "127.0.0.1:9090"
CONNECTIVITY_CHECK_HOST: Final = "test.steampowered.com"
BYPASS_RULE: Final = f"DOMAIN,{CONNECTIVITY_CHECK_HOST},DIRECT"

TUN_CONFIG: Final[dict[str, Any]] = {
    "enable": True,
    "stack": "system",
    "auto-route": True,
    "auto-detect-interface": True,
}

DNS_CONFIG: Final[dict[str, Any]] = {
    "enable": True,
    "listen": "0.0.0.0:53",
    "enhanced-mode": "fake-ip",
    "fake-ip-range": "198.18.0.1/16",
    "nameserver": ["tcp://127.0.0.1:5353"],
}

PROFILE_CONFIG: Final[dict[str, Any]] = {
    "store-selected": True,
    "store-fake-ip": False,
}

# Top-level key -> replacement block, in insertion order
RECOMMENDED_BLOCKS: Final[dict[str, dict[str, Any]]] = {
    "tun": TUN_CONFIG,
    "dns": DNS_CONFIG,
    "profile": PROFILE_CONFIG,
}


@dataclass(frozen=True)
class CoreLayout:
    """Locations of every file the control plane reads or writes.

    Attributes:
        base_dir: Directory the core tree lives under
        executable: Path to the Clash core binary
        base_config: User-edited configuration the running config is derived from
        running_config: Derived configuration passed to the core
        webui_dir: Directory served by the core as its external UI
        providers_root: Root under which rule-provider files are saved
        process_log: File receiving the core's stdout and stderr
        resolv_conf: Live DNS resolver file
        resolv_backup: Copy of the resolver file taken before the core starts
    """

    base_dir: Path
    executable: Path
    base_config: Path
    running_config: Path
    webui_dir: Path
    providers_root: Path
    process_log: Path
    resolv_conf: Path
    resolv_backup: Path

    @classmethod
    def from_base_dir(
        cls,
        base_dir: Path | None = None,
        providers_root: Path | None = None,
        process_log: Path = DEFAULT_PROCESS_LOG,
        resolv_conf: Path = DEFAULT_RESOLV_CONF,
    ) -> "CoreLayout":
        """Build a layout rooted at ``base_dir``.

        Args:
            base_dir: Base directory, defaults to ``$TOMOON_BASE_DIR`` or the cwd
            providers_root: Rule-provider root, defaults to ``$TOMOON_PROVIDERS_ROOT``
                or ``/root/.config/clash``
            process_log: Log file for the core process
            resolv_conf: Resolver file to protect and restore

        Returns:
            CoreLayout: Layout with absolute paths
        """
        if base_dir is None:
            base_dir = Path(os.environ.get(BASE_DIR_ENV) or Path.cwd())
        if providers_root is None:
            providers_root = Path(os.environ.get(PROVIDERS_ROOT_ENV) or DEFAULT_PROVIDERS_ROOT)

        base_dir = base_dir.absolute()
        core_dir = base_dir / CORE_DIR
        return cls(
            base_dir=base_dir,
            executable=core_dir / CORE_EXECUTABLE,
            base_config=core_dir / BASE_CONFIG_NAME,
            running_config=core_dir / RUNNING_CONFIG_NAME,
            webui_dir=core_dir / WEBUI_DIR_NAME,
            providers_root=providers_root,
            process_log=process_log,
            resolv_conf=resolv_conf,
            resolv_backup=base_dir / RESOLV_BACKUP_NAME,
        )


def settings_path(home: Path) -> Path:
    """Return the settings file location for a home directory."""
    return Path(home) / SETTINGS_RELATIVE_PATH
