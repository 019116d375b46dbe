"""Accessors backing the two operations exposed to the UI front end.

``set_core_status`` starts or stops the core and records the choice in the
settings; ``get_core_status`` reports what the runtime currently knows. Both
return plain dictionaries so the RPC layer can forward them unchanged.
Failures are returned as ``{"kind", "message"}`` records instead of raised.

The running config is derived, rule providers included, before the
supervisor cell is taken, so status reads stay answerable while a download
is in flight.
"""

from pathlib import Path
from typing import Any

from loguru import logger

from tomoon_control.core.exceptions import CoreError, LockError
from tomoon_control.core.runtime import ControlRuntime

STATUS_LOCK_TIMEOUT = 0.5  # Seconds


def _resolve_config_path(runtime: ControlRuntime, config_path: str | Path | None) -> Path:
    if config_path:
        return Path(config_path)
    with runtime.shared.settings.read() as guard:
        current_sub = guard.value.current_sub
    if current_sub:
        return Path(current_sub)
    with runtime.shared.supervisor.read() as guard:
        return guard.value.layout.base_config


def set_core_status(
    runtime: ControlRuntime,
    enabled: bool,
    config_path: str | Path | None = None,
) -> dict[str, Any]:
    """Start or stop the core and persist the new ``enable`` value.

    Args:
        runtime: Control runtime
        enabled: Whether the core should run
        config_path: Base configuration to start with, defaults to the last
            one used or the bundled ``config.yaml``

    Returns:
        dict[str, Any]: ``{"ok": True, "enable": ...}`` or
            ``{"ok": False, "error": {"kind": ..., "message": ...}}``
    """
    path = None
    try:
        if enabled:
            path = _resolve_config_path(runtime, config_path)
            with runtime.shared.supervisor.read() as guard:
                supervisor = guard.value
            running_config = supervisor.prepare(path)
            with runtime.shared.supervisor.write() as guard:
                guard.value.launch(path, running_config)
        else:
            with runtime.shared.supervisor.write() as guard:
                guard.value.stop()

        with runtime.shared.settings.write() as guard:
            guard.value.enable = enabled
            if path is not None:
                guard.value.current_sub = str(path)
    except LockError as e:
        logger.error(f"Failed to acquire lock while setting core status: {e}")
        return {"ok": False, "error": e.to_dict()}
    except CoreError as e:
        logger.error(f"Failed to set core status to {enabled}: {e}")
        return {"ok": False, "error": e.to_dict()}

    runtime.mark_dirty()
    logger.info(f"Core {'enabled' if enabled else 'disabled'}")
    return {"ok": True, "enable": enabled}


def get_core_status(runtime: ControlRuntime) -> dict[str, Any]:
    """Report settings, process and download state.

    Each cell is read on its own; one that cannot be read is reported as
    ``None``. The supervisor cell is busy while the core starts or stops, so
    it is read last and with a timeout.
    """
    shared = runtime.shared
    readers = [
        ("download_status", shared.download_status, str, None),
        ("update_status", shared.update_status, str, None),
        ("enable", shared.settings, lambda settings: settings.enable, None),
        ("running", shared.supervisor, lambda supervisor: supervisor.is_running(), STATUS_LOCK_TIMEOUT),
    ]

    status: dict[str, Any] = {}
    for key, cell, extract, timeout in readers:
        try:
            with cell.read(timeout=timeout) as guard:
                status[key] = extract(guard.value)
        except LockError as e:
            logger.error(f"Failed to read {key}: {e}")
            status[key] = None
    return status
