"""Rule-provider downloads.

Clash configurations can reference remote rule lists under ``rule-providers``;
each entry names a ``url`` and the local ``path`` the core expects to read the
list from. This module fetches every entry and writes it below the providers
root before the core starts.

The batch is fail-fast: the first entry that cannot be fetched, decoded or
written aborts the remaining ones with ``RuleProviderDownloadError``.

Example:
    providers = {"reject": {"url": "https://example.com/reject.yaml", "path": "./ruleset/reject.yaml"}}
    download_rule_providers(providers, Path("/root/.config/clash"))
"""

import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from tomoon_control.core.config import DOWNLOAD_TIMEOUT
from tomoon_control.core.exceptions import LockError, RuleProviderDownloadError
from tomoon_control.core.state import DownloadStatus, Guarded

CURRENT_DIR_PREFIX = "./"


def resolve_provider_path(root: Path, path: str) -> Path:
    """Resolve a provider path below the providers root.

    A single leading ``./`` is stripped. Paths escaping the root are refused.

    Args:
        root: Providers root directory
        path: Path as written in the configuration

    Returns:
        Path: Location to save the provider to

    Raises:
        RuleProviderDownloadError: If the path points outside the root
    """
    path = path.removeprefix(CURRENT_DIR_PREFIX)
    save_path = root / path
    resolved_root = root.resolve()
    try:
        save_path.resolve().relative_to(resolved_root)
    except ValueError:
        msg = f"Rule provider path {path} escapes {root}"
        raise RuleProviderDownloadError(msg) from None
    return save_path


def _set_status(status: Guarded[DownloadStatus] | None, value: DownloadStatus) -> None:
    if status is None:
        return
    try:
        with status.write() as guard:
            guard.value = value
    except LockError as e:
        logger.error(f"Failed to update download status: {e}")


def _fetch(client: httpx.Client, url: str, timeout: float) -> str:
    # Client timeouts apply per phase; the deadline bounds the whole body
    deadline = time.monotonic() + timeout
    chunks: list[bytes] = []
    try:
        with client.stream("GET", url) as response:
            response.raise_for_status()
            for chunk in response.iter_bytes():
                chunks.append(chunk)
                if time.monotonic() > deadline:
                    msg = f"Downloading Rule Provider from {url} took longer than {timeout}s"
                    raise RuleProviderDownloadError(msg)
    except httpx.HTTPError as e:
        msg = f"Error occurred while downloading Rule Provider with error message : {e}"
        raise RuleProviderDownloadError(msg) from e

    try:
        return b"".join(chunks).decode("utf-8")
    except UnicodeDecodeError as e:
        logger.error("Error occurred while parsing Rule Provider.")
        msg = f"Error occurred while parsing Rule Provider from {url}"
        raise RuleProviderDownloadError(msg) from e


def _save(save_path: Path, body: str) -> None:
    try:
        save_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Failed while creating sub dir: {e}")
        msg = "Error occurred while creating Rule Provider dir."
        raise RuleProviderDownloadError(msg) from e

    try:
        save_path.write_text(body, encoding="utf-8")
    except OSError as e:
        logger.error(f"Error occurred while saving Rule Provider. path: {save_path}")
        msg = f"Error occurred while saving Rule Provider to {save_path}: {e}"
        raise RuleProviderDownloadError(msg) from e


def download_rule_providers(
    providers: Mapping[str, Any],
    root: Path,
    *,
    client: httpx.Client | None = None,
    status: Guarded[DownloadStatus] | None = None,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> list[Path]:
    """Download every rule provider that names both a url and a path.

    Args:
        providers: The ``rule-providers`` mapping of the configuration
        root: Directory provider paths are resolved against
        client: HTTP client to use, a new one is created when omitted
        status: Tracker updated with the batch progress
        timeout: Per-phase client timeout and total deadline per entry, in seconds

    Returns:
        list[Path]: Files written, in configuration order

    Raises:
        RuleProviderDownloadError: On the first entry that fails
    """
    _set_status(status, DownloadStatus.DOWNLOADING)
    own_client = client is None
    if client is None:
        client = httpx.Client(timeout=timeout, follow_redirects=True)

    saved: list[Path] = []
    try:
        for name, entry in providers.items():
            if not isinstance(entry, Mapping):
                logger.warning(f"Rule provider {name} is not a mapping, skipping")
                continue
            url = entry.get("url")
            path = entry.get("path")
            if not isinstance(url, str) or not isinstance(path, str):
                logger.debug(f"Rule provider {name} has no url/path pair, skipping")
                continue

            save_path = resolve_provider_path(root, path)
            logger.debug(f"Downloading rule provider {name} from {url}")
            body = _fetch(client, url, timeout)
            _save(save_path, body)
            logger.info(f"Rule-Provider {save_path} downloaded.")
            saved.append(save_path)
    except RuleProviderDownloadError:
        _set_status(status, DownloadStatus.FAILED)
        raise
    except Exception:
        _set_status(status, DownloadStatus.ERROR)
        raise
    finally:
        if own_client:
            client.close()

    _set_status(status, DownloadStatus.SUCCESS)
    return saved
