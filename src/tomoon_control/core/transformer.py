"""Rewrite a Clash configuration into the recommended running profile.

The transformation is applied to the user's base configuration and written to
the running config path; the base file is never modified. In order:
- ``external-controller`` is pinned to the local controller address
- the connectivity-check bypass rule is placed at the head of ``rules``
- every ``rule-providers`` entry is downloaded
- ``external-ui`` points at the bundled web UI
- ``tun``, ``dns`` and ``profile`` are replaced with the recommended blocks

Replacing the three blocks instead of merging them makes the transform
idempotent: running it on its own output yields the same blocks.

Example:
    transform_config(layout.base_config, layout)
"""

import copy
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from tomoon_control.core.config import (
    BYPASS_RULE,
    CONTROLLER_ADDRESS,
    RECOMMENDED_BLOCKS,
    CoreLayout,
)
from tomoon_control.core.downloader import download_rule_providers
from tomoon_control.core.exceptions import ConfigFormatError, ConfigNotFoundError

ConfigDocument = dict[str, Any]
ProviderDownloader = Callable[[dict[str, Any], Path], Any]


def load_config(path: Path) -> ConfigDocument:
    """Parse a configuration document.

    Raises:
        ConfigNotFoundError: If the file does not exist
        ConfigFormatError: If it is not valid YAML or not a mapping
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError as e:
        msg = f"Config file {path} not found"
        raise ConfigNotFoundError(msg) from e
    except (OSError, UnicodeDecodeError) as e:
        msg = f"Could not read config file {path}: {e}"
        raise ConfigFormatError(msg) from e

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in {path}: {e}"
        raise ConfigFormatError(msg) from e

    if not isinstance(document, dict):
        msg = f"Config file {path} is not a mapping"
        raise ConfigFormatError(msg)
    return document


def dump_config(document: ConfigDocument) -> str:
    return yaml.safe_dump(
        document,
        allow_unicode=True,
        default_flow_style=False,
        sort_keys=False,
    )


def _prepend_bypass_rule(document: ConfigDocument) -> None:
    rules = document.get("rules")
    if rules is None:
        return
    if not isinstance(rules, list):
        msg = "'rules' must be a list"
        raise ConfigFormatError(msg)
    rules[:] = [rule for rule in rules if rule != BYPASS_RULE]
    rules.insert(0, BYPASS_RULE)


def _replace_block(document: ConfigDocument, key: str, block: dict[str, Any]) -> None:
    # Re-inserting moves the key to the end, matching a fresh insert
    document.pop(key, None)
    document[key] = copy.deepcopy(block)


def apply_recommended_profile(
    document: ConfigDocument,
    layout: CoreLayout,
    download: ProviderDownloader | None = None,
) -> ConfigDocument:
    """Mutate ``document`` in place into the running profile.

    Args:
        document: Parsed base configuration
        layout: Paths for the web UI and providers root
        download: Called with the ``rule-providers`` mapping and providers root

    Returns:
        ConfigDocument: The same, mutated document

    Raises:
        ConfigFormatError: If ``rules`` or ``rule-providers`` has the wrong shape
        RuleProviderDownloadError: If a provider download fails
    """
    document["external-controller"] = CONTROLLER_ADDRESS

    _prepend_bypass_rule(document)

    providers = document.get("rule-providers")
    if providers is None:
        logger.info("no rule-providers found.")
    elif not isinstance(providers, dict):
        msg = "'rule-providers' must be a mapping"
        raise ConfigFormatError(msg)
    else:
        if download is None:
            download = download_rule_providers
        download(providers, layout.providers_root)
        logger.info("All rules provider downloaded")

    document["external-ui"] = str(layout.webui_dir)

    for key, block in RECOMMENDED_BLOCKS.items():
        _replace_block(document, key, block)

    return document


def transform_config(
    config_path: Path,
    layout: CoreLayout,
    download: ProviderDownloader | None = None,
) -> Path:
    """Derive the running configuration from a base configuration file.

    Nothing is written unless every step succeeds.

    Args:
        config_path: Base configuration to read
        layout: Layout providing the running config path
        download: Rule-provider downloader, see ``apply_recommended_profile``

    Returns:
        Path: The running config path that was written

    Raises:
        ConfigNotFoundError: If the base configuration is missing
        ConfigFormatError: If it cannot be parsed or the output cannot be written
        RuleProviderDownloadError: If a provider download fails
    """
    document = load_config(config_path)
    apply_recommended_profile(document, layout, download)

    output = dump_config(document)
    try:
        layout.running_config.parent.mkdir(parents=True, exist_ok=True)
        layout.running_config.write_text(output, encoding="utf-8")
    except OSError as e:
        msg = f"Could not write running config {layout.running_config}: {e}"
        raise ConfigFormatError(msg) from e

    logger.info(f"Running config written to {layout.running_config}")
    return layout.running_config
