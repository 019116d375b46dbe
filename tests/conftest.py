"""Shared fixtures for the control plane tests.

Nothing here needs root or network access: every layout lives under
``tmp_path``, the core executable is a shell script that sleeps, and system
network capabilities are replaced by ``FakeNetwork``.
"""

import stat
from pathlib import Path

import pytest

from tomoon_control.core import network as network_module
from tomoon_control.core.config import CoreLayout
from tomoon_control.core.exceptions import NetworkError

FAKE_CORE_SCRIPT = """#!/bin/sh
echo "fake core started with $@"
exec sleep 30
"""

BASE_CONFIG = """\
port: 7890
mode: rule
proxies:
  - name: hk
    type: ss
    server: 1.2.3.4
    port: 8388
    cipher: aes-128-gcm
    password: secret
rules:
  - DOMAIN-SUFFIX,google.com,hk
  - MATCH,DIRECT
"""


class FakeNetwork:
    """Records calls to the system network capabilities."""

    def __init__(
        self,
        running: bool = False,
        apply_error: Exception | None = None,
        reset_error: Exception | None = None,
    ) -> None:
        self.running = running
        self.apply_error = apply_error
        self.reset_error = reset_error
        self.apply_calls = 0
        self.reset_calls = 0
        self.probe_calls = 0

    def is_core_process_running(self) -> bool:
        self.probe_calls += 1
        return self.running

    def apply_system_network(self) -> None:
        self.apply_calls += 1
        if self.apply_error is not None:
            raise self.apply_error

    def reset_system_network(self) -> None:
        self.reset_calls += 1
        if self.reset_error is not None:
            raise self.reset_error


@pytest.fixture
def layout(tmp_path: Path) -> CoreLayout:
    return CoreLayout.from_base_dir(
        tmp_path / "plugin",
        providers_root=tmp_path / "providers",
        process_log=tmp_path / "logs" / "clash.log",
        resolv_conf=tmp_path / "etc" / "resolv.conf",
    )


@pytest.fixture
def base_config(layout: CoreLayout) -> Path:
    layout.base_config.parent.mkdir(parents=True, exist_ok=True)
    layout.base_config.write_text(BASE_CONFIG, encoding="utf-8")
    return layout.base_config


@pytest.fixture
def fake_core(layout: CoreLayout) -> Path:
    layout.executable.parent.mkdir(parents=True, exist_ok=True)
    layout.executable.write_text(FAKE_CORE_SCRIPT, encoding="utf-8")
    layout.executable.chmod(layout.executable.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP)
    return layout.executable


@pytest.fixture
def fake_network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def failing_network() -> FakeNetwork:
    return FakeNetwork(apply_error=NetworkError("resolver is read-only"))


@pytest.fixture
def chattr_calls(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, bool]]:
    """Replace chattr with a recorder."""
    calls: list[tuple[str, bool]] = []

    def fake_set_immutable(path, *, immutable: bool) -> bool:
        calls.append((str(path), immutable))
        return True

    monkeypatch.setattr(network_module, "set_immutable", fake_set_immutable)
    return calls
