"""Tests for the health check and settings persistence loop."""

import json
import time
from pathlib import Path

import pytest

from tomoon_control.core.config import CoreLayout, settings_path
from tomoon_control.core.exceptions import NetworkError
from tomoon_control.core.runtime import ControlRuntime
from tomoon_control.core.settings import Settings

from .conftest import FakeNetwork


@pytest.fixture
def home(tmp_path: Path) -> Path:
    return tmp_path / "home"


def make_runtime(layout: CoreLayout, home: Path, network: FakeNetwork, interval: float = 0.01) -> ControlRuntime:
    return ControlRuntime.create(layout, home=home, network=network, interval=interval)


def write_settings(home: Path, **values) -> Path:
    path = settings_path(home)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(values), encoding="utf-8")
    return path


def read_settings(runtime: ControlRuntime) -> Settings:
    with runtime.shared.settings.read() as guard:
        return guard.value.copy()


def is_dirty(runtime: ControlRuntime) -> bool:
    with runtime.shared.state.read() as guard:
        return guard.value.dirty


def test_create_loads_persisted_settings(layout: CoreLayout, home: Path, fake_network: FakeNetwork) -> None:
    write_settings(home, enable=True, current_sub="/data/sub.yaml", unknown="ignored")

    runtime = make_runtime(layout, home, fake_network)

    assert read_settings(runtime) == Settings(enable=True, current_sub="/data/sub.yaml")
    assert not is_dirty(runtime)


def test_create_falls_back_to_defaults(layout: CoreLayout, home: Path, fake_network: FakeNetwork) -> None:
    path = settings_path(home)
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")

    runtime = make_runtime(layout, home, fake_network)

    assert read_settings(runtime) == Settings()


def test_health_check_disables_when_core_is_gone(layout: CoreLayout, home: Path) -> None:
    write_settings(home, enable=True)
    network = FakeNetwork(running=False)
    runtime = make_runtime(layout, home, network)

    runtime.health_check()

    assert read_settings(runtime).enable is False
    assert network.reset_calls == 1
    assert is_dirty(runtime)


def test_health_check_keeps_enable_when_core_is_running(layout: CoreLayout, home: Path) -> None:
    write_settings(home, enable=True)
    network = FakeNetwork(running=True)
    runtime = make_runtime(layout, home, network)

    runtime.health_check()

    assert read_settings(runtime).enable is True
    assert network.reset_calls == 0
    assert not is_dirty(runtime)


def test_health_check_ignores_disabled_settings(layout: CoreLayout, home: Path) -> None:
    network = FakeNetwork(running=False)
    runtime = make_runtime(layout, home, network)

    runtime.health_check()

    assert network.reset_calls == 0


def test_health_check_survives_reset_failure(layout: CoreLayout, home: Path) -> None:
    write_settings(home, enable=True)
    network = FakeNetwork(reset_error=NetworkError("systemctl not available"))
    runtime = make_runtime(layout, home, network)

    runtime.health_check()

    assert read_settings(runtime).enable is False
    assert network.reset_calls == 1


def test_flush_does_nothing_while_clean(layout: CoreLayout, home: Path, fake_network: FakeNetwork) -> None:
    runtime = make_runtime(layout, home, fake_network)

    assert runtime.flush_settings() is False
    assert not settings_path(home).exists()


def test_flush_writes_once_per_dirty_transition(
    layout: CoreLayout, home: Path, fake_network: FakeNetwork, monkeypatch: pytest.MonkeyPatch
) -> None:
    runtime = make_runtime(layout, home, fake_network)
    saves: list[Path] = []
    original_save = Settings.save

    def counting_save(self: Settings, path: Path) -> None:
        saves.append(path)
        original_save(self, path)

    monkeypatch.setattr(Settings, "save", counting_save)
    with runtime.shared.settings.write() as guard:
        guard.value.enable = True
    runtime.mark_dirty()

    assert runtime.flush_settings() is True
    assert runtime.flush_settings() is False
    assert runtime.flush_settings() is False

    assert saves == [settings_path(home)]
    assert not is_dirty(runtime)
    assert json.loads(settings_path(home).read_text(encoding="utf-8")) == {"enable": True, "current_sub": ""}


def test_change_during_flush_keeps_state_dirty(
    layout: CoreLayout, home: Path, fake_network: FakeNetwork, monkeypatch: pytest.MonkeyPatch
) -> None:
    runtime = make_runtime(layout, home, fake_network)
    original_save = Settings.save

    def racing_save(self: Settings, path: Path) -> None:
        original_save(self, path)
        with runtime.shared.settings.write() as guard:
            guard.value.current_sub = "/data/new.yaml"
        runtime.mark_dirty()

    monkeypatch.setattr(Settings, "save", racing_save)
    runtime.mark_dirty()

    assert runtime.flush_settings() is True
    assert is_dirty(runtime)

    monkeypatch.setattr(Settings, "save", original_save)
    assert runtime.flush_settings() is True
    assert not is_dirty(runtime)
    assert json.loads(settings_path(home).read_text(encoding="utf-8"))["current_sub"] == "/data/new.yaml"


def test_failed_save_stays_dirty(layout: CoreLayout, tmp_path: Path, fake_network: FakeNetwork) -> None:
    home = tmp_path / "home-is-a-file"
    home.write_text("", encoding="utf-8")
    runtime = make_runtime(layout, home, fake_network)
    runtime.mark_dirty()

    assert runtime.flush_settings() is False
    assert is_dirty(runtime)


def test_poisoned_state_skips_iteration(layout: CoreLayout, home: Path, fake_network: FakeNetwork) -> None:
    runtime = make_runtime(layout, home, fake_network)
    runtime.mark_dirty()
    with pytest.raises(RuntimeError), runtime.shared.state.write():
        raise RuntimeError("poison")

    assert runtime.flush_settings() is False
    assert not settings_path(home).exists()


def test_poisoned_settings_skips_iteration(layout: CoreLayout, home: Path, fake_network: FakeNetwork) -> None:
    runtime = make_runtime(layout, home, fake_network)
    runtime.mark_dirty()
    with pytest.raises(RuntimeError), runtime.shared.settings.write():
        raise RuntimeError("poison")

    assert runtime.flush_settings() is False
    assert is_dirty(runtime)


def test_loop_persists_in_background(layout: CoreLayout, home: Path, fake_network: FakeNetwork) -> None:
    runtime = make_runtime(layout, home, fake_network)
    thread = runtime.start()
    try:
        assert thread.is_alive()
        with runtime.shared.settings.write() as guard:
            guard.value.current_sub = "/data/sub.yaml"
        runtime.mark_dirty()

        deadline = time.monotonic() + 5
        while is_dirty(runtime) and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        runtime.shutdown()

    assert not thread.is_alive()
    assert Settings.open(settings_path(home)).current_sub == "/data/sub.yaml"


def test_start_runs_health_check(layout: CoreLayout, home: Path) -> None:
    write_settings(home, enable=True)
    network = FakeNetwork(running=False)
    runtime = make_runtime(layout, home, network)

    runtime.start()
    runtime.shutdown()

    assert network.reset_calls == 1
    assert Settings.open(settings_path(home)).enable is False
