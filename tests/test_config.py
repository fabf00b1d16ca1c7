from __future__ import annotations

from pathlib import Path

import pytest

from rtuenroll.core.config import EnrollConfig, default_config_path, load_config
from rtuenroll.core.errors import ConfigError
from rtuenroll.core.model import EnrollmentTiming


@pytest.fixture(autouse=True)
def _isolated_xdg(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    return tmp_path / "xdg"


def test_defaults_without_config_file() -> None:
    config = load_config()
    assert config == EnrollConfig()
    assert config.timing.poll_interval_ms == 60
    assert config.timing.stable_window_ms == 180


def test_xdg_config_is_loaded(tmp_path: Path) -> None:
    path = default_config_path()
    assert path == tmp_path / "xdg" / "rtuenroll" / "config.yaml"
    path.parent.mkdir(parents=True)
    path.write_text(
        "port: /dev/ttyUSB0\nwatchdog_interval_s: 2.5\ntiming:\n  bus_gap_ms: 200\n",
        encoding="utf-8",
    )

    config = load_config()

    assert config.port == "/dev/ttyUSB0"
    assert config.watchdog_interval_s == 2.5
    assert config.timing == EnrollmentTiming(bus_gap_ms=200)
    assert config.source == path


def test_explicit_path_must_exist(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Could not read"):
        load_config(tmp_path / "missing.yaml")


@pytest.mark.parametrize(
    "content",
    [
        "port: 12\n",
        "baud: 19200\n",
        "default_address: 300\n",
        "timing:\n  poll_interval_ms: fast\n",
        "timing:\n  unknown_ms: 3\n",
    ],
)
def test_invalid_config_is_rejected(tmp_path: Path, content: str) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError, match="Schema validation failed"):
        load_config(path)


@pytest.mark.parametrize(
    ("poll", "window"),
    [(100, 50), (60, 60), (1, 1)],
)
def test_window_not_longer_than_poll_interval_is_rejected(tmp_path: Path, poll: int, window: int) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        f"timing:\n  poll_interval_ms: {poll}\n  stable_window_ms: {window}\n",
        encoding="utf-8",
    )
    with pytest.raises(ConfigError, match="must exceed poll_interval_ms"):
        load_config(path)


def test_zero_window_is_rejected_by_schema(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("timing:\n  poll_interval_ms: 1\n  stable_window_ms: 0\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="Schema validation failed"):
        load_config(path)
