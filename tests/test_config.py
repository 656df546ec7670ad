import logging

import pytest

from bidroom_config import AppConfig, load_config, configure_logging, ensure_directories


def test_environment_then_flags(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("PORT", "4000")
    monkeypatch.setenv("BIDROOM_DATA_DIR", str(tmp_path / "env-data"))
    monkeypatch.setenv("BIDROOM_TICK_SECONDS", "0.5")
    monkeypatch.delenv("BIDROOM_PORT", raising=False)
    monkeypatch.delenv("BIDROOM_SETUP", raising=False)

    config = load_config([])
    assert config.port == 4000
    assert config.tick_seconds == 0.5
    assert config.setup_file == str(tmp_path / "env-data")

    config = load_config(["--port", "5000", "--data-dir", str(tmp_path / "cli-data"), "--log-level", "debug"])
    assert config.port == 5000
    assert config.data_dir == str(tmp_path / "cli-data")
    assert config.setup_file == str(tmp_path / "cli-data")
    assert config.log_level == "DEBUG"


def test_explicit_setup_file_is_kept(tmp_path) -> None:
    config = AppConfig(data_dir=str(tmp_path), setup_file=str(tmp_path / "setup.csv"))
    assert config.setup_file.endswith("setup.csv")


def test_tick_must_be_positive() -> None:
    with pytest.raises(ValueError):
        AppConfig(tick_seconds=0)


def test_ensure_directories_and_logging(tmp_path) -> None:
    config = AppConfig(data_dir=str(tmp_path / "d"), log_dir=str(tmp_path / "l"))
    ensure_directories(config)
    assert (tmp_path / "d").is_dir() and (tmp_path / "l").is_dir()

    configure_logging("info")
    assert logging.getLogger("werkzeug").level == logging.ERROR
