from pathlib import Path

import pytest

from shared.config.config_loader import AppConfig, TradingConfig, build_app_config, load_config

ROOT = Path(__file__).resolve().parents[1]


def test_load_default_config_returns_appconfig():
    cfg = load_config(str(ROOT / "config" / "config.yml"), load_env=False)
    assert isinstance(cfg, AppConfig)
    assert isinstance(cfg.trading, TradingConfig)
    assert cfg.trading.investment_amount == 200
    assert cfg.trading.open_trend_windows == (15, 30, 45)
    assert cfg.trading.close_trend_windows == ()
    assert cfg.trading.max_history == 1000
    assert cfg.feed.source == "fake"
    assert set(cfg.feed.reference_ids) == {"btc", "eth"}


def test_load_config_expands_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text("state:\n  path: ${STATE_FILE}\n", encoding="utf-8")
    monkeypatch.setenv("STATE_FILE", "/tmp/state.json")

    cfg = load_config(str(cfg_path), load_env=False)
    assert cfg.state.path == "/tmp/state.json"


def test_load_config_missing_env_raises(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text("state:\n  path: ${STATE_FILE_MISSING}\n", encoding="utf-8")
    monkeypatch.delenv("STATE_FILE_MISSING", raising=False)

    with pytest.raises(ValueError) as exc:
        load_config(str(cfg_path), load_env=False)
    assert "Missing environment variable" in str(exc.value)


def test_load_config_reads_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DOTENV_STATE_FILE", "placeholder")
    monkeypatch.delenv("DOTENV_STATE_FILE")
    (tmp_path / ".env").write_text("DOTENV_STATE_FILE=from_dotenv.json\n", encoding="utf-8")
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text("state:\n  path: ${DOTENV_STATE_FILE}\n", encoding="utf-8")

    cfg = load_config(str(cfg_path))
    assert cfg.state.path == "from_dotenv.json"


def test_missing_config_file_raises(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yml"))


def test_unknown_key_is_rejected():
    with pytest.raises(ValueError):
        build_app_config({"trading": {"investment_amout": 100}})


def test_non_positive_window_is_rejected():
    with pytest.raises(ValueError):
        build_app_config({"trading": {"open_trend_windows": [15, 0]}})


def test_empty_config_uses_defaults():
    cfg = build_app_config({})
    assert cfg.trading == TradingConfig()
    assert cfg.state.flush_interval_secs == 1.0
