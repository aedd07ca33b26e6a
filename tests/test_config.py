"""Tests for txrun configuration loading."""

import os
from pathlib import Path

import pytest
import yaml

from txrun.config import TxRunConfig, get_txrun_home, load_config
from txrun.errors import ConfigError
from txrun.process import ProcessRunner


def test_get_txrun_home_default(monkeypatch):
    monkeypatch.delenv("TXRUN_HOME", raising=False)
    assert get_txrun_home() == Path("~/.config/txrun").expanduser()


def test_get_txrun_home_env_var(monkeypatch, tmp_path):
    custom_home = tmp_path / "custom_home"
    monkeypatch.setenv("TXRUN_HOME", str(custom_home))
    assert get_txrun_home() == custom_home


def test_load_config_missing_file_uses_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("TXRUN_HOME", str(tmp_path))
    cfg = load_config()
    assert cfg == TxRunConfig()
    assert cfg.log_buffer_size == 100
    assert cfg.tx_prefix == "txtmp"
    assert cfg.timeout is None


def test_load_config_valid(monkeypatch, tmp_path):
    monkeypatch.setenv("TXRUN_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text(yaml.dump({
        "log_buffer_size": 20,
        "tx_prefix": "stage",
        "timeout": 60,
        "log_format": "structured",
        "log_file": "~/logs/txrun.log",
    }))

    cfg = load_config()

    assert isinstance(cfg, TxRunConfig)
    assert cfg.log_buffer_size == 20
    assert cfg.tx_prefix == "stage"
    assert cfg.timeout == 60
    assert cfg.get_log_file_path() == Path("~/logs/txrun.log").expanduser()


def test_load_config_explicit_path(tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text("shell: /bin/bash\n")
    assert load_config(path).shell == "/bin/bash"


def test_load_config_empty_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(path) == TxRunConfig()


def test_load_config_invalid_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("log_level: [unclosed\n")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config(path)


def test_load_config_not_a_mapping(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(path)


def test_load_config_unknown_key(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("buffer: 10\n")
    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(path)


@pytest.mark.parametrize(
    "data",
    [
        {"log_buffer_size": 0},
        {"timeout": -1},
        {"tx_prefix": "a/b"},
        {"log_format": "xml"},
        {"log_level": "LOUD"},
        {"script_wrap_width": "wide"},
    ],
)
def test_load_config_bad_values(tmp_path, data):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(data))
    with pytest.raises(ConfigError):
        load_config(path)


def test_load_config_with_env_file(monkeypatch, tmp_path):
    env_file = tmp_path / ".env.test"
    env_file.write_text("TXRUN_TEST_VAR=loaded_from_env")
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"env_file": str(env_file)}))

    monkeypatch.delenv("TXRUN_TEST_VAR", raising=False)
    load_config(path)
    assert os.environ.get("TXRUN_TEST_VAR") == "loaded_from_env"
    monkeypatch.delenv("TXRUN_TEST_VAR")


def test_make_runner():
    cfg = TxRunConfig(log_buffer_size=5, shell="sh", script_wrap_width=40, timeout=3)
    runner = cfg.make_runner()
    assert isinstance(runner, ProcessRunner)
    assert runner.buffer_size == 5
    assert runner.shell == "sh"
    assert runner.wrap_width == 40
    assert runner.timeout == 3
