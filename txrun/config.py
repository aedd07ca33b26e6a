"""
Configuration management for txrun.

Loads optional settings from $TXRUN_HOME/config.yaml. Every setting has a
default, so a missing file is not an error.
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from txrun.errors import ConfigError
from txrun.process import DEFAULT_BUFFER_SIZE, DEFAULT_SHELL, DEFAULT_WRAP_WIDTH, ProcessRunner
from txrun.transaction import DEFAULT_TX_PREFIX

LOG_FORMATS = ("structured", "pretty")


def get_txrun_home() -> Path:
    """Config home: $TXRUN_HOME or ~/.config/txrun."""
    return Path(os.environ.get("TXRUN_HOME", "~/.config/txrun")).expanduser()


@dataclass
class TxRunConfig:
    """Settings for running commands."""

    log_buffer_size: int = DEFAULT_BUFFER_SIZE
    tx_prefix: str = DEFAULT_TX_PREFIX
    shell: str = DEFAULT_SHELL
    script_wrap_width: int = DEFAULT_WRAP_WIDTH
    timeout: Optional[float] = None
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    env_file: Optional[str] = None

    def validate(self) -> None:
        """Validate configuration values."""
        if not isinstance(self.log_buffer_size, int) or self.log_buffer_size < 1:
            raise ConfigError(f"log_buffer_size must be a positive integer, got {self.log_buffer_size!r}")
        if not isinstance(self.script_wrap_width, int) or self.script_wrap_width < 1:
            raise ConfigError(f"script_wrap_width must be a positive integer, got {self.script_wrap_width!r}")
        if self.timeout is not None and (
            not isinstance(self.timeout, (int, float)) or self.timeout <= 0
        ):
            raise ConfigError(f"timeout must be a positive number, got {self.timeout!r}")
        if not self.tx_prefix or os.sep in self.tx_prefix:
            raise ConfigError(f"tx_prefix must be a plain name, got {self.tx_prefix!r}")
        if not self.shell:
            raise ConfigError("shell is required")
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(f"log_format must be one of {LOG_FORMATS}, got {self.log_format!r}")
        if not isinstance(logging.getLevelName(str(self.log_level).upper()), int):
            raise ConfigError(f"Unknown log_level: {self.log_level!r}")

    def get_log_file_path(self) -> Optional[Path]:
        return Path(self.log_file).expanduser() if self.log_file else None

    def make_runner(self, logger: Optional[logging.Logger] = None) -> ProcessRunner:
        """Build a ProcessRunner from these settings."""
        return ProcessRunner(
            logger=logger,
            buffer_size=self.log_buffer_size,
            shell=self.shell,
            wrap_width=self.script_wrap_width,
            timeout=self.timeout,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(config_path: Optional[Path] = None) -> TxRunConfig:
    """
    Load txrun configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $TXRUN_HOME/config.yaml

    Returns:
        TxRunConfig instance (defaults when the file does not exist)

    Raises:
        ConfigError: If config is invalid
    """
    if config_path is None:
        config_path = get_txrun_home() / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        return TxRunConfig()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {config_path}")

    known = {f.name for f in fields(TxRunConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys in {config_path}: {unknown}")

    config = TxRunConfig(**data)
    config.validate()

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path)

    return config
