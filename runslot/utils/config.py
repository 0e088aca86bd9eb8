"""
Configuration management for runslot.

This module provides a hierarchical configuration system with support for
YAML files, environment variable overrides, and programmatic access.

Configuration sources (in order of precedence):
1. Environment variables (RUNSLOT_* prefix)
2. YAML configuration file (~/.runslot/config.yaml)
3. Default values defined in dataclasses

Configuration sections:
- logging: Log level, file output, verbosity
- daemon: Server host and port
- scheduler: Main branch name and ingestion worker count
- executor: Job backend, workspace, Docker image, log directory
- reporting: Optional status webhook
"""

import os
import yaml
from pathlib import Path
from typing import Optional, Dict
from dataclasses import dataclass, field, asdict, fields

from runslot.utils.logging import get_logger

log = get_logger("config")

# Configuration directory and file paths
CONFIG_DIR = Path.home() / ".runslot"
CONFIG_FILE = CONFIG_DIR / "config.yaml"

@dataclass
class LoggingConfig:
    """
    Logging configuration section.
    """
    # Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL
    level: str = "INFO"
    # Optional path to log file (None = stdout only)
    file: Optional[str] = None
    verbose: bool = False

@dataclass
class DaemonConfig:
    """
    Daemon server configuration section.
    """
    host: str = "0.0.0.0"
    port: int = 8000

@dataclass
class SchedulerConfig:
    """
    Run scheduler configuration section.
    """
    # Branch whose runs are keyed by commit instead of collapsing to one slot
    main_branch: str = "main"
    # Number of ingestion consumer threads
    workers: int = 4

@dataclass
class ExecutorConfig:
    """
    Job executor configuration section.
    """
    # 'local' runs steps as subprocesses, 'docker' in a container, 'external' leaves
    # execution to another system that reports back over HTTP
    backend: str = "local"
    # Repository checkout the pipeline commands run in
    workdir: str = "."
    # Image used by the docker backend
    image: str = "rust:latest"
    # Seconds a cancelled job gets to exit before it is killed
    stop_timeout: int = 10
    # Directory for per-run output logs
    log_dir: str = "~/.runslot/logs"

@dataclass
class ReportingConfig:
    """
    Status reporting configuration section.
    """
    # Run transitions are POSTed here when set
    webhook_url: Optional[str] = None
    timeout: int = 10


@dataclass
class Config:
    """
    Root configuration container for runslot.

    Uses dataclass fields with factory functions to ensure each section
    has independent default instances.
    """

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    reporting: ReportingConfig = field(default_factory=ReportingConfig)

    @property
    def main_branch(self) -> str:
        """
        Convenience property for the scheduler's main branch.

        :return: Main branch name from scheduler configuration.
        """
        return self.scheduler.main_branch

    def to_dict(self) -> dict:
        """
        Convert configuration to dictionary.

        :return: Nested dictionary representation of all configuration sections.
        """
        return asdict(self)

    def save(self, path: Path = None) -> None:
        """
        Save configuration to YAML file.

        Creates parent directories if they don't exist.

        :param path: Path to save config file (default: ~/.runslot/config.yaml).
        """
        path = path or CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(
                self.to_dict(),
                f,
                default_flow_style=False,
                sort_keys=False  # Preserve field order from dataclass definition
            )

        log.info(f"Config saved to {path}")

# Global configuration instance
config = Config()

# File passed explicitly to load_config, None for the default location
_config_path: Optional[Path] = None

def _apply_env_vars(cfg: Config) -> None:
    """
    Apply environment variable overrides to configuration.

    Checks for RUNSLOT_* environment variables and applies them on top of
    file configuration, converting to the type of the current value.

    :param cfg: Configuration instance to update.
    """
    env_mappings = {
        "RUNSLOT_LOG_LEVEL": ("logging", "level"),
        "RUNSLOT_LOG_FILE": ("logging", "file"),
        "RUNSLOT_DAEMON_PORT": ("daemon", "port"),
        "RUNSLOT_MAIN_BRANCH": ("scheduler", "main_branch"),
        "RUNSLOT_WORKERS": ("scheduler", "workers"),
        "RUNSLOT_EXECUTOR": ("executor", "backend"),
        "RUNSLOT_WORKDIR": ("executor", "workdir"),
        "RUNSLOT_IMAGE": ("executor", "image"),
        "RUNSLOT_WEBHOOK_URL": ("reporting", "webhook_url"),
    }

    for env_var, (section, key) in env_mappings.items():
        value = os.environ.get(env_var)
        if value is not None:
            section_obj = getattr(cfg, section)
            current = getattr(section_obj, key)

            if isinstance(current, bool):
                value = value.lower() in ("true", "1", "yes")
            elif isinstance(current, int):
                value = int(value)

            setattr(section_obj, key, value)
            log.debug(f"Config override from {env_var}: {section}.{key} = {value}")


def _load_from_dict(cfg: Config, data: Dict) -> None:
    """
    Load configuration values from a dictionary.

    Only updates sections and fields that exist in the configuration
    dataclasses; unknown keys are ignored.

    :param cfg: Configuration instance to update.
    :param data: Nested dictionary with configuration values.
    """
    for section in fields(cfg):
        values = data.get(section.name)
        if not isinstance(values, dict):
            continue
        section_obj = getattr(cfg, section.name)
        for k, v in values.items():
            if hasattr(section_obj, k):
                setattr(section_obj, k, v)

def load_config(config_path: Path = None) -> Config:
    """
    Load configuration from file and environment variables.

    Resets to defaults, applies the YAML file if it exists, then applies
    environment overrides. Updates the global config instance and returns it.

    :param config_path: Optional path to config file (default: ~/.runslot/config.yaml).
    :return: Updated global configuration instance.
    """
    global config, _config_path

    config = Config()
    _config_path = config_path

    path = config_path or CONFIG_FILE
    if path.exists():
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            _load_from_dict(config, data)
            log.debug(f"Loaded config from {path}")
        except (OSError, yaml.YAMLError) as e:
            # Continue with defaults + env vars
            log.warning(f"Failed to load config from {path}: {e}")

    _apply_env_vars(config)
    return config

def get_config() -> Config:
    """
    Get the global configuration instance.

    :return: Global configuration instance.
    """
    return config

def get_config_path() -> Path:
    """
    Path of the configuration file in effect.

    :return: The file given to the last load_config() call, or CONFIG_FILE.
    """
    return _config_path or CONFIG_FILE
