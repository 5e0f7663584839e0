"""
Configuration management for dirqueue
Stores settings like the queue root and worker poll interval
"""
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .log import get_logger

logger = get_logger(__name__)


class Config:
    """
    Manages dirqueue configuration settings.
    Stores configuration in a JSON file in the user's home directory.
    """

    DEFAULT_CONFIG = {
        "queue_root": "~/.dirqueue/queue",
        "worker_poll_interval": 1,
        "rescue_interval": 30,
        "job_timeout": 300,
        "command_property": "command",
        "log_level": "INFO",
        "log_format": "console",
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Optional custom path for config file
        """
        if config_path is None:
            # Store config in user's home directory
            self.config_dir = Path.home() / ".dirqueue"
            self.config_dir.mkdir(exist_ok=True)
            self.config_path = self.config_dir / "config.json"
        else:
            self.config_path = Path(config_path)
            self.config_dir = self.config_path.parent

        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """
        Read the config file, layering it over the defaults.

        A missing file is created with the defaults. A file that cannot be
        read or does not hold a JSON object is ignored with a warning.
        """
        try:
            stored = json.loads(self.config_path.read_text())
        except FileNotFoundError:
            self._save_config(self.DEFAULT_CONFIG)
            return dict(self.DEFAULT_CONFIG)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("config_load_failed", path=str(self.config_path), error=str(e))
            return dict(self.DEFAULT_CONFIG)

        if not isinstance(stored, dict):
            logger.warning("config_not_an_object", path=str(self.config_path), found=type(stored).__name__)
            return dict(self.DEFAULT_CONFIG)
        return {**self.DEFAULT_CONFIG, **stored}

    def _save_config(self, config: Dict[str, Any]):
        try:
            self.config_path.write_text(json.dumps(config, indent=2))
        except OSError as e:
            logger.error("config_save_failed", path=str(self.config_path), error=str(e))

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any):
        """
        Set a configuration value and persist to disk.

        Args:
            key: Configuration key
            value: Value to set
        """
        self._config[key] = value
        self._save_config(self._config)

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values"""
        return self._config.copy()

    def reset(self):
        """Reset configuration to defaults"""
        self._config = self.DEFAULT_CONFIG.copy()
        self._save_config(self._config)

    @property
    def queue_root(self) -> str:
        """Get queue root directory, with ~ expanded"""
        return os.path.expanduser(self._config["queue_root"])

    @property
    def worker_poll_interval(self) -> float:
        """Get worker_poll_interval setting"""
        return self._config["worker_poll_interval"]

    @property
    def rescue_interval(self) -> float:
        """Get rescue_interval setting (0 disables the worker's sweep)"""
        return self._config["rescue_interval"]

    @property
    def job_timeout(self) -> float:
        """Get job_timeout setting"""
        return self._config["job_timeout"]

    @property
    def command_property(self) -> str:
        """Get name of the property holding a job's shell command"""
        return self._config["command_property"]

    @property
    def log_level(self) -> str:
        """Get log_level setting"""
        return self._config["log_level"]

    @property
    def log_format(self) -> str:
        """Get log_format setting"""
        return self._config["log_format"]


# Global config instance
_config_instance = None


def get_config() -> Config:
    """Get the global configuration instance"""
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance
