"""Configuration loader with multi-source support."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import platformdirs
import toml

from .schema import PipemeterConfig

logger = logging.getLogger(__name__)

APP_NAME = "pipemeter"


class ConfigLoader:
    """Loads configuration from multiple sources with priority.

    Priority (lowest to highest): model defaults, system config, user
    config, explicit config file, ``PIPEMETER_*`` environment variables.
    """

    def __init__(self, app_name: str = APP_NAME) -> None:
        self.app_name = app_name
        self._config: Optional[PipemeterConfig] = None

    def load(self, config_path: Optional[Path] = None) -> PipemeterConfig:
        """Load configuration from all sources.

        Args:
            config_path: Optional explicit TOML file (must exist if given)

        Returns:
            Validated configuration object

        Raises:
            FileNotFoundError: If config_path is given but does not exist
        """
        config_dict: Dict[str, Any] = {}

        system_config = self._load_system_config()
        if system_config:
            config_dict = self._deep_merge(config_dict, system_config)

        user_config = self._load_user_config()
        if user_config:
            config_dict = self._deep_merge(config_dict, user_config)

        if config_path is not None:
            if not config_path.exists():
                raise FileNotFoundError(f"Config file not found: {config_path}")
            logger.debug(f"Loading config file: {{'path': {str(config_path)!r}}}")
            config_dict = self._deep_merge(config_dict, toml.load(config_path))

        config_dict = self._apply_env_overrides(config_dict)

        self._config = PipemeterConfig(**config_dict)
        return self._config

    def _load_system_config(self) -> Optional[Dict[str, Any]]:
        """Load system-wide configuration."""
        if os.name == "nt":  # Windows
            system_path = (
                Path(os.environ.get("PROGRAMDATA", "C:\\ProgramData"))
                / self.app_name
                / "config.toml"
            )
        else:  # Linux/Mac
            system_path = Path(f"/etc/{self.app_name}/config.toml")

        if system_path.exists():
            return toml.load(system_path)

        return None

    def _load_user_config(self) -> Optional[Dict[str, Any]]:
        """Load user-specific configuration."""
        user_config_dir = platformdirs.user_config_dir(appname=self.app_name, appauthor=False)
        user_config_path = Path(user_config_dir) / "config.toml"

        logger.debug(f"Looking for user config: path={user_config_path}, exists={user_config_path.exists()}")

        if user_config_path.exists():
            return toml.load(user_config_path)

        return None

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Override config with environment variables."""
        # Format: PIPEMETER_SECTION_KEY, the key may itself contain underscores
        prefix = f"{self.app_name.upper().replace('-', '_')}_"

        for env_key, env_value in os.environ.items():
            if not env_key.startswith(prefix):
                continue

            # PIPEMETER_PROGRESS_OBJECT_MODE -> progress.object_mode
            section, _, key = env_key[len(prefix):].lower().partition("_")
            if not key:
                continue

            current = config.setdefault(section, {})
            if not isinstance(current, dict):
                continue
            current[key] = self._convert_env_value(env_value)

        return config

    def _convert_env_value(self, value: str) -> Any:
        """Convert string environment variable to appropriate type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value

    @property
    def config(self) -> PipemeterConfig:
        """Get loaded configuration."""
        if self._config is None:
            self._config = self.load()
        return self._config
