"""
Configuration loader for synthesis.

Handles loading from multiple sources with proper priority:
CLI Args > Environment Variables > Config File > Defaults
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from ..exceptions import ConfigError
from .models import ArmSynthConfig

logger = logging.getLogger(__name__)


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Priority order (highest to lowest):
    1. CLI arguments (passed directly to methods)
    2. Environment variables (ARMSYNTH_*)
    3. Configuration file
    4. Default values
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".config" / "armsynth"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
    ENV_PREFIX = "ARMSYNTH_"
    CONFIG_PATH_ENV = "ARMSYNTH_CONFIG_PATH"

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration loader.

        Args:
            config_path: Path to configuration file. If None, uses default location.
        """
        self.config_path = (
            Path(config_path).expanduser() if config_path else self._get_config_path_from_env()
        )

    @classmethod
    def _get_config_path_from_env(cls) -> Path:
        """Get configuration path from environment variable or default."""
        env_path = os.environ.get(cls.CONFIG_PATH_ENV)
        if env_path:
            return Path(env_path).expanduser()
        return cls.DEFAULT_CONFIG_FILE

    def load(self) -> ArmSynthConfig:
        """
        Load configuration from all sources and merge.

        Returns:
            Validated ArmSynthConfig object

        Raises:
            ConfigError: If configuration is invalid
        """
        config_dict: Dict[str, Any] = {}

        if self.config_path.exists():
            file_config = self._load_file(self.config_path)
            config_dict = self._deep_merge(config_dict, file_config)
            logger.debug(f"Loaded configuration file {self.config_path}")

        env_config = self._load_from_env()
        config_dict = self._deep_merge(config_dict, env_config)

        try:
            return ArmSynthConfig.model_validate(config_dict)
        except ValidationError as e:
            raise ConfigError(
                f"Configuration validation failed: {e}",
                context={"config_path": str(self.config_path)},
                cause=e,
            ) from e

    def _load_file(self, path: Path) -> Dict[str, Any]:
        """
        Load configuration from YAML file.

        Raises:
            ConfigError: If file cannot be read or parsed
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}", cause=e) from e
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}", cause=e) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return data

    def _load_from_env(self) -> Dict[str, Any]:
        """
        Load configuration from environment variables.

        Environment variable format:
        - ARMSYNTH_SYNTHESIS__MAX_UNIT_SIZE_BYTES
        - ARMSYNTH_SYNTHESIS__STRICT
        - ARMSYNTH_OUTPUT__OUT_DIR
        - ARMSYNTH_LOGGING__LEVEL

        Double underscore (__) separates nested keys.
        """
        config: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(self.ENV_PREFIX) or key == self.CONFIG_PATH_ENV:
                continue

            config_key = key[len(self.ENV_PREFIX) :].lower()
            parts = config_key.split("__")

            current = config
            for part in parts[:-1]:
                if part not in current:
                    current[part] = {}
                current = current[part]

            current[parts[-1]] = self._convert_env_value(value)

        return config

    def _convert_env_value(self, value: str) -> Any:
        """
        Convert environment variable string to appropriate type.

        Returns:
            Converted value (bool, int, float, or str)
        """
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

    def _deep_merge(
        self, base: Dict[str, Any], update: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Deep merge two dictionaries.

        Returns:
            Merged dictionary (base is not modified)
        """
        result = base.copy()

        for key, value in update.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def merge_cli_args(
        self,
        config: ArmSynthConfig,
        cli_args: Dict[str, Any],
    ) -> ArmSynthConfig:
        """
        Merge CLI arguments into configuration.

        CLI arguments have highest priority and override all other sources.

        Args:
            config: Base configuration
            cli_args: CLI arguments to merge (non-None values only)

        Returns:
            New ArmSynthConfig with CLI args applied
        """
        filtered_args = self._filter_none_values(cli_args)

        if not filtered_args:
            return config

        config_dict = config.model_dump()
        config_dict = self._deep_merge(config_dict, filtered_args)

        try:
            return ArmSynthConfig.model_validate(config_dict)
        except ValidationError as e:
            raise ConfigError(f"Invalid command line options: {e}", cause=e) from e

    def _filter_none_values(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively filter out None values from a dictionary."""
        result = {}
        for key, value in data.items():
            if value is None:
                continue
            elif isinstance(value, dict):
                filtered = self._filter_none_values(value)
                if filtered:
                    result[key] = filtered
            else:
                result[key] = value
        return result

    def create_default_config(self, force: bool = False) -> Path:
        """
        Create default configuration file with comments.

        Args:
            force: Overwrite existing file if True

        Returns:
            Path to created configuration file

        Raises:
            ConfigError: If file exists and force=False
        """
        if self.config_path.exists() and not force:
            raise ConfigError(
                f"Configuration file already exists at {self.config_path}. "
                "Use force=True to overwrite."
            )

        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                f.write(self._get_default_config_yaml())
        except OSError as e:
            raise ConfigError(
                f"Cannot write config file {self.config_path}: {e}", cause=e
            ) from e

        return self.config_path

    def _get_default_config_yaml(self) -> str:
        """Get default configuration as commented YAML."""
        return """\
# ARM Synth - Configuration
# =========================

# Partitioning and naming
synthesis:
  # Size ceiling of one template unit in bytes (ARM allows 4 MiB)
  max_unit_size_bytes: 3670016

  # Maximum resources in one template unit (ARM allows 800)
  max_resources_per_unit: 200

  # Cross-unit parameters one unit may consume (ARM allows 256)
  max_parameters_per_unit: 256

  # Outputs one unit may expose to later units (ARM allows 64)
  max_outputs_per_unit: 64

  # Separator between generated name components
  name_separator: "-"

  # Treat validation warnings as errors
  strict: false

# Output settings
output:
  # Directory receiving unit templates, manifest.json and azuredeploy.json
  out_dir: armsynth.out

  # Registered emitter format
  format: arm

  # Also write azuredeploy.json orchestrating every unit
  emit_root_template: true

# Logging
logging:
  # DEBUG, INFO, WARNING, ERROR or CRITICAL
  level: INFO

  # Render log events as JSON
  json_logs: false
"""


def load_config(
    config_path: Optional[Path] = None,
    cli_args: Optional[Dict[str, Any]] = None,
) -> ArmSynthConfig:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to configuration file
        cli_args: CLI arguments to merge (highest priority)

    Returns:
        Validated ArmSynthConfig object

    Raises:
        ConfigError: If configuration is invalid
    """
    loader = ConfigLoader(config_path)
    config = loader.load()

    if cli_args:
        config = loader.merge_cli_args(config, cli_args)

    return config


def create_default_config(
    config_path: Optional[Path] = None,
    force: bool = False,
) -> Path:
    """
    Create default configuration file.

    Raises:
        ConfigError: If file exists and force=False
    """
    loader = ConfigLoader(config_path)
    return loader.create_default_config(force=force)
