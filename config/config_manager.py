"""
Runbook engine configuration.

Builds the global ``config`` object from model defaults, an optional JSON
file and ``ENGINE_`` environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union, List

from pydantic import BaseModel, Field
from dotenv import load_dotenv

from config.config import (
    ApiServerConfig,
    PathConfig,
    DatabaseConfig,
    AuthConfig,
    AIConfig,
    SystemConfig,
)
from errors import ConfigError, ErrorCode

# Sections owned by feature modules
from config.registry import registry

ENV_PREFIX = "ENGINE_"


class AppConfig(BaseModel):
    """
    Engine configuration with core sections and registered feature sections.

    Handles loading from multiple sources, later ones winning:
    1. Model defaults
    2. A JSON configuration file
    3. Environment variables (``ENGINE_<SECTION>__<KEY>``)

    Sections owned by feature modules are resolved through the
    configuration registry on first access.
    """

    api_server: ApiServerConfig = Field(default_factory=ApiServerConfig)
    paths: PathConfig = Field(default_factory=PathConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    system: SystemConfig = Field(default_factory=SystemConfig)

    # Values for registered sections, applied when the section is first built
    section_overrides: Dict[str, Dict[str, Any]] = Field(default_factory=dict, exclude=True)

    # Cache of registered section instances (non-model field, excluded from serialization)
    section_configs: Dict[str, BaseModel] = Field(default_factory=dict, exclude=True)

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None) -> "AppConfig":
        """
        Build a validated configuration from the file and the environment.

        Args:
            config_path: Optional path to a JSON configuration file

        Returns:
            Validated AppConfig instance

        Raises:
            ConfigError: If configuration is invalid or the file is missing
        """
        load_dotenv()

        config_data: Dict[str, Dict[str, Any]] = {}

        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise ConfigError(
                    f"Configuration file not found: {path}",
                    ErrorCode.CONFIG_NOT_FOUND
                )
            try:
                with open(path, "r") as f:
                    file_config = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(
                    f"Invalid JSON in configuration file: {e}",
                    ErrorCode.INVALID_CONFIG
                )
            except OSError as e:
                raise ConfigError(
                    f"Error loading configuration file: {e}",
                    ErrorCode.INVALID_CONFIG
                )
            cls._merge(config_data, file_config)

        cls._merge(config_data, cls._load_from_env())

        try:
            instance = cls()
            for section_name, section_data in config_data.items():
                if not isinstance(section_data, dict):
                    continue
                if section_name in cls.model_fields:
                    section = getattr(instance, section_name)
                    for key, value in section_data.items():
                        if hasattr(section, key):
                            setattr(section, key, value)
                else:
                    # Belongs to a registered section that may not be imported yet
                    instance.section_overrides[section_name] = section_data

            cls._ensure_directories(instance)
            return instance
        except Exception as e:
            raise ConfigError(
                f"Error initializing configuration: {e}",
                ErrorCode.INVALID_CONFIG
            )

    @staticmethod
    def _merge(target: Dict[str, Dict[str, Any]], source: Dict[str, Any]) -> None:
        for section, values in source.items():
            if isinstance(values, dict):
                target.setdefault(section, {}).update(values)

    @classmethod
    def _load_from_env(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load configuration from environment variables.
        Nested keys are separated by '__'.

        Examples:
            ENGINE_DATABASE__URI=postgresql://runbooks@db/runbooks
            ENGINE_RUNBOOK__MAX_CONCURRENT_PER_RUNBOOK=2

        Returns:
            Nested dictionary of configuration values from environment
        """
        config: Dict[str, Dict[str, Any]] = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            config_key = key[len(ENV_PREFIX):].lower()
            if "__" not in config_key:
                # Top-level settings not supported, must use section
                continue
            section, setting = config_key.split("__", 1)

            # JSON first so numbers, booleans and lists keep their type
            try:
                parsed_value = json.loads(value)
            except json.JSONDecodeError:
                parsed_value = value
            config.setdefault(section, {})[setting] = parsed_value

        return config

    @classmethod
    def _ensure_directories(cls, config: "AppConfig") -> None:
        """Create the data directory the default SQLite database lives in."""
        Path(config.paths.data_dir).mkdir(parents=True, exist_ok=True)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., "database.uri")
            default: Default value if key is not found

        Returns:
            Configuration value or default
        """
        parts = key.split(".")

        if len(parts) == 1:
            return getattr(self, parts[0], default)

        if len(parts) == 2:
            try:
                section = getattr(self, parts[0])
            except AttributeError:
                return default
            return getattr(section, parts[1], default)

        return default

    def require(self, key: str) -> Any:
        """
        Get a required configuration value.

        Args:
            key: Configuration key in dot notation (e.g., "auth.jwt_secret")

        Returns:
            Configuration value

        Raises:
            ConfigError: If the key is not found or unset
        """
        value = self.get(key)
        if value is None:
            raise ConfigError(
                f"Required configuration key not found: {key}",
                ErrorCode.MISSING_ENV_VAR
            )
        return value

    def __getattr__(self, name: str) -> Any:
        """
        Dynamic attribute access for registered configuration sections.

        Args:
            name: The attribute name to access

        Returns:
            Section configuration instance

        Raises:
            AttributeError: If no section is registered under ``name``
        """
        if name.startswith("_"):
            raise AttributeError(name)
        if registry.get(name) is not None or name in self.__dict__.get("section_configs", {}):
            return self.get_section_config(name)
        raise AttributeError(f"'AppConfig' object has no attribute '{name}'")

    def get_section_config(self, name: str) -> BaseModel:
        """
        Get a registered section's configuration, creating it if needed.

        Args:
            name: The section name

        Returns:
            Configuration instance for the section

        Raises:
            ConfigError: If the section configuration cannot be created
        """
        if name not in self.section_configs:
            try:
                config_class = registry.get_or_create(name)
                overrides = self.section_overrides.get(name, {})
                known = {k: v for k, v in overrides.items() if k in config_class.model_fields}
                self.section_configs[name] = config_class(**known)
                logging.debug(f"Created config section: {name}")
            except Exception as e:
                raise ConfigError(
                    f"Error creating configuration section '{name}': {e}",
                    ErrorCode.INVALID_CONFIG
                )

        return self.section_configs[name]

    def list_sections(self) -> List[str]:
        """List core and registered section names."""
        return sorted(set(type(self).model_fields) - {"section_overrides", "section_configs"}
                      | set(registry.list_registered()))


def initialize_config() -> AppConfig:
    """
    Initialize the configuration.

    Reads the optional JSON file named by ``RUNBOOK_CONFIG_FILE``.

    Returns:
        Initialized AppConfig instance
    """
    try:
        config_instance = AppConfig.load(os.environ.get("RUNBOOK_CONFIG_FILE"))

        logging.basicConfig(
            level=getattr(logging, config_instance.system.log_level.upper(), logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
        logging.info("Configuration loaded successfully")

        return config_instance

    except ConfigError:
        raise
    except Exception as e:
        error_msg = f"Error initializing configuration: {e}"
        logging.error(error_msg)
        raise ConfigError(error_msg, ErrorCode.INVALID_CONFIG)


# Create the global configuration instance
config = initialize_config()
