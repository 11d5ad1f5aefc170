"""
Configuration registry module.

Feature modules (for example the runbook engine) register their own
configuration classes here when they are imported. The config system looks
them up by section name, so neither side needs to import the other.
"""

import logging
from typing import Dict, Type, Optional
from pydantic import BaseModel, create_model

logger = logging.getLogger(__name__)


class ConfigRegistry:
    """
    Registry mapping section names to configuration classes.

    Sections registered here become reachable as attributes of the global
    config object (``config.runbook``), with values taken from the class
    defaults and any ``ENGINE_<SECTION>__<KEY>`` environment overrides.
    """

    _registry: Dict[str, Type[BaseModel]] = {}

    @classmethod
    def register(cls, name: str, config_class: Type[BaseModel]) -> None:
        """
        Register a configuration class.

        Args:
            name: Section name the configuration is reachable under
            config_class: The pydantic model describing the section
        """
        logger.debug(f"Registering config section: {name}")
        cls._registry[name] = config_class

    @classmethod
    def get(cls, name: str) -> Optional[Type[BaseModel]]:
        """Return the class registered under ``name``, if any."""
        return cls._registry.get(name)

    @classmethod
    def create_default(cls, name: str) -> Type[BaseModel]:
        """
        Create and register a placeholder configuration class.

        Used for sections that are referenced before (or without) their
        owning module registering a real class.

        Args:
            name: The section name

        Returns:
            A new configuration class with only an ``enabled`` flag
        """
        logger.debug(f"Creating default config section: {name}")
        class_name = ''.join(part.capitalize() for part in name.split('_')) + 'Config'
        default_class = create_model(
            class_name,
            __base__=BaseModel,
            enabled=(bool, True),
        )
        cls.register(name, default_class)
        return default_class

    @classmethod
    def get_or_create(cls, name: str) -> Type[BaseModel]:
        """Return the registered class for ``name``, creating a default if needed."""
        config_class = cls.get(name)
        if config_class is None:
            config_class = cls.create_default(name)
        return config_class

    @classmethod
    def list_registered(cls) -> Dict[str, str]:
        """Map each registered section name to its class name."""
        return {name: config_class.__name__ for name, config_class in cls._registry.items()}


# Global singleton instance
registry = ConfigRegistry()
