"""
Centralized configuration management package.

This package provides a single configuration interface that loads settings
from defaults, an optional JSON file and the environment, validates them,
and makes them available throughout the application.

Usage:
    from config import config

    # Access using attribute notation
    uri = config.database.uri

    # Or using get() method with dot notation
    uri = config.get("database.uri")

    # For required values (raises exception if missing)
    secret = config.require("auth.jwt_secret")

    # For sections registered by feature modules
    base_url = config.runbook.base_url
"""

# First, initialize the registry (which has no dependencies)
from config.registry import registry

# Then, import the configuration system
from config.config_manager import AppConfig, config

# Export the public interface
__all__ = ["config", "AppConfig", "registry"]
