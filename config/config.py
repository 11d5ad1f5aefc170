"""
Base schema definitions for configuration models.

These are the core schema models used throughout the application to
ensure type safety and validation of configuration values.
"""

from typing import Optional, List
from pydantic import BaseModel, Field


class ApiServerConfig(BaseModel):
    """FastAPI server configuration settings."""

    host: str = Field(
        default="0.0.0.0",
        description="Host address for the FastAPI server"
    )
    port: int = Field(
        default=8000,
        description="Port for the FastAPI server"
    )
    workers: int = Field(
        default=1,
        description="Number of uvicorn workers"
    )
    log_level: str = Field(
        default="info",
        description="Log level for uvicorn server"
    )
    enable_cors: bool = Field(
        default=True,
        description="Enable CORS middleware"
    )
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )


class PathConfig(BaseModel):
    """Path configuration settings."""

    data_dir: str = Field(
        default="data",
        description="Directory for data storage (SQLite database lives here by default)"
    )


class DatabaseConfig(BaseModel):
    """Database configuration settings."""

    uri: str = Field(
        default="sqlite:///data/runbooks.db",
        description="Database connection URI (PostgreSQL in production, SQLite for local use)"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL commands for debugging"
    )
    pool_size: int = Field(
        default=5,
        description="Connection pool size"
    )
    pool_timeout: int = Field(
        default=30,
        description="Connection pool timeout in seconds"
    )
    pool_recycle: int = Field(
        default=3600,
        description="Connection recycle time in seconds"
    )


class AuthConfig(BaseModel):
    """Settings for identifying the caller of the REST API."""

    jwt_secret: Optional[str] = Field(
        default=None,
        description="Secret used to verify HS256 access tokens (required to accept bearer tokens)"
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="Signing algorithm of access tokens"
    )
    jwt_audience: Optional[str] = Field(
        default="authenticated",
        description="Expected 'aud' claim; None disables the audience check"
    )


class AIConfig(BaseModel):
    """Defaults for calls to AI provider endpoints."""

    timeout: int = Field(
        default=30,
        description="Request timeout in seconds when neither step nor provider sets one"
    )
    max_retries: int = Field(
        default=2,
        description="Transport-level retries for 429/5xx responses from providers"
    )


class SystemConfig(BaseModel):
    """System-level configuration settings."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
