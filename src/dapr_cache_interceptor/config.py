"""
Configuration management for the caching interceptor.

Handles environment variables and default values following the
precedence rules:

1. Explicit argument (highest precedence)
2. Environment variable
3. Default value (lowest precedence)
"""

import os

from .constants import (
    DEFAULT_DAPR_HTTP_HOST,
    DEFAULT_DAPR_HTTP_PORT,
    DEFAULT_STORE_NAME,
    DEFAULT_TTL_SECONDS,
    PROVIDER_DAPR,
)
from .exceptions import ValidationError
from .validators import validate_interceptor_parameters


class CacheConfig:
    """Configuration manager for the caching interceptor."""

    # Environment variable names
    ENV_DEFAULT_STORE_NAME = "DAPR_CACHE_DEFAULT_STORE_NAME"
    ENV_DEFAULT_TTL_SECONDS = "DAPR_CACHE_DEFAULT_TTL_SECONDS"
    ENV_PROVIDER = "DAPR_CACHE_PROVIDER"
    ENV_DAPR_HTTP_HOST = "DAPR_HTTP_HOST"
    ENV_DAPR_HTTP_PORT = "DAPR_HTTP_PORT"

    # Default values
    DEFAULT_STORE_NAME = DEFAULT_STORE_NAME
    DEFAULT_TTL_SECONDS = DEFAULT_TTL_SECONDS
    DEFAULT_PROVIDER = PROVIDER_DAPR

    @classmethod
    def resolve_store_name(cls, explicit_value: str | None = None) -> str:
        """Resolve store name following precedence rules.

        Args:
            explicit_value: Explicit store name

        Returns:
            Resolved store name
        """
        if explicit_value is not None:
            return explicit_value

        env_value = os.getenv(cls.ENV_DEFAULT_STORE_NAME)
        if env_value:
            return env_value

        return cls.DEFAULT_STORE_NAME

    @classmethod
    def resolve_ttl_seconds(cls, explicit_value: int | None = None) -> int:
        """Resolve the default TTL for directives that do not declare one.

        Raises:
            ValidationError: If the environment variable is not an integer
        """
        if explicit_value is not None:
            return explicit_value

        env_value = os.getenv(cls.ENV_DEFAULT_TTL_SECONDS)
        if env_value:
            try:
                return int(env_value)
            except ValueError as e:
                raise ValidationError(f"{cls.ENV_DEFAULT_TTL_SECONDS} must be an integer, got {env_value!r}") from e

        return cls.DEFAULT_TTL_SECONDS

    @classmethod
    def resolve_provider(cls, explicit_value: str | None = None) -> str:
        """Resolve provider kind ("dapr" or "memory")."""
        if explicit_value is not None:
            return explicit_value

        env_value = os.getenv(cls.ENV_PROVIDER)
        if env_value:
            return env_value.strip().lower()

        return cls.DEFAULT_PROVIDER

    @classmethod
    def resolve_dapr_url(cls) -> str:
        """Resolve the Dapr sidecar base URL."""
        host = os.getenv(cls.ENV_DAPR_HTTP_HOST, DEFAULT_DAPR_HTTP_HOST)
        port = os.getenv(cls.ENV_DAPR_HTTP_PORT, str(DEFAULT_DAPR_HTTP_PORT))
        return f"http://{host}:{port}"

    @classmethod
    def validate_parameters(cls, store_name: str, default_ttl_seconds: int, provider: str) -> None:
        """Validate interceptor configuration parameters.

        Raises:
            ValidationError: If any parameter is invalid
        """
        validate_interceptor_parameters(store_name, default_ttl_seconds, provider)
