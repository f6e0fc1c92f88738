"""
Parameter validation utilities.

Validates directive parameters and interceptor configuration before any
cache operation runs, so misconfiguration surfaces at decoration time.
"""

from .constants import (
    ERROR_FLAG_TYPE_INVALID,
    ERROR_PREFIX_TYPE_INVALID,
    ERROR_PROVIDER_INVALID,
    ERROR_STORE_NAME_EMPTY,
    ERROR_TTL_INVALID,
    ERROR_TTL_TYPE_INVALID,
    MIN_TTL_SECONDS,
    SUPPORTED_PROVIDERS,
)
from .exceptions import ValidationError


def validate_ttl_seconds(ttl_seconds: int) -> None:
    """Validate TTL parameter.

    TTL must be an int >= 1 second. TTL=0 or negative values are invalid
    per Dapr constraints.

    Args:
        ttl_seconds: TTL value to validate

    Raises:
        ValidationError: If TTL is invalid
    """
    # Check for bool first since bool is subclass of int in Python
    if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int):
        raise ValidationError(ERROR_TTL_TYPE_INVALID.format(type_name=type(ttl_seconds).__name__))
    if ttl_seconds < MIN_TTL_SECONDS:
        raise ValidationError(ERROR_TTL_INVALID.format(value=ttl_seconds))


def validate_prefix(prefix: str) -> None:
    """Validate a directive key prefix.

    An empty prefix is allowed: the key builder falls back to the method path.

    Raises:
        ValidationError: If prefix is not a string
    """
    if not isinstance(prefix, str):
        raise ValidationError(ERROR_PREFIX_TYPE_INVALID.format(type_name=type(prefix).__name__))


def validate_flag(name: str, value: bool) -> None:
    """Validate a boolean directive flag."""
    if not isinstance(value, bool):
        raise ValidationError(ERROR_FLAG_TYPE_INVALID.format(name=name, type_name=type(value).__name__))


def validate_store_name(store_name: str) -> None:
    """Validate Dapr state store name.

    Raises:
        ValidationError: If store name is empty or not a string
    """
    if not isinstance(store_name, str):
        raise ValidationError(f"store_name must be str, got {type(store_name).__name__}")
    if not store_name.strip():
        raise ValidationError(ERROR_STORE_NAME_EMPTY)


def validate_provider(provider: str) -> None:
    """Validate provider kind."""
    if provider not in SUPPORTED_PROVIDERS:
        raise ValidationError(ERROR_PROVIDER_INVALID.format(supported=SUPPORTED_PROVIDERS, value=provider))


def validate_interceptor_parameters(store_name: str, default_ttl_seconds: int, provider: str) -> None:
    """Validate all interceptor configuration parameters.

    Example:
        ```python
        validate_interceptor_parameters("redis-cache", 3600, "dapr")

        # Invalid TTL
        validate_interceptor_parameters("redis-cache", 0, "dapr")  # Raises ValidationError
        ```
    """
    validate_store_name(store_name)
    validate_ttl_seconds(default_ttl_seconds)
    validate_provider(provider)
