"""
Constants for the caching interceptor.

Defines configuration constants and default values used throughout
the interceptor to eliminate magic numbers.
"""

# Default TTL configuration
DEFAULT_TTL_SECONDS = 3600  # 1 hour default TTL
MIN_TTL_SECONDS = 1  # Minimum valid TTL per Dapr constraints

# Thread pool configuration (async result bridge)
MAX_THREAD_WORKERS = 32
THREAD_POOL_PREFIX = "dapr-cache-bridge"

# Backend configuration
DEFAULT_STORE_NAME = "cache"
DEFAULT_DAPR_HTTP_HOST = "127.0.0.1"
DEFAULT_DAPR_HTTP_PORT = 3500
DEFAULT_BACKEND_TIMEOUT_SECONDS = 5.0

# Provider kinds
PROVIDER_DAPR = "dapr"
PROVIDER_MEMORY = "memory"
SUPPORTED_PROVIDERS = (PROVIDER_DAPR, PROVIDER_MEMORY)

# Cache key layout
KEY_SEPARATOR = ":"
EMPTY_ARGUMENTS_PART = "0"
ARGUMENT_HASH_LENGTH = 16

# Error message templates
ERROR_TTL_INVALID = "ttl_seconds must be >= 1, got {value}"
ERROR_TTL_TYPE_INVALID = "ttl_seconds must be int, got {type_name}"
ERROR_STORE_NAME_EMPTY = "store_name cannot be empty or whitespace-only"
ERROR_PREFIX_TYPE_INVALID = "prefix must be str, got {type_name}"
ERROR_PROVIDER_INVALID = "provider must be one of {supported}, got {value!r}"
ERROR_FLAG_TYPE_INVALID = "{name} must be bool, got {type_name}"
