"""dapr-cache-interceptor: Cache declarativo por interceptação de métodos.

Métodos anotados com diretivas (``cacheable``, ``cache_put``,
``cache_evict``) são interceptados e o cache é consultado, gravado ou
invalidado sem que o código chamador saiba disso. O storage padrão é um
Dapr State Store.

Uso básico:
    ```python
    from dapr_cache_interceptor import cache_evict, cacheable, create_caching_interceptor

    class UserService:
        @cacheable(prefix="users", ttl_seconds=300)
        def get_user(self, user_id: int) -> dict:
            return db.query(user_id)

        @cache_evict(prefix="users")
        def delete_user(self, user_id: int) -> None:
            db.delete(user_id)

    interceptor = create_caching_interceptor(store_name="cache")
    service = interceptor.create_proxy(UserService())

    service.get_user(7)     # miss: executa e grava "users:7"
    service.get_user(7)     # hit
    service.delete_user(7)  # remove "users:7"
    ```

Funções avulsas:
    ```python
    @interceptor.cacheable(prefix="products", ttl_seconds=60)
    async def get_product(product_id: int) -> dict:
        return await db.query(product_id)

    await get_product.invalidate_async(product_id=1)
    ```
"""

__version__ = "0.1.0"

# Backends
from .backend import DaprStateBackend, InMemoryStateBackend

# Configuração
from .config import CacheConfig

# Diretivas
from .directives import (
    Cacheable,
    CachingDirective,
    Evict,
    Put,
    attach_directive,
    cache_evict,
    cache_put,
    cacheable,
    get_directive,
)

# Exceções
from .exceptions import (
    CacheBackendError,
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    CacheSerializationError,
    CacheTimeoutError,
    DirectiveConflictError,
    DirectiveError,
    ValidationError,
)

# Interceptação
from .interceptor import (
    BoundInterceptedMethod,
    CachingInterceptor,
    CachingProxy,
    InterceptedFunction,
    create_caching_interceptor,
)
from .invocation import Invocation, MethodDescriptor

# Geração de chaves
from .key_builder import DefaultKeyBuilder

# Métricas
from .metrics import CacheStats, InMemoryMetrics, KeyStats, NoOpMetrics, OpenTelemetryMetrics, namespace_of
from .pipeline import InterceptionPipeline

# Protocols (para extensibilidade)
from .protocols import CacheKeyProvider, CacheMetrics, CacheProvider, KeyBuilder, Serializer, StateBackend
from .provider import DefaultCacheProvider
from .resolver import DirectiveResolver

# Serialização
from .serializer import JsonSerializer, MsgPackSerializer
from .unwrapper import AsyncResultUnwrapper, CompletedResult

__all__ = [
    # Diretivas
    "Cacheable",
    "CachingDirective",
    "Evict",
    "Put",
    "attach_directive",
    "cache_evict",
    "cache_put",
    "cacheable",
    "get_directive",
    # Interceptação
    "BoundInterceptedMethod",
    "CachingInterceptor",
    "CachingProxy",
    "InterceptedFunction",
    "InterceptionPipeline",
    "Invocation",
    "MethodDescriptor",
    "DirectiveResolver",
    "AsyncResultUnwrapper",
    "CompletedResult",
    "create_caching_interceptor",
    # Provider e backends
    "DefaultCacheProvider",
    "DaprStateBackend",
    "InMemoryStateBackend",
    # Serialização
    "JsonSerializer",
    "MsgPackSerializer",
    # Geração de chaves
    "DefaultKeyBuilder",
    # Configuração
    "CacheConfig",
    # Métricas
    "CacheStats",
    "InMemoryMetrics",
    "KeyStats",
    "NoOpMetrics",
    "OpenTelemetryMetrics",
    "namespace_of",
    # Exceções
    "CacheError",
    "CacheBackendError",
    "CacheConnectionError",
    "CacheKeyError",
    "CacheSerializationError",
    "CacheTimeoutError",
    "DirectiveError",
    "DirectiveConflictError",
    "ValidationError",
    # Protocols
    "CacheKeyProvider",
    "CacheMetrics",
    "CacheProvider",
    "KeyBuilder",
    "Serializer",
    "StateBackend",
]
