"""Interceptor de cache: ponto de composição da biblioteca.

Liga diretivas, pipeline e provider, e expõe duas formas de interceptar
chamadas sem que o código chamador saiba do cache:

- ``wrap`` / ``cacheable`` / ``cache_put`` / ``cache_evict``: envolvem uma
  função (ou método, via descriptor protocol)
- ``create_proxy``: envolve um objeto de serviço inteiro, interceptando os
  métodos que carregam diretivas

Métodos ``async def`` retornam uma coroutine que executa o pipeline
assíncrono. Com ``bridge_async=True`` o pipeline síncrono é usado e o
resultado é devolvido como awaitable já concluído.
"""

import logging
from collections.abc import Callable
from functools import wraps
from typing import Any

from .backend import DaprStateBackend, InMemoryStateBackend
from .config import CacheConfig
from .constants import PROVIDER_MEMORY
from .directives import Cacheable, CachingDirective, Evict, Put, attach_directive
from .invocation import BINDING_CLASS, BINDING_STATIC, Invocation, MethodDescriptor
from .key_builder import DefaultKeyBuilder
from .pipeline import InterceptionPipeline
from .protocols import CacheMetrics, CacheProvider, KeyBuilder, Serializer, StateBackend
from .provider import DefaultCacheProvider
from .resolver import INTERCEPTED_ATTRIBUTE, DirectiveResolver
from .unwrapper import AsyncResultUnwrapper

logger = logging.getLogger(__name__)


class CachingInterceptor:
    """Aplica diretivas de cache às chamadas interceptadas.

    Attributes:
        pipeline: Pipeline de quatro fases
        resolver: Resolvedor de diretivas
        bridge_async: Usa a ponte bloqueante para métodos async
    """

    def __init__(
        self,
        provider: CacheProvider,
        key_builder: KeyBuilder | None = None,
        resolver: DirectiveResolver | None = None,
        unwrapper: AsyncResultUnwrapper | None = None,
        default_ttl_seconds: int | None = None,
        bridge_async: bool = False,
    ) -> None:
        self._pipeline = InterceptionPipeline(
            provider=provider,
            key_builder=key_builder or DefaultKeyBuilder(),
            unwrapper=unwrapper,
            default_ttl_seconds=CacheConfig.resolve_ttl_seconds(default_ttl_seconds),
        )
        self._resolver = resolver or DirectiveResolver()
        self._bridge_async = bridge_async

    @property
    def pipeline(self) -> InterceptionPipeline:
        return self._pipeline

    @property
    def resolver(self) -> DirectiveResolver:
        return self._resolver

    @property
    def bridge_async(self) -> bool:
        return self._bridge_async

    def invoke(
        self,
        method: MethodDescriptor,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        target: Any = None,
    ) -> Any:
        """Executa uma chamada através do pipeline.

        Args:
            method: Descritor do método
            args: Argumentos posicionais (sem self/cls)
            kwargs: Argumentos nomeados
            target: Instância ou classe ligada (None para funções)

        Returns:
            Resultado do método; para métodos async, um awaitable
        """
        invocation = Invocation(method, args, kwargs, target=target)
        if method.is_async and not self._bridge_async:
            return self._pipeline.intercept_async(invocation)
        return self._pipeline.intercept(invocation)

    # ========== Envolvimento de funções ==========

    def wrap(self, func: Any) -> "InterceptedFunction":
        """Envolve uma função (ou staticmethod/classmethod) no pipeline."""
        return InterceptedFunction(self, self._resolver.resolve(func))

    def cacheable(self, prefix: str = "", ttl_seconds: int | None = None) -> Callable[[Any], "InterceptedFunction"]:
        """Marca como ``Cacheable`` e envolve.

        Example:
            ```python
            @interceptor.cacheable(prefix="users", ttl_seconds=60)
            def get_user(user_id: int) -> dict:
                return db.query(user_id)
            ```
        """
        return self._decorator(Cacheable(prefix=prefix, ttl_seconds=ttl_seconds))

    def cache_put(self, prefix: str = "", ttl_seconds: int | None = None) -> Callable[[Any], "InterceptedFunction"]:
        """Marca como ``Put`` e envolve."""
        return self._decorator(Put(prefix=prefix, ttl_seconds=ttl_seconds))

    def cache_evict(
        self, prefix: str = "", is_all: bool = False, is_before: bool = False
    ) -> Callable[[Any], "InterceptedFunction"]:
        """Marca como ``Evict`` e envolve."""
        return self._decorator(Evict(prefix=prefix, is_all=is_all, is_before=is_before))

    def _decorator(self, directive: CachingDirective) -> Callable[[Any], "InterceptedFunction"]:
        def decorator(func: Any) -> InterceptedFunction:
            return self.wrap(attach_directive(func, directive))

        return decorator

    # ========== Proxy de serviços ==========

    def create_proxy(self, service: Any) -> "CachingProxy":
        """Envolve um objeto de serviço.

        As diretivas dos métodos da classe são resolvidas uma única vez,
        na criação do proxy.
        """
        return CachingProxy(service, self)

    # ========== Invalidação manual ==========

    def invalidate(
        self, method: MethodDescriptor, args: tuple[Any, ...], kwargs: dict[str, Any], target: Any = None
    ) -> None:
        """Remove a entrada de cache de uma chamada (sync)."""
        self._pipeline.provider.remove(self._key_for(method, args, kwargs, target))

    async def invalidate_async(
        self, method: MethodDescriptor, args: tuple[Any, ...], kwargs: dict[str, Any], target: Any = None
    ) -> None:
        """Remove a entrada de cache de uma chamada (async)."""
        await self._pipeline.provider.remove_async(self._key_for(method, args, kwargs, target))

    def _key_for(self, method: MethodDescriptor, args: tuple[Any, ...], kwargs: dict[str, Any], target: Any) -> str:
        directive = method.directive
        prefix = directive.prefix if directive is not None else ""
        invocation = Invocation(method, args, kwargs, target=target)
        return self._pipeline.key_builder.get_cache_key(method, invocation.arguments, prefix)


class InterceptedFunction:
    """Função interceptada pelo pipeline de cache.

    Implementa o descriptor protocol para suportar métodos de instância,
    de classe e estáticos.
    """

    def __init__(self, interceptor: CachingInterceptor, method: MethodDescriptor) -> None:
        self._interceptor = interceptor
        self._method = method

        # Preserva metadados da função original
        wraps(method.func)(self)
        setattr(self, INTERCEPTED_ATTRIBUTE, True)

    @property
    def method(self) -> MethodDescriptor:
        return self._method

    def __get__(self, obj: Any, objtype: type | None = None) -> "InterceptedFunction | BoundInterceptedMethod":
        """Descriptor protocol para suporte a métodos."""
        if self._method.binding == BINDING_STATIC:
            return self
        if self._method.binding == BINDING_CLASS:
            owner = objtype if objtype is not None else type(obj)
            return BoundInterceptedMethod(self._interceptor, self._method, owner)
        if obj is None:
            return self
        return BoundInterceptedMethod(self._interceptor, self._method, obj)

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self._interceptor.invoke(self._method, args, kwargs)

    def invalidate(self, *args: Any, **kwargs: Any) -> None:
        """Invalida a entrada de cache para os argumentos (sync)."""
        self._interceptor.invalidate(self._method, args, kwargs)

    async def invalidate_async(self, *args: Any, **kwargs: Any) -> None:
        """Invalida a entrada de cache para os argumentos (async)."""
        await self._interceptor.invalidate_async(self._method, args, kwargs)

    def __repr__(self) -> str:
        return f"<InterceptedFunction {self._method.qualified_name}>"


class BoundInterceptedMethod:
    """Método interceptado ligado a uma instância ou classe."""

    def __init__(self, interceptor: CachingInterceptor, method: MethodDescriptor, target: Any) -> None:
        self._interceptor = interceptor
        self._method = method
        self._target = target

        self.__name__ = method.name
        self.__qualname__ = method.func.__qualname__
        self.__doc__ = method.func.__doc__
        self.__wrapped__ = method.func

    @property
    def method(self) -> MethodDescriptor:
        return self._method

    @property
    def __self__(self) -> Any:
        return self._target

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self._interceptor.invoke(self._method, args, kwargs, target=self._target)

    def invalidate(self, *args: Any, **kwargs: Any) -> None:
        self._interceptor.invalidate(self._method, args, kwargs, target=self._target)

    async def invalidate_async(self, *args: Any, **kwargs: Any) -> None:
        await self._interceptor.invalidate_async(self._method, args, kwargs, target=self._target)

    def __repr__(self) -> str:
        return f"<BoundInterceptedMethod {self._method.qualified_name} of {self._target!r}>"


class CachingProxy:
    """Proxy que expõe a mesma interface do serviço envolvido.

    Métodos com diretiva passam pelo pipeline; todo o resto (atributos,
    métodos sem diretiva) é delegado ao serviço sem alteração.
    """

    def __init__(self, service: Any, interceptor: CachingInterceptor) -> None:
        methods = interceptor.resolver.resolve_type(type(service))
        bound: dict[str, BoundInterceptedMethod] = {}
        for name, method in methods.items():
            if method.binding == BINDING_STATIC:
                target = None
            elif method.binding == BINDING_CLASS:
                target = type(service)
            else:
                target = service
            bound[name] = BoundInterceptedMethod(interceptor, method, target)

        object.__setattr__(self, "_service", service)
        object.__setattr__(self, "_intercepted", bound)
        logger.debug(f"Created caching proxy for {type(service).__qualname__} intercepting {sorted(bound)}")

    @property
    def intercepted_methods(self) -> list[str]:
        return sorted(self._intercepted)

    def __getattr__(self, name: str) -> Any:
        intercepted = self.__dict__["_intercepted"]
        if name in intercepted:
            return intercepted[name]
        return getattr(self.__dict__["_service"], name)

    def __setattr__(self, name: str, value: Any) -> None:
        setattr(self._service, name, value)

    def __delattr__(self, name: str) -> None:
        delattr(self._service, name)

    def __repr__(self) -> str:
        return f"<CachingProxy of {self._service!r}>"


# Cache de backends por store para reutilização (thread-safe via setdefault)
_backends: dict[str, StateBackend] = {}


def _get_backend(store_name: str, provider_kind: str) -> StateBackend:
    """Obtém ou cria backend para o store.

    Usa setdefault() que é atômico em CPython para evitar race conditions.
    """
    cache_key = f"{provider_kind}:{store_name}"
    backend = _backends.get(cache_key)
    if backend is None:
        created: StateBackend = (
            InMemoryStateBackend() if provider_kind == PROVIDER_MEMORY else DaprStateBackend(store_name)
        )
        backend = _backends.setdefault(cache_key, created)
    return backend


def create_caching_interceptor(
    store_name: str | None = None,
    provider_kind: str | None = None,
    backend: StateBackend | None = None,
    serializer: Serializer | None = None,
    key_builder: KeyBuilder | None = None,
    metrics: CacheMetrics | None = None,
    default_ttl_seconds: int | None = None,
    bridge_async: bool = False,
) -> CachingInterceptor:
    """Cria um interceptor configurado.

    Args:
        store_name: Nome do state store Dapr (default: env ou "cache")
        provider_kind: "dapr" ou "memory" (default: env ou "dapr")
        backend: Backend explícito (ignora store_name/provider_kind)
        serializer: Serializer customizado (default: MsgPackSerializer)
        key_builder: Construtor de chaves customizado
        metrics: Coletor de métricas (default: NoOpMetrics)
        default_ttl_seconds: TTL das diretivas sem TTL (default: env ou 3600)
        bridge_async: Usa a ponte bloqueante para métodos async

    Returns:
        CachingInterceptor pronto para uso

    Raises:
        ValidationError: Se algum parâmetro for inválido

    Example:
        ```python
        interceptor = create_caching_interceptor(store_name="users", provider_kind="memory")

        @interceptor.cacheable(prefix="users", ttl_seconds=300)
        async def get_user(user_id: int) -> dict:
            return await db.query(user_id)
        ```
    """
    resolved_store_name = CacheConfig.resolve_store_name(store_name)
    resolved_provider_kind = CacheConfig.resolve_provider(provider_kind)
    resolved_ttl = CacheConfig.resolve_ttl_seconds(default_ttl_seconds)

    CacheConfig.validate_parameters(
        store_name=resolved_store_name,
        default_ttl_seconds=resolved_ttl,
        provider=resolved_provider_kind,
    )

    actual_backend = backend or _get_backend(resolved_store_name, resolved_provider_kind)
    provider = DefaultCacheProvider(actual_backend, serializer=serializer, metrics=metrics)

    logger.debug(
        f"Created caching interceptor (store={resolved_store_name}, provider={resolved_provider_kind}, "
        f"ttl={resolved_ttl}s, bridge_async={bridge_async})"
    )
    return CachingInterceptor(
        provider=provider,
        key_builder=key_builder,
        default_ttl_seconds=resolved_ttl,
        bridge_async=bridge_async,
    )
