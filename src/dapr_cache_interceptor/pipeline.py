"""
Interception pipeline coordinating the caching directives of one call.

Every intercepted call runs four phases in fixed order against the same
invocation:

1. Early evict: ``Evict`` directives with ``is_before=True``
2. Cacheable-or-proceed: read-through, or plain proceed without ``Cacheable``
3. Put: write-through of the result
4. Late evict: ``Evict`` directives with ``is_before=False``

Each phase checks on its own whether its directive applies, so for a
method carrying a single directive only the matching phase has an effect.
The real function runs at most once, inside phase 2.

Errors are never recovered here. Store, serialization and key errors
propagate unchanged. An exception from the real function propagates out
of phase 2 and the remaining phases do not run: nothing is written by
``Put`` and the late eviction is skipped.
"""

import logging
from datetime import timedelta
from typing import Any

from .constants import DEFAULT_TTL_SECONDS
from .directives import Cacheable, Evict, Put
from .invocation import Invocation
from .protocols import CacheProvider, KeyBuilder
from .unwrapper import AsyncResultUnwrapper

logger = logging.getLogger(__name__)


class InterceptionPipeline:
    """Runs the four caching phases around an invocation.

    Two entry points share the same phase semantics:

    - ``intercept``: synchronous; awaitable results of async methods are
      unwrapped through the blocking AsyncResultUnwrapper and cache hits are
      returned as completed awaitables
    - ``intercept_async``: end-to-end async using the provider's async API
    """

    def __init__(
        self,
        provider: CacheProvider,
        key_builder: KeyBuilder,
        unwrapper: AsyncResultUnwrapper | None = None,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        """Initialize pipeline.

        Args:
            provider: Cache provider for storage operations
            key_builder: Builder of cache keys and key prefixes
            unwrapper: Awaitable unwrapper (creates default if None)
            default_ttl_seconds: TTL for directives that do not declare one
        """
        self._provider = provider
        self._key_builder = key_builder
        self._unwrapper = unwrapper or AsyncResultUnwrapper()
        self._default_ttl_seconds = default_ttl_seconds

    @property
    def provider(self) -> CacheProvider:
        return self._provider

    @property
    def key_builder(self) -> KeyBuilder:
        return self._key_builder

    @property
    def unwrapper(self) -> AsyncResultUnwrapper:
        return self._unwrapper

    @property
    def default_ttl_seconds(self) -> int:
        return self._default_ttl_seconds

    def _ttl(self, directive: Cacheable | Put) -> timedelta:
        ttl_seconds = directive.ttl_seconds if directive.ttl_seconds is not None else self._default_ttl_seconds
        return timedelta(seconds=ttl_seconds)

    # ========== Synchronous pipeline ==========

    def intercept(self, invocation: Invocation) -> Any:
        """Run the four phases synchronously.

        Args:
            invocation: Invocation to process

        Returns:
            Final ``invocation.return_value``
        """
        self._process_evict(invocation, is_before=True)
        self._proceed_cacheable(invocation)
        self._process_put(invocation)
        self._process_evict(invocation, is_before=False)
        return invocation.return_value

    def _proceed_cacheable(self, invocation: Invocation) -> None:
        method = invocation.method
        directive = method.directive_of(Cacheable)

        if directive is None:
            invocation.proceed()
            return

        cache_key = self._key_builder.get_cache_key(method, invocation.arguments, directive.prefix)
        cached_value = self._provider.get(cache_key, method.result_type)

        if cached_value is not None:
            logger.debug(f"Cache hit: {cache_key}")
            if method.is_async:
                invocation.return_value = self._unwrapper.completed(method.result_type, cached_value)
            else:
                invocation.return_value = cached_value
            return

        logger.debug(f"Cache miss: {cache_key}")
        invocation.proceed()

        if cache_key.strip() and invocation.return_value is not None:
            result = self._unwrapper.unwrap(invocation)
            if result is not None:
                self._provider.set(cache_key, result, self._ttl(directive))

    def _process_put(self, invocation: Invocation) -> None:
        method = invocation.method
        directive = method.directive_of(Put)

        if directive is None or invocation.return_value is None:
            return

        cache_key = self._key_builder.get_cache_key(method, invocation.arguments, directive.prefix)
        result = self._unwrapper.unwrap(invocation)
        if result is None:
            return

        logger.debug(f"Cache put: {cache_key}")
        self._provider.set(cache_key, result, self._ttl(directive))

    def _process_evict(self, invocation: Invocation, is_before: bool) -> None:
        method = invocation.method
        directive = method.directive_of(Evict)

        if directive is None or directive.is_before != is_before:
            return

        if not is_before:
            # The body of an async method only runs once its coroutine is driven
            self._unwrapper.unwrap(invocation)

        if directive.is_all:
            # Clear every cached item whose key starts with the prefix
            key_prefix = self._key_builder.get_cache_key_prefix(method, directive.prefix)
            logger.debug(f"Cache evict prefix: {key_prefix} (before={is_before})")
            self._provider.remove_by_prefix(key_prefix)
        else:
            cache_key = self._key_builder.get_cache_key(method, invocation.arguments, directive.prefix)
            logger.debug(f"Cache evict: {cache_key} (before={is_before})")
            self._provider.remove(cache_key)

    # ========== Asynchronous pipeline ==========

    async def intercept_async(self, invocation: Invocation) -> Any:
        """Run the four phases without blocking the event loop.

        ``invocation.return_value`` holds the plain result (never an
        awaitable) once this coroutine finishes.
        """
        await self._process_evict_async(invocation, is_before=True)
        await self._proceed_cacheable_async(invocation)
        await self._process_put_async(invocation)
        await self._process_evict_async(invocation, is_before=False)
        return invocation.return_value

    async def _proceed_cacheable_async(self, invocation: Invocation) -> None:
        method = invocation.method
        directive = method.directive_of(Cacheable)

        if directive is None:
            await invocation.proceed_async()
            return

        cache_key = self._key_builder.get_cache_key(method, invocation.arguments, directive.prefix)
        cached_value = await self._provider.get_async(cache_key, method.result_type)

        if cached_value is not None:
            logger.debug(f"Cache hit: {cache_key}")
            invocation.return_value = cached_value
            return

        logger.debug(f"Cache miss: {cache_key}")
        result = await invocation.proceed_async()

        if cache_key.strip() and result is not None:
            await self._provider.set_async(cache_key, result, self._ttl(directive))

    async def _process_put_async(self, invocation: Invocation) -> None:
        method = invocation.method
        directive = method.directive_of(Put)

        if directive is None or invocation.return_value is None:
            return

        cache_key = self._key_builder.get_cache_key(method, invocation.arguments, directive.prefix)
        logger.debug(f"Cache put: {cache_key}")
        await self._provider.set_async(cache_key, invocation.return_value, self._ttl(directive))

    async def _process_evict_async(self, invocation: Invocation, is_before: bool) -> None:
        method = invocation.method
        directive = method.directive_of(Evict)

        if directive is None or directive.is_before != is_before:
            return

        if directive.is_all:
            key_prefix = self._key_builder.get_cache_key_prefix(method, directive.prefix)
            logger.debug(f"Cache evict prefix: {key_prefix} (before={is_before})")
            await self._provider.remove_by_prefix_async(key_prefix)
        else:
            cache_key = self._key_builder.get_cache_key(method, invocation.arguments, directive.prefix)
            logger.debug(f"Cache evict: {cache_key} (before={is_before})")
            await self._provider.remove_async(cache_key)
