"""Configuração de fixtures para testes."""

from collections.abc import Iterator

import pytest

from dapr_cache_interceptor import (
    CachingInterceptor,
    DefaultCacheProvider,
    DefaultKeyBuilder,
    InMemoryMetrics,
    InMemoryStateBackend,
)
from dapr_cache_interceptor.interceptor import _backends


class FakeClock:
    """Relógio manual para testes de expiração."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sample_data() -> dict:
    """Dados de exemplo para testes."""
    return {"user_id": 123, "name": "Test User", "active": True}


@pytest.fixture
def sample_bytes() -> bytes:
    """Bytes de exemplo para testes."""
    return b"test data bytes"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock: FakeClock) -> InMemoryStateBackend:
    """Backend em memória com relógio controlado."""
    return InMemoryStateBackend(clock=clock)


@pytest.fixture
def metrics() -> InMemoryMetrics:
    return InMemoryMetrics()


@pytest.fixture
def provider(backend: InMemoryStateBackend, metrics: InMemoryMetrics) -> DefaultCacheProvider:
    return DefaultCacheProvider(backend, metrics=metrics)


@pytest.fixture
def interceptor(provider: DefaultCacheProvider) -> CachingInterceptor:
    """Interceptor usando o pipeline assíncrono para métodos async."""
    return CachingInterceptor(provider, key_builder=DefaultKeyBuilder(), default_ttl_seconds=60)


@pytest.fixture
def bridged_interceptor(provider: DefaultCacheProvider) -> CachingInterceptor:
    """Interceptor usando a ponte bloqueante para métodos async."""
    return CachingInterceptor(provider, default_ttl_seconds=60, bridge_async=True)


@pytest.fixture
def clean_backends() -> Iterator[None]:
    """Isola o cache global de backends entre testes."""
    _backends.clear()
    yield
    _backends.clear()
