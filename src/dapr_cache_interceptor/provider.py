"""Provedor de cache usado pelo pipeline de interceptação.

Combina um ``StateBackend`` (bytes com TTL), um ``Serializer`` e um
coletor de métricas. O get é sensível ao tipo: o payload é convertido
para o tipo de retorno declarado pelo método.

Erros do backend e da serialização são registrados nas métricas e
propagados sem alteração; nunca são convertidos em cache miss.
"""

import logging
import time
from datetime import timedelta
from typing import Any

from .constants import MIN_TTL_SECONDS
from .metrics import NoOpMetrics
from .protocols import CacheMetrics, Serializer, StateBackend
from .serializer import MsgPackSerializer, convert_to_type

logger = logging.getLogger(__name__)


def _ttl_seconds(ttl: timedelta) -> int:
    """Converte o TTL para segundos inteiros (mínimo 1, restrição do Dapr)."""
    return max(MIN_TTL_SECONDS, int(ttl.total_seconds()))


class DefaultCacheProvider:
    """Implementação padrão do protocol ``CacheProvider``.

    Attributes:
        backend: Backend de storage
        serializer: Serializer de dados
        metrics: Coletor de métricas
    """

    def __init__(
        self,
        backend: StateBackend,
        serializer: Serializer | None = None,
        metrics: CacheMetrics | None = None,
    ) -> None:
        self._backend = backend
        self._serializer = serializer or MsgPackSerializer()
        self._metrics = metrics or NoOpMetrics()

    @property
    def backend(self) -> StateBackend:
        return self._backend

    @property
    def serializer(self) -> Serializer:
        return self._serializer

    @property
    def metrics(self) -> CacheMetrics:
        return self._metrics

    # ========== Métodos Síncronos ==========

    def get(self, key: str, result_type: Any) -> Any | None:
        """Busca e converte o valor armazenado.

        Args:
            key: Chave do cache
            result_type: Tipo esperado do valor

        Returns:
            Valor convertido ou None se não houver entrada
        """
        start_time = time.perf_counter()
        try:
            data = self._backend.get(key)
            value = None if data is None else self._decode(data, result_type)
        except Exception as e:
            self._metrics.record_error(key, e)
            raise

        self._record_lookup(key, value, time.perf_counter() - start_time)
        return value

    def set(self, key: str, value: Any, ttl: timedelta) -> None:
        """Serializa e armazena o valor com TTL."""
        try:
            serialized = self._serializer.serialize(value)
            self._backend.set(key, serialized, _ttl_seconds(ttl))
        except Exception as e:
            self._metrics.record_error(key, e)
            raise
        self._metrics.record_write(key, len(serialized))

    def remove(self, key: str) -> None:
        """Remove uma entrada."""
        try:
            self._backend.delete(key)
        except Exception as e:
            self._metrics.record_error(key, e)
            raise
        self._metrics.record_evict(key, 1)

    def remove_by_prefix(self, prefix: str) -> None:
        """Remove todas as entradas cuja chave começa com o prefixo."""
        try:
            count = self._backend.delete_prefix(prefix)
        except Exception as e:
            self._metrics.record_error(prefix, e)
            raise
        self._metrics.record_evict(prefix, count)

    # ========== Métodos Assíncronos ==========

    async def get_async(self, key: str, result_type: Any) -> Any | None:
        start_time = time.perf_counter()
        try:
            data = await self._backend.get_async(key)
            value = None if data is None else self._decode(data, result_type)
        except Exception as e:
            self._metrics.record_error(key, e)
            raise

        self._record_lookup(key, value, time.perf_counter() - start_time)
        return value

    async def set_async(self, key: str, value: Any, ttl: timedelta) -> None:
        try:
            serialized = self._serializer.serialize(value)
            await self._backend.set_async(key, serialized, _ttl_seconds(ttl))
        except Exception as e:
            self._metrics.record_error(key, e)
            raise
        self._metrics.record_write(key, len(serialized))

    async def remove_async(self, key: str) -> None:
        try:
            await self._backend.delete_async(key)
        except Exception as e:
            self._metrics.record_error(key, e)
            raise
        self._metrics.record_evict(key, 1)

    async def remove_by_prefix_async(self, prefix: str) -> None:
        try:
            count = await self._backend.delete_prefix_async(prefix)
        except Exception as e:
            self._metrics.record_error(prefix, e)
            raise
        self._metrics.record_evict(prefix, count)

    def _decode(self, data: bytes, result_type: Any) -> Any:
        return convert_to_type(self._serializer.deserialize(data), result_type)

    def _record_lookup(self, key: str, value: Any, latency: float) -> None:
        if value is None:
            self._metrics.record_miss(key, latency)
        else:
            self._metrics.record_hit(key, latency)
