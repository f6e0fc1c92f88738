"""Protocols para extensibilidade da biblioteca.

Define interfaces que permitem implementações customizadas de:
- KeyBuilder: Geração de chaves de cache
- CacheProvider: Acesso tipado ao cache (get/set/remove/remove_by_prefix)
- StateBackend: Armazenamento de bytes com TTL
- Serializer: Serialização/deserialização de dados
- CacheMetrics: Coleta de métricas
"""

from collections.abc import Sequence
from datetime import timedelta
from typing import Any, Protocol, runtime_checkable

from .invocation import MethodDescriptor


@runtime_checkable
class CacheKeyProvider(Protocol):
    """Protocol para argumentos que definem sua própria parte da chave.

    Example:
        ```python
        @dataclass
        class UserQuery:
            tenant: str
            user_id: int

            @property
            def cache_key(self) -> str:
                return f"{self.tenant}-{self.user_id}"
        ```
    """

    @property
    def cache_key(self) -> str: ...


class KeyBuilder(Protocol):
    """Protocol para construtores de chaves de cache.

    Implemente este protocol para customizar como as chaves
    de cache são geradas a partir de métodos e argumentos.

    Deve ser determinístico: mesmo método, mesmos argumentos e mesmo
    prefixo produzem a mesma chave, inclusive entre processos.
    """

    def get_cache_key(self, method: MethodDescriptor, arguments: Sequence[Any], prefix: str) -> str:
        """Constrói chave de cache.

        Args:
            method: Descritor do método interceptado
            arguments: Valores dos argumentos, na ordem da assinatura
            prefix: Prefixo declarado na diretiva

        Returns:
            Chave de cache como string
        """
        ...

    def get_cache_key_prefix(self, method: MethodDescriptor, prefix: str) -> str:
        """Constrói o prefixo comum a todas as chaves do método.

        Usado na invalidação em massa (remove_by_prefix).
        """
        ...


class Serializer(Protocol):
    """Protocol para serialização de dados.

    Example:
        ```python
        import json

        class JsonSerializer:
            def serialize(self, data: Any) -> bytes:
                return json.dumps(data).encode()

            def deserialize(self, data: bytes) -> Any:
                return json.loads(data.decode())
        ```
    """

    def serialize(self, data: Any) -> bytes:
        """Serializa dados Python para bytes."""
        ...

    def deserialize(self, data: bytes) -> Any:
        """Deserializa bytes para dados Python."""
        ...


class StateBackend(Protocol):
    """Protocol para armazenamento de bytes com TTL.

    Erros de conexão ou timeout devem ser lançados como exceções
    de cache; nunca convertidos silenciosamente em cache miss.
    """

    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_prefix(self, prefix: str) -> int: ...

    async def get_async(self, key: str) -> bytes | None: ...

    async def set_async(self, key: str, value: bytes, ttl_seconds: int) -> None: ...

    async def delete_async(self, key: str) -> None: ...

    async def delete_prefix_async(self, prefix: str) -> int: ...


class CacheProvider(Protocol):
    """Protocol para provedores de cache usados pelo pipeline.

    O get é sensível ao tipo: converte o valor armazenado para o tipo
    pedido ou retorna None quando não há entrada.
    """

    def get(self, key: str, result_type: Any) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: timedelta) -> None: ...

    def remove(self, key: str) -> None: ...

    def remove_by_prefix(self, prefix: str) -> None: ...

    async def get_async(self, key: str, result_type: Any) -> Any | None: ...

    async def set_async(self, key: str, value: Any, ttl: timedelta) -> None: ...

    async def remove_async(self, key: str) -> None: ...

    async def remove_by_prefix_async(self, prefix: str) -> None: ...


class CacheMetrics(Protocol):
    """Protocol para coleta de métricas de cache.

    Example:
        ```python
        class PrometheusMetrics:
            def record_hit(self, key: str, latency: float) -> None:
                cache_hits_total.labels(key=key).inc()
                cache_latency.labels(operation="hit").observe(latency)
        ```
    """

    def record_hit(self, key: str, latency: float) -> None:
        """Registra cache hit (latência em segundos)."""
        ...

    def record_miss(self, key: str, latency: float) -> None:
        """Registra cache miss (latência em segundos)."""
        ...

    def record_write(self, key: str, size: int) -> None:
        """Registra escrita no cache (tamanho em bytes)."""
        ...

    def record_evict(self, key: str, count: int) -> None:
        """Registra remoção de entradas (chave ou prefixo)."""
        ...

    def record_error(self, key: str, error: Exception) -> None:
        """Registra erro de cache."""
        ...
