"""Coletores de métricas do provider de cache.

O ``DefaultCacheProvider`` reporta cada leitura, escrita, remoção e erro
para um coletor ``CacheMetrics``. Chaves geradas por argumento têm
cardinalidade alta, então os coletores aceitam um ``key_group`` que reduz a
chave a um rótulo estável antes de registrar (ver ``namespace_of``).
"""

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from threading import Lock
from typing import Any

from opentelemetry import metrics as otel_metrics

from .constants import KEY_SEPARATOR
from .protocols import CacheMetrics

logger = logging.getLogger(__name__)

__all__ = [
    "CacheMetrics",
    "CacheStats",
    "InMemoryMetrics",
    "KeyStats",
    "NoOpMetrics",
    "OpenTelemetryMetrics",
    "namespace_of",
]

KeyGroup = Callable[[str], str]


def namespace_of(key: str, separator: str = KEY_SEPARATOR) -> str:
    """Rótulo de uma chave: o texto antes do primeiro separador.

    ``"users:get_user:7"`` e ``"users:"`` pertencem ao grupo ``"users"``.
    """
    head, found, _ = key.partition(separator)
    return head if found and head else key


def _same_key(key: str) -> str:
    return key


class NoOpMetrics:
    """Descarta tudo. Usado quando nenhum coletor é configurado."""

    def record_hit(self, key: str, latency: float) -> None:
        pass

    def record_miss(self, key: str, latency: float) -> None:
        pass

    def record_write(self, key: str, size: int) -> None:
        pass

    def record_evict(self, key: str, count: int) -> None:
        pass

    def record_error(self, key: str, error: Exception) -> None:
        pass


class _ReadRatios:
    hits: int
    misses: int

    @property
    def total_operations(self) -> int:
        """Leituras registradas (hits + misses)."""
        return self.hits + self.misses

    @property
    def hit_ratio(self) -> float:
        total = self.total_operations
        return self.hits / total if total > 0 else 0.0


@dataclass
class KeyStats(_ReadRatios):
    """Contadores de um grupo de chaves, com latências somadas."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0
    errors: int = 0
    total_latency_hits: float = 0.0
    total_latency_misses: float = 0.0
    total_bytes_written: int = 0

    @property
    def avg_hit_latency_ms(self) -> float:
        return (self.total_latency_hits / self.hits * 1000) if self.hits else 0.0

    @property
    def avg_miss_latency_ms(self) -> float:
        return (self.total_latency_misses / self.misses * 1000) if self.misses else 0.0


@dataclass
class CacheStats(_ReadRatios):
    """Totais do provider, com as amostras mais recentes de latência e tamanho."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0
    errors: int = 0
    hit_latencies: list[float] = field(default_factory=list)
    miss_latencies: list[float] = field(default_factory=list)
    write_sizes: list[int] = field(default_factory=list)

    @property
    def avg_hit_latency_ms(self) -> float:
        return _mean_ms(self.hit_latencies)

    @property
    def avg_miss_latency_ms(self) -> float:
        return _mean_ms(self.miss_latencies)


def _mean_ms(samples: list[float]) -> float:
    return sum(samples) / len(samples) * 1000 if samples else 0.0


class OpenTelemetryMetrics:
    """Publica as operações do provider como instrumentos OpenTelemetry.

    Instrumentos (meter ``dapr_cache_interceptor`` por padrão):
    - cache.hits, cache.misses, cache.writes, cache.errors (counters)
    - cache.evictions (counter somando as entradas removidas)
    - cache.latency (histogram, segundos, atributo ``operation``)
    - cache.size (histogram, bytes serializados por escrita)

    O atributo ``key`` recebe ``key_group(key)``. Passe ``namespace_of``
    para evitar uma série por argumento.

    Example:
        ```python
        interceptor = create_caching_interceptor(
            metrics=OpenTelemetryMetrics(key_group=namespace_of),
        )
        ```
    """

    def __init__(self, meter_name: str = "dapr_cache_interceptor", key_group: KeyGroup | None = None) -> None:
        meter = otel_metrics.get_meter(meter_name)
        self._key_group = key_group or _same_key

        self._hits_counter = meter.create_counter("cache.hits", description="Leituras servidas do cache", unit="1")
        self._misses_counter = meter.create_counter(
            "cache.misses", description="Leituras sem entrada no cache", unit="1"
        )
        self._writes_counter = meter.create_counter("cache.writes", description="Entradas gravadas", unit="1")
        self._evictions_counter = meter.create_counter(
            "cache.evictions", description="Entradas removidas por Evict", unit="1"
        )
        self._errors_counter = meter.create_counter(
            "cache.errors", description="Falhas de store, chave ou serialização", unit="1"
        )

        self._latency_histogram = meter.create_histogram(
            "cache.latency", description="Duração das leituras do provider", unit="s"
        )
        self._size_histogram = meter.create_histogram(
            "cache.size", description="Tamanho serializado das entradas gravadas", unit="By"
        )

    def _attributes(self, key: str, **extra: str) -> dict[str, str]:
        return {"key": self._key_group(key), **extra}

    def record_hit(self, key: str, latency: float) -> None:
        self._hits_counter.add(1, self._attributes(key))
        self._latency_histogram.record(latency, self._attributes(key, operation="hit"))

    def record_miss(self, key: str, latency: float) -> None:
        self._misses_counter.add(1, self._attributes(key))
        self._latency_histogram.record(latency, self._attributes(key, operation="miss"))

    def record_write(self, key: str, size: int) -> None:
        self._writes_counter.add(1, self._attributes(key))
        self._size_histogram.record(size, self._attributes(key))

    def record_evict(self, key: str, count: int) -> None:
        self._evictions_counter.add(count, self._attributes(key))

    def record_error(self, key: str, error: Exception) -> None:
        self._errors_counter.add(1, self._attributes(key, error_type=type(error).__name__))


class InMemoryMetrics:
    """Coletor em memória para testes e diagnóstico local.

    Guarda os totais do provider e um ``KeyStats`` por grupo de chaves.
    Apenas as últimas ``max_samples`` amostras de latência e tamanho são
    mantidas. Thread-safe.
    """

    def __init__(self, max_samples: int = 1000, key_group: KeyGroup | None = None) -> None:
        self._max_samples = max_samples
        self._key_group = key_group or _same_key
        self._lock = Lock()
        self._overall = CacheStats()
        self._by_key: dict[str, KeyStats] = defaultdict(KeyStats)

    def _stats_for(self, key: str) -> KeyStats:
        return self._by_key[self._key_group(key)]

    def _sample(self, samples: list[Any], value: Any) -> None:
        samples.append(value)
        if len(samples) > self._max_samples:
            del samples[: len(samples) - self._max_samples]

    def record_hit(self, key: str, latency: float) -> None:
        with self._lock:
            self._overall.hits += 1
            self._sample(self._overall.hit_latencies, latency)
            stats = self._stats_for(key)
            stats.hits += 1
            stats.total_latency_hits += latency

    def record_miss(self, key: str, latency: float) -> None:
        with self._lock:
            self._overall.misses += 1
            self._sample(self._overall.miss_latencies, latency)
            stats = self._stats_for(key)
            stats.misses += 1
            stats.total_latency_misses += latency

    def record_write(self, key: str, size: int) -> None:
        with self._lock:
            self._overall.writes += 1
            self._sample(self._overall.write_sizes, size)
            stats = self._stats_for(key)
            stats.writes += 1
            stats.total_bytes_written += size

    def record_evict(self, key: str, count: int) -> None:
        with self._lock:
            self._overall.evictions += count
            self._stats_for(key).evictions += count

    def record_error(self, key: str, error: Exception) -> None:
        with self._lock:
            self._overall.errors += 1
            self._stats_for(key).errors += 1
        logger.debug(f"Cache error recorded for {key}: {type(error).__name__}")

    def get_stats(self) -> CacheStats:
        """Snapshot dos totais; registros posteriores não o alteram."""
        with self._lock:
            return replace(
                self._overall,
                hit_latencies=self._overall.hit_latencies.copy(),
                miss_latencies=self._overall.miss_latencies.copy(),
                write_sizes=self._overall.write_sizes.copy(),
            )

    def get_key_stats(self, key: str) -> KeyStats | None:
        """Snapshot do grupo da chave, ou None se nada foi registrado."""
        group = self._key_group(key)
        with self._lock:
            stats = self._by_key.get(group)
            return replace(stats) if stats is not None else None

    def get_all_key_stats(self) -> dict[str, KeyStats]:
        with self._lock:
            return {group: replace(stats) for group, stats in self._by_key.items()}

    def get_top_keys(self, by: str = "hits", limit: int = 10) -> list[tuple[str, int]]:
        """Grupos com os maiores valores do contador ``by`` (hits, misses, writes, evictions, errors)."""
        with self._lock:
            ranked = sorted(
                ((group, getattr(stats, by)) for group, stats in self._by_key.items()),
                key=lambda item: item[1],
                reverse=True,
            )
        return ranked[:limit]

    def reset(self) -> None:
        with self._lock:
            self._overall = CacheStats()
            self._by_key.clear()
