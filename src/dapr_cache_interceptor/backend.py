"""Backends de armazenamento de bytes com TTL.

- ``DaprStateBackend``: Dapr State Store via API HTTP do sidecar
- ``InMemoryStateBackend``: dicionário em memória (desenvolvimento e testes)
"""

import asyncio
import base64
import binascii
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from threading import Lock
from typing import Any
from urllib.parse import quote

import httpx

from .config import CacheConfig
from .constants import DEFAULT_BACKEND_TIMEOUT_SECONDS
from .exceptions import CacheBackendError, CacheConnectionError, CacheKeyError, CacheTimeoutError

logger = logging.getLogger(__name__)

_SUCCESS_STATUS = (200, 201, 204)


def _get_dapr_url() -> str:
    """Obtém a URL base do sidecar Dapr."""
    return CacheConfig.resolve_dapr_url()


def _require_key(key: str) -> None:
    if not key:
        raise CacheKeyError("Chave não pode ser vazia", key=key)


@contextmanager
def _translate_errors(key: str | None) -> Iterator[None]:
    """Converte erros de transporte do httpx em exceções de cache."""
    try:
        yield
    except httpx.ConnectError as e:
        raise CacheConnectionError(f"Não foi possível conectar ao sidecar Dapr: {e}", key=key) from e
    except httpx.TimeoutException as e:
        raise CacheTimeoutError(f"Timeout na operação de cache: {e}", key=key) from e
    except httpx.HTTPError as e:
        raise CacheBackendError(f"Erro HTTP na operação de cache: {e}", key=key) from e


class DaprStateBackend:
    """Backend para Dapr State Store usando API HTTP direta.

    Usa httpx para comunicação HTTP com o sidecar Dapr, oferecendo
    métodos sync e async com a mesma interface.

    A API REST do Dapr State é simples:
    - GET /v1.0/state/{storename}/{key} - buscar valor
    - POST /v1.0/state/{storename} - salvar valor(es)
    - DELETE /v1.0/state/{storename}/{key} - deletar valor
    - POST /v1.0/state/{storename}/transaction - deletar em lote

    O Dapr não lista chaves, então ``delete_prefix`` remove as chaves
    gravadas por esta instância (índice local protegido por lock). O índice
    guarda o prazo de cada chave e descarta as que o Dapr já expirou.

    Attributes:
        store_name: Nome do state store configurado no Dapr
        timeout: Timeout para operações HTTP em segundos
    """

    def __init__(
        self,
        store_name: str,
        timeout: float = DEFAULT_BACKEND_TIMEOUT_SECONDS,
        dapr_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
        async_transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Inicializa o backend.

        Args:
            store_name: Nome do state store Dapr
            timeout: Timeout para operações HTTP
            dapr_url: URL do sidecar (usa env vars se não fornecido)
            transport: Transporte httpx síncrono customizado (ex: testes)
            async_transport: Transporte httpx assíncrono customizado
            clock: Relógio monotônico usado nos prazos do índice de chaves

        Raises:
            CacheKeyError: Se store_name for vazio
        """
        if not store_name:
            raise CacheKeyError("store_name não pode ser vazio")

        self._store_name = store_name
        self._timeout = timeout
        self._base_url = dapr_url or _get_dapr_url()
        self._transport = transport
        self._async_transport = async_transport

        # Clientes são criados sob demanda para melhor gerenciamento de recursos
        self._sync_client: httpx.Client | None = None
        self._async_client: httpx.AsyncClient | None = None

        self._sync_client_lock = Lock()
        # asyncio.Lock é criado lazy para evitar "no current event loop" em Python 3.10+
        # quando a classe é instanciada antes de um event loop existir
        self._async_client_lock: asyncio.Lock | None = None

        self._clock = clock
        # Chave -> prazo de expiração (relógio monotônico)
        self._keys: dict[str, float] = {}
        self._keys_lock = Lock()

    @property
    def store_name(self) -> str:
        """Nome do state store."""
        return self._store_name

    def _get_sync_client(self) -> httpx.Client:
        """Obtém ou cria cliente HTTP síncrono (double-checked locking)."""
        if self._sync_client is None:
            with self._sync_client_lock:
                if self._sync_client is None:
                    self._sync_client = httpx.Client(
                        base_url=self._base_url,
                        timeout=self._timeout,
                        transport=self._transport,
                    )
        return self._sync_client

    def _get_async_lock(self) -> asyncio.Lock:
        if self._async_client_lock is None:
            self._async_client_lock = asyncio.Lock()
        return self._async_client_lock

    async def _get_async_client(self) -> httpx.AsyncClient:
        """Obtém ou cria cliente HTTP assíncrono sem bloquear o event loop."""
        if self._async_client is None:
            async with self._get_async_lock():
                if self._async_client is None:
                    self._async_client = httpx.AsyncClient(
                        base_url=self._base_url,
                        timeout=self._timeout,
                        transport=self._async_transport,
                    )
        return self._async_client

    def _state_url(self, key: str | None = None) -> str:
        """Constrói URL para operações de state."""
        if key:
            return f"/v1.0/state/{self._store_name}/{quote(key, safe=':')}"
        return f"/v1.0/state/{self._store_name}"

    def _transaction_url(self) -> str:
        return f"/v1.0/state/{self._store_name}/transaction"

    def _encode_value(self, value: bytes) -> str:
        """Codifica valor em base64 para envio via JSON."""
        return base64.b64encode(value).decode("ascii")

    def _decode_value(self, data: Any) -> bytes | None:
        """Decodifica valor recebido do Dapr."""
        if data is None:
            return None
        if isinstance(data, bytes):
            return data
        if isinstance(data, str):
            try:
                return base64.b64decode(data, validate=True)
            except (binascii.Error, ValueError):
                return data.encode("utf-8")
        return None

    def _set_payload(self, key: str, value: bytes, ttl_seconds: int) -> list[dict[str, Any]]:
        return [
            {
                "key": key,
                "value": self._encode_value(value),
                "metadata": {"ttlInSeconds": str(ttl_seconds)},
            }
        ]

    def _delete_payload(self, keys: list[str]) -> dict[str, Any]:
        return {"operations": [{"operation": "delete", "request": {"key": key}} for key in keys]}

    def _parse_get_response(self, response: httpx.Response, key: str) -> bytes | None:
        if response.status_code == 204 or not response.content:
            logger.debug(f"Cache miss para chave: {key}")
            return None

        if response.status_code != 200:
            raise CacheBackendError(
                f"Resposta inesperada do Dapr: {response.status_code}",
                key=key,
                status_code=response.status_code,
            )

        logger.debug(f"Cache hit para chave: {key}")
        # Dapr retorna o valor salvo como string JSON (base64)
        try:
            data: Any = response.json()
        except ValueError:
            data = response.content
        return self._decode_value(data)

    def _check_write_response(self, response: httpx.Response, key: str, operation: str) -> None:
        if response.status_code not in _SUCCESS_STATUS:
            raise CacheBackendError(
                f"Falha no {operation} do cache: {response.status_code}",
                key=key,
                status_code=response.status_code,
            )

    def _prune_expired(self) -> None:
        """Descarta chaves vencidas. Deve ser chamado com o lock adquirido."""
        now = self._clock()
        expired = [key for key, expires_at in self._keys.items() if expires_at <= now]
        for key in expired:
            del self._keys[key]

    def _remember(self, key: str, ttl_seconds: int) -> None:
        with self._keys_lock:
            self._prune_expired()
            self._keys[key] = self._clock() + ttl_seconds

    def _forget(self, keys: list[str]) -> None:
        with self._keys_lock:
            for key in keys:
                self._keys.pop(key, None)

    def _keys_with_prefix(self, prefix: str) -> list[str]:
        with self._keys_lock:
            self._prune_expired()
            return sorted(key for key in self._keys if key.startswith(prefix))

    # ========== Métodos Síncronos ==========

    def get(self, key: str) -> bytes | None:
        """Busca valor do cache (síncrono).

        Returns:
            Valor em bytes ou None se não encontrado

        Raises:
            CacheConnectionError: Se não conseguir conectar ao sidecar
            CacheTimeoutError: Se a operação exceder o timeout
        """
        _require_key(key)
        with _translate_errors(key):
            response = self._get_sync_client().get(self._state_url(key))
        return self._parse_get_response(response, key)

    def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        """Armazena valor no cache (síncrono)."""
        _require_key(key)
        with _translate_errors(key):
            response = self._get_sync_client().post(self._state_url(), json=self._set_payload(key, value, ttl_seconds))
        self._check_write_response(response, key, "set")
        self._remember(key, ttl_seconds)
        logger.debug(f"Cache set para chave: {key}, TTL: {ttl_seconds}s")

    def delete(self, key: str) -> None:
        """Remove valor do cache (síncrono)."""
        _require_key(key)
        with _translate_errors(key):
            response = self._get_sync_client().delete(self._state_url(key))
        self._check_write_response(response, key, "delete")
        self._forget([key])
        logger.debug(f"Cache delete para chave: {key}")

    def delete_prefix(self, prefix: str) -> int:
        """Remove as chaves conhecidas que começam com o prefixo.

        Returns:
            Número de chaves removidas
        """
        _require_key(prefix)
        keys = self._keys_with_prefix(prefix)
        if not keys:
            return 0

        with _translate_errors(prefix):
            response = self._get_sync_client().post(self._transaction_url(), json=self._delete_payload(keys))
        self._check_write_response(response, prefix, "delete em lote")
        self._forget(keys)
        logger.debug(f"Cache delete por prefixo: {prefix} ({len(keys)} chaves)")
        return len(keys)

    # ========== Métodos Assíncronos ==========

    async def get_async(self, key: str) -> bytes | None:
        """Busca valor do cache (assíncrono)."""
        _require_key(key)
        client = await self._get_async_client()
        with _translate_errors(key):
            response = await client.get(self._state_url(key))
        return self._parse_get_response(response, key)

    async def set_async(self, key: str, value: bytes, ttl_seconds: int) -> None:
        """Armazena valor no cache (assíncrono)."""
        _require_key(key)
        client = await self._get_async_client()
        with _translate_errors(key):
            response = await client.post(self._state_url(), json=self._set_payload(key, value, ttl_seconds))
        self._check_write_response(response, key, "set")
        self._remember(key, ttl_seconds)
        logger.debug(f"Cache set para chave: {key}, TTL: {ttl_seconds}s")

    async def delete_async(self, key: str) -> None:
        """Remove valor do cache (assíncrono)."""
        _require_key(key)
        client = await self._get_async_client()
        with _translate_errors(key):
            response = await client.delete(self._state_url(key))
        self._check_write_response(response, key, "delete")
        self._forget([key])
        logger.debug(f"Cache delete para chave: {key}")

    async def delete_prefix_async(self, prefix: str) -> int:
        """Remove as chaves conhecidas que começam com o prefixo (assíncrono)."""
        _require_key(prefix)
        keys = self._keys_with_prefix(prefix)
        if not keys:
            return 0

        client = await self._get_async_client()
        with _translate_errors(prefix):
            response = await client.post(self._transaction_url(), json=self._delete_payload(keys))
        self._check_write_response(response, prefix, "delete em lote")
        self._forget(keys)
        logger.debug(f"Cache delete por prefixo: {prefix} ({len(keys)} chaves)")
        return len(keys)

    # ========== Gerenciamento de Recursos ==========

    def close(self) -> None:
        """Fecha cliente HTTP síncrono."""
        if self._sync_client is not None:
            self._sync_client.close()
            self._sync_client = None

    async def aclose(self) -> None:
        """Fecha cliente HTTP assíncrono."""
        if self._async_client is not None:
            await self._async_client.aclose()
            self._async_client = None

    def __enter__(self) -> "DaprStateBackend":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    async def __aenter__(self) -> "DaprStateBackend":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


class InMemoryStateBackend:
    """Backend em memória com expiração por TTL.

    Thread-safe. As entradas expiradas são descartadas na leitura.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Inicializa o backend.

        Args:
            clock: Relógio monotônico em segundos (injetável para testes)
        """
        self._clock = clock
        self._entries: dict[str, tuple[bytes, float]] = {}
        self._lock = Lock()

    def get(self, key: str) -> bytes | None:
        _require_key(key)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        _require_key(key)
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        _require_key(key)
        with self._lock:
            self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        _require_key(prefix)
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
            return len(keys)

    async def get_async(self, key: str) -> bytes | None:
        return self.get(key)

    async def set_async(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self.set(key, value, ttl_seconds)

    async def delete_async(self, key: str) -> None:
        self.delete(key)

    async def delete_prefix_async(self, prefix: str) -> int:
        return self.delete_prefix(prefix)

    def keys(self) -> list[str]:
        """Retorna as chaves armazenadas (inclui expiradas ainda não lidas)."""
        with self._lock:
            return sorted(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
