"""Testes para os backends de state."""

import base64
import json
from unittest.mock import patch

import httpx
import pytest

from dapr_cache_interceptor.backend import DaprStateBackend, InMemoryStateBackend, _get_dapr_url
from dapr_cache_interceptor.exceptions import (
    CacheBackendError,
    CacheConnectionError,
    CacheKeyError,
    CacheTimeoutError,
)


class RecordingHandler:
    """Handler para httpx.MockTransport que simula o sidecar Dapr."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.state: dict[str, str] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        prefix = "/v1.0/state/store"

        if request.method == "POST" and path == f"{prefix}/transaction":
            for op in json.loads(request.content)["operations"]:
                self.state.pop(op["request"]["key"], None)
            return httpx.Response(204)
        if request.method == "POST" and path == prefix:
            for item in json.loads(request.content):
                self.state[item["key"]] = item["value"]
            return httpx.Response(204)

        key = path[len(prefix) + 1 :]
        if request.method == "GET":
            if key not in self.state:
                return httpx.Response(204)
            return httpx.Response(200, json=self.state[key])
        if request.method == "DELETE":
            self.state.pop(key, None)
            return httpx.Response(204)
        return httpx.Response(405)


def _backend(handler: RecordingHandler) -> DaprStateBackend:
    return DaprStateBackend(
        "store",
        dapr_url="http://dapr",
        transport=httpx.MockTransport(handler),
        async_transport=httpx.MockTransport(handler),
    )


class TestGetDaprUrl:
    """Testes para _get_dapr_url."""

    def test_default_url(self) -> None:
        """Deve retornar URL padrão."""
        with patch.dict("os.environ", {}, clear=True):
            assert _get_dapr_url() == "http://127.0.0.1:3500"

    def test_custom_host_and_port(self) -> None:
        """Deve usar variáveis de ambiente."""
        with patch.dict("os.environ", {"DAPR_HTTP_HOST": "custom", "DAPR_HTTP_PORT": "3501"}):
            assert _get_dapr_url() == "http://custom:3501"


class TestDaprStateBackend:
    """Testes para DaprStateBackend."""

    def test_init_empty_store_name_raises_error(self) -> None:
        """Deve lançar erro com store_name vazio."""
        with pytest.raises(CacheKeyError):
            DaprStateBackend("")

    def test_state_url_quotes_key(self) -> None:
        """Deve escapar a chave preservando ':'."""
        backend = DaprStateBackend("mystore")
        assert backend._state_url() == "/v1.0/state/mystore"
        assert backend._state_url("users:a b") == "/v1.0/state/mystore/users:a%20b"

    def test_decode_value(self) -> None:
        """Deve decodificar base64 e aceitar texto simples."""
        backend = DaprStateBackend("store")
        assert backend._decode_value("aGVsbG8=") == b"hello"
        assert backend._decode_value("not base64!") == b"not base64!"
        assert backend._decode_value(None) is None

    def test_set_then_get(self) -> None:
        """Deve gravar com TTL e ler o valor."""
        handler = RecordingHandler()
        backend = _backend(handler)

        backend.set("users:7", b"payload", 60)

        body = json.loads(handler.requests[0].content)
        assert body == [
            {
                "key": "users:7",
                "value": base64.b64encode(b"payload").decode("ascii"),
                "metadata": {"ttlInSeconds": "60"},
            }
        ]
        assert backend.get("users:7") == b"payload"

    def test_get_missing_key_returns_none(self) -> None:
        """Deve retornar None para chave inexistente."""
        assert _backend(RecordingHandler()).get("missing") is None

    def test_delete(self) -> None:
        """Deve remover a chave."""
        handler = RecordingHandler()
        backend = _backend(handler)
        backend.set("k", b"v", 10)

        backend.delete("k")

        assert backend.get("k") is None
        assert handler.requests[1].method == "DELETE"

    def test_delete_prefix_uses_transaction(self) -> None:
        """Deve remover em lote as chaves conhecidas com o prefixo."""
        handler = RecordingHandler()
        backend = _backend(handler)
        for key in ("users:1", "users:2", "orders:1"):
            backend.set(key, b"v", 10)

        removed = backend.delete_prefix("users:")

        assert removed == 2
        transaction = json.loads(handler.requests[-1].content)
        assert [op["request"]["key"] for op in transaction["operations"]] == ["users:1", "users:2"]
        assert set(handler.state) == {"orders:1"}

    def test_key_index_drops_expired_keys(self, clock) -> None:
        """Deve descartar do índice as chaves cujo TTL já venceu."""
        handler = RecordingHandler()
        backend = DaprStateBackend(
            "store", dapr_url="http://dapr", transport=httpx.MockTransport(handler), clock=clock
        )
        for i in range(500):
            backend.set(f"k:{i}", b"x", 1)
        backend.set("k:long", b"x", 60)

        clock.advance(1)
        backend.set("other", b"x", 10)

        assert sorted(backend._keys) == ["k:long", "other"]

    def test_delete_prefix_skips_expired_keys(self, clock) -> None:
        """Deve enviar ao sidecar apenas as chaves ainda vigentes."""
        handler = RecordingHandler()
        backend = DaprStateBackend(
            "store", dapr_url="http://dapr", transport=httpx.MockTransport(handler), clock=clock
        )
        backend.set("users:1", b"v", 5)
        backend.set("users:2", b"v", 30)

        clock.advance(5)
        removed = backend.delete_prefix("users:")

        assert removed == 1
        transaction = json.loads(handler.requests[-1].content)
        assert [op["request"]["key"] for op in transaction["operations"]] == ["users:2"]
        assert backend._keys == {}

    def test_delete_prefix_without_known_keys(self) -> None:
        """Deve retornar 0 sem chamar o sidecar."""
        handler = RecordingHandler()
        assert _backend(handler).delete_prefix("users:") == 0
        assert handler.requests == []

    def test_empty_key_raises(self) -> None:
        """Deve rejeitar chave vazia."""
        with pytest.raises(CacheKeyError):
            _backend(RecordingHandler()).get("")

    def test_unexpected_status_raises_backend_error(self) -> None:
        """Deve lançar CacheBackendError para status inesperado."""
        backend = DaprStateBackend(
            "store", dapr_url="http://dapr", transport=httpx.MockTransport(lambda r: httpx.Response(500))
        )

        with pytest.raises(CacheBackendError) as exc_info:
            backend.set("k", b"v", 10)
        assert exc_info.value.status_code == 500
        assert exc_info.value.key == "k"

    def test_connect_error_raises_connection_error(self) -> None:
        """Deve converter erro de conexão."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        backend = DaprStateBackend("store", dapr_url="http://dapr", transport=httpx.MockTransport(handler))
        with pytest.raises(CacheConnectionError):
            backend.get("k")

    def test_timeout_raises_timeout_error(self) -> None:
        """Deve converter timeout."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        backend = DaprStateBackend("store", dapr_url="http://dapr", transport=httpx.MockTransport(handler))
        with pytest.raises(CacheTimeoutError):
            backend.get("k")

    def test_context_manager_closes_client(self) -> None:
        """Deve fechar o cliente ao sair do contexto."""
        with _backend(RecordingHandler()) as backend:
            backend.get("k")
            assert backend._sync_client is not None
        assert backend._sync_client is None

    @pytest.mark.asyncio
    async def test_async_operations(self) -> None:
        """Deve suportar as operações assíncronas."""
        handler = RecordingHandler()
        async with _backend(handler) as backend:
            await backend.set_async("users:1", b"a", 10)
            await backend.set_async("users:2", b"b", 10)

            assert await backend.get_async("users:1") == b"a"

            await backend.delete_async("users:1")
            assert await backend.get_async("users:1") is None

            assert await backend.delete_prefix_async("users:") == 1
            assert handler.state == {}


class TestInMemoryStateBackend:
    """Testes para InMemoryStateBackend."""

    def test_set_and_get(self, backend: InMemoryStateBackend) -> None:
        """Deve armazenar e retornar bytes."""
        backend.set("k", b"v", 10)
        assert backend.get("k") == b"v"

    def test_expiration(self, backend: InMemoryStateBackend, clock) -> None:
        """Deve expirar entradas após o TTL."""
        backend.set("k", b"v", 10)
        clock.advance(9)
        assert backend.get("k") == b"v"
        clock.advance(1)
        assert backend.get("k") is None
        assert backend.keys() == []

    def test_delete_prefix(self, backend: InMemoryStateBackend) -> None:
        """Deve remover chaves pelo prefixo."""
        backend.set("users:1", b"1", 10)
        backend.set("users:2", b"2", 10)
        backend.set("orders:1", b"3", 10)

        assert backend.delete_prefix("users:") == 2
        assert backend.keys() == ["orders:1"]

    def test_delete_missing_key(self, backend: InMemoryStateBackend) -> None:
        """Deve ignorar remoção de chave inexistente."""
        backend.delete("missing")

    def test_empty_key_raises(self, backend: InMemoryStateBackend) -> None:
        """Deve rejeitar chave vazia."""
        with pytest.raises(CacheKeyError):
            backend.set("", b"v", 10)

    @pytest.mark.asyncio
    async def test_async_twins(self, backend: InMemoryStateBackend) -> None:
        """Deve expor as mesmas operações de forma assíncrona."""
        await backend.set_async("k", b"v", 10)
        assert await backend.get_async("k") == b"v"
        assert await backend.delete_prefix_async("k") == 1
        assert await backend.get_async("k") is None
