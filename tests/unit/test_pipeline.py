"""Testes para o pipeline de interceptação."""

import asyncio
from datetime import timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest

from dapr_cache_interceptor.backend import InMemoryStateBackend
from dapr_cache_interceptor.directives import cache_evict, cache_put, cacheable
from dapr_cache_interceptor.exceptions import CacheConnectionError
from dapr_cache_interceptor.invocation import Invocation, MethodDescriptor
from dapr_cache_interceptor.key_builder import DefaultKeyBuilder
from dapr_cache_interceptor.pipeline import InterceptionPipeline
from dapr_cache_interceptor.provider import DefaultCacheProvider
from dapr_cache_interceptor.unwrapper import CompletedResult


class Repository:
    """Repositório falso que conta as chamadas reais."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.users: dict[int, dict] = {7: {"id": 7, "name": "Ana"}}

    @cacheable(prefix="users:get_user", ttl_seconds=30)
    def get_user(self, user_id: int) -> dict | None:
        self.calls.append("get_user")
        return self.users.get(user_id)

    @cacheable(prefix="users")
    def find(self, user_id: int) -> dict | None:
        self.calls.append("find")
        return self.users.get(user_id)

    @cache_put(prefix="users", ttl_seconds=30)
    def save(self, user_id: int) -> dict:
        self.calls.append("save")
        self.users[user_id] = {"id": user_id, "name": "saved"}
        return self.users[user_id]

    @cache_evict(prefix="users")
    def delete(self, user_id: int) -> None:
        self.calls.append("delete")
        self.users.pop(user_id, None)

    @cache_evict(prefix="users", is_before=True)
    def delete_before(self, user_id: int) -> None:
        self.calls.append("delete_before")
        raise RuntimeError("delete failed")

    @cache_evict(prefix="users", is_all=True)
    def purge(self) -> None:
        self.calls.append("purge")

    @cache_evict(prefix="users")
    def delete_failing(self, user_id: int) -> None:
        self.calls.append("delete_failing")
        raise RuntimeError("delete failed")

    @cache_put(prefix="users")
    def save_failing(self, user_id: int) -> dict:
        self.calls.append("save_failing")
        raise RuntimeError("save failed")

    def plain(self, user_id: int) -> str:
        self.calls.append("plain")
        return f"plain-{user_id}"

    @cacheable(prefix="async:users")
    async def get_user_async(self, user_id: int) -> dict | None:
        self.calls.append("get_user_async")
        await asyncio.sleep(0)
        return self.users.get(user_id)

    @cache_put(prefix="async:users")
    async def save_async(self, user_id: int) -> dict:
        self.calls.append("save_async")
        self.users[user_id] = {"id": user_id, "name": "saved"}
        return self.users[user_id]

    @cache_evict(prefix="async:users", is_all=True, is_before=True)
    async def purge_async(self) -> None:
        self.calls.append("purge_async")

    @cache_evict(prefix="async:users")
    async def delete_async(self, user_id: int) -> None:
        await asyncio.sleep(0)
        self.calls.append("delete_async")
        self.users.pop(user_id, None)

    @cache_evict(prefix="async:users")
    async def delete_async_failing(self, user_id: int) -> None:
        await asyncio.sleep(0)
        self.calls.append("delete_async_failing")
        raise RuntimeError("delete failed")


@pytest.fixture
def repo() -> Repository:
    return Repository()


@pytest.fixture
def pipeline(provider: DefaultCacheProvider) -> InterceptionPipeline:
    return InterceptionPipeline(provider, DefaultKeyBuilder(), default_ttl_seconds=60)


def call(pipeline: InterceptionPipeline, repo: Repository, name: str, *args: Any) -> Any:
    method = MethodDescriptor.from_function(Repository.__dict__[name])
    return pipeline.intercept(Invocation(method, args, {}, target=repo))


async def call_async(pipeline: InterceptionPipeline, repo: Repository, name: str, *args: Any) -> Any:
    method = MethodDescriptor.from_function(Repository.__dict__[name])
    return await pipeline.intercept_async(Invocation(method, args, {}, target=repo))


class TestCacheable:
    """Testes para a fase read-through."""

    def test_miss_then_hit(
        self, pipeline: InterceptionPipeline, repo: Repository, backend: InMemoryStateBackend
    ) -> None:
        """Deve executar no miss, gravar e servir o hit do cache."""
        first = call(pipeline, repo, "get_user", 7)
        second = call(pipeline, repo, "get_user", 7)

        assert first == second == {"id": 7, "name": "Ana"}
        assert repo.calls == ["get_user"]
        assert backend.keys() == ["users:get_user:7"]

    def test_keyword_and_positional_share_entry(self, pipeline: InterceptionPipeline, repo: Repository) -> None:
        """Deve usar a mesma chave para argumentos posicionais e nomeados."""
        method = MethodDescriptor.from_function(Repository.__dict__["get_user"])
        pipeline.intercept(Invocation(method, (7,), {}, target=repo))
        pipeline.intercept(Invocation(method, (), {"user_id": 7}, target=repo))
        assert repo.calls == ["get_user"]

    def test_proceeds_exactly_once_per_miss(self, pipeline: InterceptionPipeline, repo: Repository) -> None:
        """Deve chamar o método real uma única vez no miss."""
        method = MethodDescriptor.from_function(Repository.__dict__["get_user"])
        invocation = Invocation(method, (7,), {}, target=repo)
        pipeline.intercept(invocation)
        assert invocation.proceed_count == 1

    def test_none_is_not_cached(
        self, pipeline: InterceptionPipeline, repo: Repository, backend: InMemoryStateBackend
    ) -> None:
        """Deve executar novamente quando o resultado é None."""
        assert call(pipeline, repo, "get_user", 99) is None
        assert call(pipeline, repo, "get_user", 99) is None
        assert repo.calls == ["get_user", "get_user"]
        assert backend.keys() == []

    def test_directive_ttl_and_default_ttl(self, repo: Repository) -> None:
        """Deve usar o TTL da diretiva ou o default do pipeline."""
        provider = MagicMock()
        provider.get.return_value = None
        pipeline = InterceptionPipeline(provider, DefaultKeyBuilder(), default_ttl_seconds=60)

        call(pipeline, repo, "get_user", 7)
        call(pipeline, repo, "find", 7)

        assert provider.set.call_args_list[0].args[2] == timedelta(seconds=30)
        assert provider.set.call_args_list[1].args[2] == timedelta(seconds=60)

    def test_expired_entry_is_recomputed(self, pipeline: InterceptionPipeline, repo: Repository, clock) -> None:
        """Deve executar novamente após a expiração."""
        call(pipeline, repo, "get_user", 7)
        clock.advance(31)
        call(pipeline, repo, "get_user", 7)
        assert repo.calls == ["get_user", "get_user"]

    def test_store_error_propagates(self, repo: Repository) -> None:
        """Deve propagar erro do provider sem executar o método."""
        provider = MagicMock()
        provider.get.side_effect = CacheConnectionError("down")
        pipeline = InterceptionPipeline(provider, DefaultKeyBuilder())

        with pytest.raises(CacheConnectionError):
            call(pipeline, repo, "get_user", 7)
        assert repo.calls == []


class TestPlainMethod:
    """Testes para métodos sem diretiva."""

    def test_proceeds_without_touching_cache(self, repo: Repository) -> None:
        """Deve apenas executar o método."""
        provider = MagicMock()
        pipeline = InterceptionPipeline(provider, DefaultKeyBuilder())

        assert call(pipeline, repo, "plain", 1) == "plain-1"
        assert provider.method_calls == []


class TestPut:
    """Testes para a fase write-through."""

    def test_put_always_proceeds_and_writes(
        self, pipeline: InterceptionPipeline, repo: Repository, provider: DefaultCacheProvider
    ) -> None:
        """Deve executar sempre e gravar o resultado."""
        call(pipeline, repo, "save", 5)
        call(pipeline, repo, "save", 5)

        assert repo.calls == ["save", "save"]
        assert provider.get("users:5", dict) == {"id": 5, "name": "saved"}

    def test_put_refreshes_cacheable_entry(self, pipeline: InterceptionPipeline, repo: Repository) -> None:
        """Deve atualizar a entrada lida por métodos com o mesmo prefixo."""
        call(pipeline, repo, "find", 7)
        call(pipeline, repo, "save", 7)

        assert call(pipeline, repo, "find", 7) == {"id": 7, "name": "saved"}
        assert repo.calls == ["find", "save"]

    def test_put_failure_writes_nothing(
        self, pipeline: InterceptionPipeline, repo: Repository, backend: InMemoryStateBackend
    ) -> None:
        """Deve propagar a exceção sem gravar."""
        with pytest.raises(RuntimeError, match="save failed"):
            call(pipeline, repo, "save_failing", 5)
        assert backend.keys() == []


class TestEvict:
    """Testes para as fases de remoção."""

    def test_evict_after_removes_cacheable_entry(
        self, pipeline: InterceptionPipeline, repo: Repository, backend: InMemoryStateBackend
    ) -> None:
        """Deve remover a entrada gravada pelo Cacheable de mesmo prefixo."""
        call(pipeline, repo, "find", 7)
        assert backend.keys() == ["users:7"]

        call(pipeline, repo, "delete", 7)

        assert backend.keys() == []
        assert repo.calls == ["find", "delete"]

    def test_evict_all_removes_prefix(
        self, pipeline: InterceptionPipeline, repo: Repository, backend: InMemoryStateBackend
    ) -> None:
        """Deve remover todas as entradas do prefixo."""
        repo.users[8] = {"id": 8}
        call(pipeline, repo, "find", 7)
        call(pipeline, repo, "find", 8)
        call(pipeline, repo, "get_user", 7)

        call(pipeline, repo, "purge")

        # "users:get_user:7" também começa com "users:"
        assert backend.keys() == []

    def test_evict_before_runs_even_if_method_fails(
        self, pipeline: InterceptionPipeline, repo: Repository, backend: InMemoryStateBackend
    ) -> None:
        """Deve remover antes da execução, mesmo com falha do método."""
        call(pipeline, repo, "find", 7)

        with pytest.raises(RuntimeError):
            call(pipeline, repo, "delete_before", 7)

        assert backend.keys() == []

    def test_evict_after_is_skipped_when_method_fails(
        self, pipeline: InterceptionPipeline, repo: Repository, backend: InMemoryStateBackend
    ) -> None:
        """Deve manter a entrada quando o método falha."""
        call(pipeline, repo, "find", 7)

        with pytest.raises(RuntimeError):
            call(pipeline, repo, "delete_failing", 7)

        assert backend.keys() == ["users:7"]


class TestAsyncMethodsOnSyncPipeline:
    """Testes para métodos async no pipeline síncrono."""

    def test_miss_stores_unwrapped_result(
        self, pipeline: InterceptionPipeline, repo: Repository, provider: DefaultCacheProvider
    ) -> None:
        """Deve armazenar o resultado e devolver awaitable concluído."""
        result = call(pipeline, repo, "get_user_async", 7)

        assert isinstance(result, CompletedResult)
        assert asyncio.run(_await(result)) == {"id": 7, "name": "Ana"}
        assert provider.get("async:users:7", dict) == {"id": 7, "name": "Ana"}

    def test_hit_returns_completed_awaitable(self, pipeline: InterceptionPipeline, repo: Repository) -> None:
        """Deve devolver o valor do cache como awaitable."""
        call(pipeline, repo, "get_user_async", 7)
        result = call(pipeline, repo, "get_user_async", 7)

        assert isinstance(result, CompletedResult)
        assert result.result() == {"id": 7, "name": "Ana"}
        assert repo.calls == ["get_user_async"]

    def test_put_async_method(self, pipeline: InterceptionPipeline, repo: Repository, provider) -> None:
        """Deve aguardar o resultado antes de gravar."""
        result = call(pipeline, repo, "save_async", 3)

        assert result.result() == {"id": 3, "name": "saved"}
        assert provider.get("async:users:3", dict) == {"id": 3, "name": "saved"}

    def test_evict_after_waits_for_method_body(
        self,
        pipeline: InterceptionPipeline,
        repo: Repository,
        backend: InMemoryStateBackend,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Deve executar o corpo do método async antes da remoção."""
        call(pipeline, repo, "get_user_async", 7)
        delete = backend.delete

        def recording_delete(key: str) -> None:
            repo.calls.append(f"evict {key}")
            delete(key)

        monkeypatch.setattr(backend, "delete", recording_delete)

        result = call(pipeline, repo, "delete_async", 7)

        assert repo.calls == ["get_user_async", "delete_async", "evict async:users:7"]
        assert backend.keys() == []
        assert isinstance(result, CompletedResult)
        assert result.result() is None

    def test_evict_after_is_skipped_when_async_method_fails(
        self, pipeline: InterceptionPipeline, repo: Repository, backend: InMemoryStateBackend
    ) -> None:
        """Deve propagar a falha do método async e manter a entrada."""
        call(pipeline, repo, "get_user_async", 7)

        with pytest.raises(RuntimeError, match="delete failed"):
            call(pipeline, repo, "delete_async_failing", 7)

        assert repo.calls == ["get_user_async", "delete_async_failing"]
        assert backend.keys() == ["async:users:7"]


class TestInterceptAsync:
    """Testes para o pipeline assíncrono."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(
        self, pipeline: InterceptionPipeline, repo: Repository, backend: InMemoryStateBackend
    ) -> None:
        """Deve executar uma vez e servir o segundo acesso do cache."""
        first = await call_async(pipeline, repo, "get_user_async", 7)
        second = await call_async(pipeline, repo, "get_user_async", 7)

        assert first == second == {"id": 7, "name": "Ana"}
        assert repo.calls == ["get_user_async"]
        assert backend.keys() == ["async:users:7"]

    @pytest.mark.asyncio
    async def test_put_and_evict_all_before(
        self, pipeline: InterceptionPipeline, repo: Repository, backend: InMemoryStateBackend
    ) -> None:
        """Deve gravar no Put e remover o prefixo antes de executar."""
        await call_async(pipeline, repo, "save_async", 1)
        await call_async(pipeline, repo, "save_async", 2)
        assert backend.keys() == ["async:users:1", "async:users:2"]

        await call_async(pipeline, repo, "purge_async")

        assert backend.keys() == []

    @pytest.mark.asyncio
    async def test_sync_method_on_async_pipeline(self, pipeline: InterceptionPipeline, repo: Repository) -> None:
        """Deve aceitar métodos síncronos."""
        assert await call_async(pipeline, repo, "find", 7) == {"id": 7, "name": "Ana"}
        assert await call_async(pipeline, repo, "find", 7) == {"id": 7, "name": "Ana"}
        assert repo.calls == ["find"]

    @pytest.mark.asyncio
    async def test_failure_short_circuits(
        self, pipeline: InterceptionPipeline, repo: Repository, backend: InMemoryStateBackend
    ) -> None:
        """Deve propagar a exceção e pular a remoção posterior."""
        await call_async(pipeline, repo, "find", 7)

        with pytest.raises(RuntimeError):
            await call_async(pipeline, repo, "delete_failing", 7)

        assert backend.keys() == ["users:7"]


async def _await(awaitable):  # type: ignore[no-untyped-def]
    return await awaitable
