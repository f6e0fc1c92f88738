"""Diretivas de cache declarativas.

Um método carrega no máximo uma diretiva:

- ``Cacheable``: leitura com cache (read-through)
- ``Put``: grava o resultado sempre que o método executa (write-through)
- ``Evict``: remove uma entrada ou todas as entradas de um prefixo,
  antes ou depois da execução do método

Os decorators ``cacheable``, ``cache_put`` e ``cache_evict`` apenas anotam
a função; quem aplica o comportamento é o ``CachingInterceptor``.

Uso básico:
    ```python
    class UserService:
        @cacheable(prefix="users", ttl_seconds=60)
        def get_user(self, user_id: int) -> User: ...

        @cache_evict(prefix="users", is_before=True)
        def delete_user(self, user_id: int) -> None: ...

    service = interceptor.create_proxy(UserService())
    ```
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar, overload

from .exceptions import DirectiveConflictError
from .validators import validate_flag, validate_prefix, validate_ttl_seconds

F = TypeVar("F", bound=Callable[..., Any])

DIRECTIVE_ATTRIBUTE = "__caching_directive__"


@dataclass(frozen=True)
class Cacheable:
    """Read-through: retorna do cache no hit, executa e armazena no miss.

    Attributes:
        prefix: Prefixo das chaves (vazio usa o caminho do método)
        ttl_seconds: Tempo de vida em segundos (None usa o default do interceptor)
    """

    prefix: str = ""
    ttl_seconds: int | None = None

    def __post_init__(self) -> None:
        validate_prefix(self.prefix)
        if self.ttl_seconds is not None:
            validate_ttl_seconds(self.ttl_seconds)


@dataclass(frozen=True)
class Put:
    """Write-through: armazena o resultado de toda execução bem-sucedida."""

    prefix: str = ""
    ttl_seconds: int | None = None

    def __post_init__(self) -> None:
        validate_prefix(self.prefix)
        if self.ttl_seconds is not None:
            validate_ttl_seconds(self.ttl_seconds)


@dataclass(frozen=True)
class Evict:
    """Invalidação de cache.

    Attributes:
        prefix: Prefixo das chaves a remover
        is_all: Remove todas as chaves do prefixo em vez da chave dos argumentos
        is_before: Remove antes da execução do método (senão, depois)
    """

    prefix: str = ""
    is_all: bool = False
    is_before: bool = False

    def __post_init__(self) -> None:
        validate_prefix(self.prefix)
        validate_flag("is_all", self.is_all)
        validate_flag("is_before", self.is_before)


CachingDirective = Cacheable | Put | Evict


def _target_function(func: Any) -> Callable[..., Any]:
    """Obtém a função por trás de staticmethod/classmethod."""
    if isinstance(func, (staticmethod, classmethod)):
        return func.__func__
    return func


def get_directive(func: Any) -> CachingDirective | None:
    """Retorna a diretiva anotada na função, se houver."""
    return getattr(_target_function(func), DIRECTIVE_ATTRIBUTE, None)


def attach_directive(func: F, directive: CachingDirective) -> F:
    """Anota a diretiva na função.

    Raises:
        DirectiveConflictError: Se a função já possui uma diretiva
    """
    target = _target_function(func)
    existing = getattr(target, DIRECTIVE_ATTRIBUTE, None)
    if existing is not None:
        raise DirectiveConflictError(
            f"{getattr(target, '__qualname__', target)!s} já possui a diretiva "
            f"{type(existing).__name__}; apenas uma diretiva por método é permitida"
        )
    setattr(target, DIRECTIVE_ATTRIBUTE, directive)
    return func


@overload
def cacheable(func: F) -> F: ...


@overload
def cacheable(*, prefix: str = "", ttl_seconds: int | None = None) -> Callable[[F], F]: ...


def cacheable(
    func: F | None = None,
    *,
    prefix: str = "",
    ttl_seconds: int | None = None,
) -> F | Callable[[F], F]:
    """Marca o método como ``Cacheable``.

    Args:
        func: Função a marcar (quando usado sem parênteses)
        prefix: Prefixo das chaves de cache
        ttl_seconds: TTL em segundos (None usa o default do interceptor)
    """
    directive = Cacheable(prefix=prefix, ttl_seconds=ttl_seconds)

    def decorator(fn: F) -> F:
        return attach_directive(fn, directive)

    if func is not None:
        return decorator(func)
    return decorator


@overload
def cache_put(func: F) -> F: ...


@overload
def cache_put(*, prefix: str = "", ttl_seconds: int | None = None) -> Callable[[F], F]: ...


def cache_put(
    func: F | None = None,
    *,
    prefix: str = "",
    ttl_seconds: int | None = None,
) -> F | Callable[[F], F]:
    """Marca o método como ``Put``."""
    directive = Put(prefix=prefix, ttl_seconds=ttl_seconds)

    def decorator(fn: F) -> F:
        return attach_directive(fn, directive)

    if func is not None:
        return decorator(func)
    return decorator


@overload
def cache_evict(func: F) -> F: ...


@overload
def cache_evict(*, prefix: str = "", is_all: bool = False, is_before: bool = False) -> Callable[[F], F]: ...


def cache_evict(
    func: F | None = None,
    *,
    prefix: str = "",
    is_all: bool = False,
    is_before: bool = False,
) -> F | Callable[[F], F]:
    """Marca o método como ``Evict``.

    Args:
        func: Função a marcar (quando usado sem parênteses)
        prefix: Prefixo das chaves a remover
        is_all: Remove todas as chaves que começam com o prefixo
        is_before: Remove antes de executar o método
    """
    directive = Evict(prefix=prefix, is_all=is_all, is_before=is_before)

    def decorator(fn: F) -> F:
        return attach_directive(fn, directive)

    if func is not None:
        return decorator(func)
    return decorator
