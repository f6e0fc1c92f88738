"""Construtor de chaves de cache determinísticas."""

import hashlib
import json
from collections.abc import Sequence
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from .constants import ARGUMENT_HASH_LENGTH, EMPTY_ARGUMENTS_PART, KEY_SEPARATOR
from .exceptions import CacheKeyError
from .invocation import MethodDescriptor
from .protocols import CacheKeyProvider

_SCALAR_TYPES = (str, int, float, Decimal, UUID)


class DefaultKeyBuilder:
    """Construtor de chaves padrão.

    Gera chaves determinísticas no formato:
    {prefix}:{arg1}:{arg2}...      (prefixo declarado na diretiva)
    {module}.{qualname}:{arg1}...  (sem prefixo)

    Argumentos escalares entram como texto; argumentos com ``cache_key``
    usam esse valor; os demais entram como hash SHA256 truncado da sua
    forma JSON normalizada. Métodos sem argumentos usam "0".

    O separador dentro de uma parte é escapado com "\\", então ``("a:b",)``
    e ``("a", "b")`` geram chaves distintas. Argumentos cuja forma textual
    coincide continuam compartilhando a chave: ``7`` e ``"7"``, ``None`` e
    ``"None"``.

    Como o prefixo declarado substitui o caminho do método, métodos
    diferentes com o mesmo prefixo compartilham chaves. É isso que permite
    a um ``Evict`` remover a entrada gravada por um ``Cacheable``.

    Attributes:
        separator: Separador entre as partes da chave
    """

    def __init__(self, separator: str = KEY_SEPARATOR) -> None:
        """Inicializa o key builder.

        Raises:
            ValueError: Se separator for vazio
        """
        if not separator:
            raise ValueError("Separator não pode ser vazio")
        self._separator = separator

    @property
    def separator(self) -> str:
        return self._separator

    def get_cache_key(self, method: MethodDescriptor, arguments: Sequence[Any], prefix: str) -> str:
        """Constrói chave de cache.

        Args:
            method: Descritor do método
            arguments: Valores dos argumentos na ordem da assinatura
            prefix: Prefixo da diretiva

        Returns:
            Chave no formato prefix:args

        Raises:
            CacheKeyError: Se algum argumento não puder compor a chave
        """
        key_prefix = self.get_cache_key_prefix(method, prefix)
        try:
            parts = [self._escape(self._argument_part(value)) for value in arguments]
        except (TypeError, ValueError) as e:
            raise CacheKeyError(f"Falha ao construir chave de cache para {method.qualified_name}: {e}") from e

        return key_prefix + self._separator.join(parts or [EMPTY_ARGUMENTS_PART])

    def get_cache_key_prefix(self, method: MethodDescriptor, prefix: str) -> str:
        """Constrói o prefixo comum às chaves do método."""
        if prefix and prefix.strip():
            return f"{prefix}{self._separator}"
        return f"{method.qualified_name}{self._separator}"

    def _escape(self, part: str) -> str:
        """Escapa o separador para que cada argumento ocupe uma única parte."""
        return part.replace("\\", "\\\\").replace(self._separator, "\\" + self._separator)

    def _argument_part(self, value: Any) -> str:
        """Converte um argumento em parte da chave."""
        if isinstance(value, CacheKeyProvider):
            return str(value.cache_key)
        if value is None or isinstance(value, bool):
            return str(value)
        # Enum antes de int: IntEnum também é int
        if isinstance(value, Enum):
            return str(value.value)
        if isinstance(value, _SCALAR_TYPES):
            return str(value)
        if isinstance(value, (datetime, date, time)):
            return value.isoformat()
        return self._hash(value)

    def _hash(self, value: Any) -> str:
        """Calcula hash SHA256 da forma JSON normalizada."""
        serialized = json.dumps(self._normalize(value), sort_keys=True, default=str)
        return hashlib.sha256(serialized.encode("utf-8")).hexdigest()[:ARGUMENT_HASH_LENGTH]

    def _normalize(self, obj: Any) -> Any:
        """Normaliza objeto para serialização JSON."""
        if obj is None or isinstance(obj, (bool, int, float, str)):
            return obj
        if isinstance(obj, CacheKeyProvider):
            return str(obj.cache_key)
        if isinstance(obj, bytes):
            return obj.decode("utf-8", errors="replace")
        if isinstance(obj, (list, tuple)):
            return [self._normalize(item) for item in obj]
        if isinstance(obj, dict):
            return {str(k): self._normalize(v) for k, v in obj.items()}
        if isinstance(obj, (set, frozenset)):
            # Converte para string antes de ordenar para evitar TypeError
            # quando o set contém tipos mistos (ex: {1, "string", 3.14})
            normalized_items = [self._normalize(item) for item in obj]
            return sorted(normalized_items, key=lambda x: (type(x).__name__, str(x)))
        if isinstance(obj, Enum):
            return self._normalize(obj.value)
        if hasattr(obj, "__dict__"):
            return {
                "__type__": f"{type(obj).__module__}.{type(obj).__qualname__}",
                **{k: self._normalize(v) for k, v in vars(obj).items() if not k.startswith("_")},
            }
        # Para outros tipos, usa representação string
        return str(obj)
