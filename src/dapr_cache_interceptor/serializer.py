"""Serialização de dados para cache.

Serializers convertem valores Python para bytes (MsgPack por padrão, JSON
como alternativa legível). Como o get do provider é sensível ao tipo,
``convert_to_type`` reconstrói o tipo declarado pelo método a partir do
payload decodificado (dataclasses, datetime, Decimal, UUID, Enum e
coleções tipadas).
"""

import dataclasses
import json
import types
import typing
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

import msgpack

from .exceptions import CacheSerializationError

_UNTYPED = (Any, object, None)
_SEQUENCE_ORIGINS = (list, tuple, set, frozenset)


def to_serializable(obj: Any) -> Any:
    """Converte tipos não nativos para formas serializáveis.

    Usado como hook ``default`` dos serializers.

    Raises:
        TypeError: Se o tipo não for suportado
    """
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (Decimal, UUID)):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        # Ordena para determinismo; str() evita TypeError com tipos mistos
        return sorted(obj, key=lambda x: (type(x).__name__, str(x)))
    if hasattr(obj, "__dict__"):
        return {k: v for k, v in vars(obj).items() if not k.startswith("_")}
    raise TypeError(f"Tipo não serializável: {type(obj).__name__}")


class MsgPackSerializer:
    """Serializer usando MessagePack.

    MsgPack é um formato binário eficiente, mais compacto que JSON
    e com melhor performance para serialização/deserialização.

    Suporta tipos Python nativos e, via ``to_serializable``,
    dataclasses, datetime, Decimal, UUID, Enum e sets.
    """

    def serialize(self, data: Any) -> bytes:
        """Serializa dados Python para bytes MsgPack.

        Raises:
            CacheSerializationError: Se falhar ao serializar
        """
        try:
            result = msgpack.packb(data, use_bin_type=True, default=to_serializable)
            if result is None:
                raise CacheSerializationError("msgpack.packb retornou None")
            return result
        except (TypeError, ValueError, OverflowError) as e:
            raise CacheSerializationError(f"Falha ao serializar dados: {e}") from e

    def deserialize(self, data: bytes) -> Any:
        """Deserializa bytes MsgPack para dados Python.

        Raises:
            CacheSerializationError: Se falhar ao deserializar
        """
        try:
            return msgpack.unpackb(data, raw=False)
        except (msgpack.UnpackException, ValueError) as e:
            raise CacheSerializationError(f"Falha ao deserializar dados: {e}") from e


class JsonSerializer:
    """Serializer JSON (UTF-8), útil para inspecionar o state store."""

    def serialize(self, data: Any) -> bytes:
        try:
            return json.dumps(data, default=to_serializable, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise CacheSerializationError(f"Falha ao serializar dados: {e}") from e

    def deserialize(self, data: bytes) -> Any:
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise CacheSerializationError(f"Falha ao deserializar dados: {e}") from e


def convert_to_type(value: Any, result_type: Any) -> Any:
    """Converte um payload decodificado para o tipo esperado.

    Args:
        value: Valor decodificado pelo serializer
        result_type: Tipo declarado de retorno do método

    Returns:
        Valor convertido (ou o próprio valor se não houver conversão aplicável)

    Raises:
        CacheSerializationError: Se o payload não puder ser convertido
    """
    try:
        return _convert(value, result_type)
    except (TypeError, ValueError, KeyError) as e:
        raise CacheSerializationError(f"Falha ao converter valor para {result_type!r}: {e}") from e


def _convert(value: Any, result_type: Any) -> Any:
    if value is None or result_type in _UNTYPED or isinstance(result_type, typing.TypeVar):
        return value

    origin = typing.get_origin(result_type)
    if origin is not None:
        return _convert_generic(value, origin, typing.get_args(result_type))

    if not isinstance(result_type, type):
        return value
    try:
        if isinstance(value, result_type):
            return value
    except TypeError:
        # Protocols não runtime_checkable não suportam isinstance
        return value

    if dataclasses.is_dataclass(result_type) and isinstance(value, Mapping):
        return _convert_dataclass(value, result_type)
    if issubclass(result_type, Enum):
        return result_type(value)
    if result_type in (datetime, date, time) and isinstance(value, str):
        return result_type.fromisoformat(value)
    if result_type in (Decimal, UUID):
        return result_type(str(value))
    if result_type is float and isinstance(value, int):
        return float(value)
    if result_type in _SEQUENCE_ORIGINS and isinstance(value, (list, tuple)):
        return result_type(value)
    if result_type is bytes and isinstance(value, str):
        return value.encode("utf-8")
    return value


def _convert_generic(value: Any, origin: Any, args: tuple[Any, ...]) -> Any:
    if origin in (typing.Union, types.UnionType):
        candidates = [arg for arg in args if arg is not type(None)]
        if len(candidates) == 1:
            return _convert(value, candidates[0])
        return value

    if origin in _SEQUENCE_ORIGINS and isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
        if origin is tuple and args and args[-1] is not Ellipsis:
            return tuple(_convert(item, arg) for item, arg in zip(items, args))
        item_type = args[0] if args else Any
        return origin(_convert(item, item_type) for item in items)

    if origin is dict and isinstance(value, Mapping):
        key_type, value_type = args if len(args) == 2 else (Any, Any)
        return {_convert(k, key_type): _convert(v, value_type) for k, v in value.items()}

    return value


def _convert_dataclass(value: Mapping[str, Any], result_type: type) -> Any:
    try:
        hints = typing.get_type_hints(result_type)
    except (NameError, TypeError):
        hints = {}

    kwargs = {
        f.name: _convert(value[f.name], hints.get(f.name, Any))
        for f in dataclasses.fields(result_type)
        if f.init and f.name in value
    }
    return result_type(**kwargs)
