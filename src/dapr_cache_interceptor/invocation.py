"""
Method descriptors and invocations.

A MethodDescriptor is built once per function identity and describes what
the pipeline needs to know about a method: its declared return type, whether
that type is an awaitable wrapper of some T (and which T), and the caching
directive attached to it. An Invocation represents one in-flight call.
"""

import asyncio
import collections.abc
import inspect
import typing
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from .directives import CachingDirective, get_directive

D = TypeVar("D")

BINDING_FUNCTION = "function"
BINDING_INSTANCE = "instance"
BINDING_CLASS = "class"
BINDING_STATIC = "static"

_AWAITABLE_ORIGINS = (
    collections.abc.Awaitable,
    collections.abc.Coroutine,
    asyncio.Future,
    asyncio.Task,
)


def _resolve_return_type(func: Callable[..., Any], signature: inspect.Signature | None) -> Any:
    """Resolve the declared return annotation, falling back to Any."""
    try:
        hints = typing.get_type_hints(func)
    except (NameError, TypeError, AttributeError):
        hints = {}

    if "return" in hints:
        return hints["return"]

    if signature is None or signature.return_annotation is inspect.Signature.empty:
        return Any

    annotation = signature.return_annotation
    # Unresolvable forward references stay strings; treat them as untyped
    return Any if isinstance(annotation, str) else annotation


def awaitable_result_type(return_type: Any) -> tuple[bool, Any]:
    """Check if a return type is an awaitable wrapper and extract its T.

    Args:
        return_type: Declared return type

    Returns:
        Tuple of (is_awaitable_wrapper, result_type)
    """
    if return_type in _AWAITABLE_ORIGINS:
        return True, Any

    origin = typing.get_origin(return_type)
    if origin in _AWAITABLE_ORIGINS:
        args = typing.get_args(return_type)
        # Coroutine[Y, S, R] carries the result as the last argument
        return True, args[-1] if args else Any

    return False, return_type


def _detect_binding(raw: Any, signature: inspect.Signature | None) -> str:
    if isinstance(raw, staticmethod):
        return BINDING_STATIC
    if isinstance(raw, classmethod):
        return BINDING_CLASS
    if signature is not None:
        params = list(signature.parameters)
        if params and params[0] == "self":
            return BINDING_INSTANCE
        if params and params[0] == "cls":
            return BINDING_CLASS
    return BINDING_FUNCTION


@dataclass(frozen=True)
class MethodDescriptor:
    """Immutable description of an intercepted method.

    Attributes:
        func: Underlying function (its identity identifies the method)
        name: Function name
        qualified_name: ``module.qualname`` path of the function
        signature: Function signature (None if not introspectable)
        return_type: Declared return type (Any when not annotated)
        is_async: Whether calling the function yields an awaitable
        result_type: T for awaitable returns, the declared return type otherwise
        directive: Attached caching directive, if any
        binding: How the first parameter is bound (instance, class, static, function)
    """

    func: Callable[..., Any]
    name: str
    qualified_name: str
    signature: inspect.Signature | None
    return_type: Any
    is_async: bool
    result_type: Any
    directive: CachingDirective | None
    binding: str = BINDING_FUNCTION

    @classmethod
    def from_function(cls, raw: Any, directive: CachingDirective | None = None) -> "MethodDescriptor":
        """Build a descriptor from a function, staticmethod or classmethod.

        Args:
            raw: Function to describe
            directive: Explicit directive (defaults to the one attached by decorators)

        Returns:
            MethodDescriptor for the function
        """
        func = raw.__func__ if isinstance(raw, (staticmethod, classmethod)) else raw

        try:
            signature: inspect.Signature | None = inspect.signature(func)
        except (ValueError, TypeError):
            signature = None

        return_type = _resolve_return_type(func, signature)
        wraps_awaitable, wrapped_type = awaitable_result_type(return_type)

        if inspect.iscoroutinefunction(func):
            is_async = True
            result_type = wrapped_type if wraps_awaitable else return_type
        else:
            is_async = wraps_awaitable
            result_type = wrapped_type

        module = getattr(func, "__module__", None) or "unknown"
        qualname = getattr(func, "__qualname__", None) or getattr(func, "__name__", "unknown")

        return cls(
            func=func,
            name=getattr(func, "__name__", qualname),
            qualified_name=f"{module}.{qualname}",
            signature=signature,
            return_type=return_type,
            is_async=is_async,
            result_type=result_type,
            directive=directive if directive is not None else get_directive(func),
            binding=_detect_binding(raw, signature),
        )

    @property
    def skips_first_argument(self) -> bool:
        """Whether the first parameter (self/cls) is excluded from cache keys."""
        return self.binding in (BINDING_INSTANCE, BINDING_CLASS)

    def directive_of(self, kind: type[D]) -> D | None:
        """Return the directive if it is of the given kind."""
        if isinstance(self.directive, kind):
            return self.directive
        return None

    def bind_arguments(self, call_args: tuple[Any, ...], kwargs: dict[str, Any]) -> tuple[Any, ...]:
        """Order call arguments by the signature, applying defaults.

        ``f(7)`` and ``f(user_id=7)`` produce the same tuple. The self/cls
        parameter is dropped so instances share cache entries.

        Args:
            call_args: Positional arguments, including self/cls when bound
            kwargs: Keyword arguments

        Returns:
            Argument values in signature order

        Raises:
            TypeError: If the arguments do not match the signature
        """
        if self.signature is None:
            values = list(call_args) + sorted(kwargs.items())
        else:
            bound = self.signature.bind(*call_args, **kwargs)
            bound.apply_defaults()

            values = []
            for name, param in self.signature.parameters.items():
                value = bound.arguments[name]
                if param.kind is inspect.Parameter.VAR_POSITIONAL:
                    values.extend(value)
                elif param.kind is inspect.Parameter.VAR_KEYWORD:
                    values.extend(sorted(value.items()))
                else:
                    values.append(value)

        if self.skips_first_argument and values:
            return tuple(values[1:])
        return tuple(values)


class Invocation:
    """One in-flight call of an intercepted method.

    Holds the ordered argument values used for key generation, a mutable
    return value slot and the capability to proceed to the real function.
    """

    def __init__(
        self,
        method: MethodDescriptor,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        target: Any = None,
    ) -> None:
        """Initialize invocation.

        Args:
            method: Descriptor of the intercepted method
            args: Positional call arguments (without the bound target)
            kwargs: Keyword call arguments
            target: Bound instance or class (None for plain/static calls)

        Raises:
            TypeError: If the arguments do not match the method signature
        """
        self.method = method
        self.target = target
        self._call_args = (target, *args) if target is not None else tuple(args)
        self._kwargs = kwargs
        self.arguments = method.bind_arguments(self._call_args, kwargs)
        self.return_value: Any = None
        self.proceed_count = 0

    def proceed(self) -> Any:
        """Invoke the real function and store its return value.

        For awaitable methods the slot receives the awaitable itself.
        """
        self.proceed_count += 1
        self.return_value = self.method.func(*self._call_args, **self._kwargs)
        return self.return_value

    async def proceed_async(self) -> Any:
        """Invoke the real function and await its result if needed."""
        self.proceed_count += 1
        result = self.method.func(*self._call_args, **self._kwargs)
        if inspect.isawaitable(result):
            result = await result
        self.return_value = result
        return result

    def __repr__(self) -> str:
        return f"Invocation(method={self.method.qualified_name!r}, arguments={self.arguments!r})"
