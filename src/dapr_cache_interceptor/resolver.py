"""
Directive resolution.

Turns the metadata attached by the directive decorators (or registered
explicitly) into MethodDescriptor instances, once per function identity.
The resolved descriptors are shared through a lock-guarded map.
"""

import logging
from collections.abc import Callable
from threading import Lock
from typing import Any

from .directives import CachingDirective, attach_directive, get_directive
from .invocation import MethodDescriptor

logger = logging.getLogger(__name__)

INTERCEPTED_ATTRIBUTE = "__intercepted__"


def _function_of(raw: Any) -> Callable[..., Any]:
    if isinstance(raw, (staticmethod, classmethod)):
        return raw.__func__
    return raw


class DirectiveResolver:
    """Resolves caching directives into method descriptors.

    Thread Safety:
    - Descriptors are built lazily and never invalidated
    - Concurrent resolution of the same function yields the same descriptor
    """

    def __init__(self) -> None:
        self._descriptors: dict[Callable[..., Any], MethodDescriptor] = {}
        self._lock = Lock()

    def register(self, func: Any, directive: CachingDirective) -> MethodDescriptor:
        """Attach a directive to a function without using decorators.

        Args:
            func: Function, staticmethod or classmethod
            directive: Directive to attach

        Returns:
            Resolved descriptor

        Raises:
            DirectiveConflictError: If the function already has a directive
        """
        target = _function_of(func)
        with self._lock:
            attach_directive(target, directive)
            descriptor = MethodDescriptor.from_function(func)
            self._descriptors[target] = descriptor

        logger.debug(f"Registered {type(directive).__name__} directive for {descriptor.qualified_name}")
        return descriptor

    def resolve(self, func: Any) -> MethodDescriptor:
        """Resolve the descriptor of a function.

        Uses double-checked locking so each function is introspected once.
        """
        target = _function_of(func)
        descriptor = self._descriptors.get(target)
        if descriptor is None:
            with self._lock:
                descriptor = self._descriptors.get(target)
                if descriptor is None:
                    descriptor = MethodDescriptor.from_function(func)
                    self._descriptors[target] = descriptor
        return descriptor

    def resolve_type(self, cls: type) -> dict[str, MethodDescriptor]:
        """Resolve every method of a class that carries a directive.

        Walks the MRO so subclasses inherit the directives of their bases;
        the most derived definition of a name wins.

        Args:
            cls: Class to inspect

        Returns:
            Mapping of attribute name to descriptor
        """
        descriptors: dict[str, MethodDescriptor] = {}
        seen: set[str] = set()

        for klass in cls.__mro__:
            for name, raw in vars(klass).items():
                if name in seen:
                    continue
                seen.add(name)

                if not isinstance(raw, (staticmethod, classmethod)) and not callable(raw):
                    continue
                # Already wrapped functions intercept their own calls
                if getattr(raw, INTERCEPTED_ATTRIBUTE, False) or get_directive(raw) is None:
                    continue
                descriptors[name] = self.resolve(raw)

        return descriptors

    def is_resolved(self, func: Any) -> bool:
        """Check if a function was already resolved."""
        return _function_of(func) in self._descriptors

    def clear(self) -> None:
        """Forget resolved descriptors (primarily for testing)."""
        with self._lock:
            self._descriptors.clear()
