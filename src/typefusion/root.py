"""The shared root of fusible user types."""

from __future__ import annotations

import types
from typing import Any, FrozenSet, List, Optional, Type, TypeVar

from .descriptors import PROPERTY_TABLE_KEY, PropertyTable
from .errors import require

F = TypeVar("F", bound="Fusible")


def _table_of(obj: object) -> Optional[PropertyTable]:
    try:
        mapping = object.__getattribute__(obj, "__dict__")
    except AttributeError:
        return None
    table = mapping.get(PROPERTY_TABLE_KEY)
    return table if type(table) is PropertyTable else None


class Fusible:
    """Base class for user types whose instances are fused onto host objects.

    Attribute access consults the instance's property table (filled in by the
    merge engine) before normal class lookup, which is what lets definitions
    such as read-only data, locked names and partially merged accessors live
    on the instance itself. Objects without a table behave exactly like plain
    instances.

    The root must not declare ``__slots__``: a bridge can only take over a
    plain host instance when both classes share the same layout base.
    """

    def __getattribute__(self, name: str) -> Any:
        table = _table_of(self)
        if table is not None:
            entry = table.get(name)
            if entry is not None:
                return entry.read(name)
        return super().__getattribute__(name)

    def __setattr__(self, name: str, value: Any) -> None:
        table = _table_of(self)
        if table is not None and table.assign(name, value):
            return
        super().__setattr__(name, value)

    def __delattr__(self, name: str) -> None:
        table = _table_of(self)
        if table is not None and table.remove(name):
            return
        super().__delattr__(name)

    def __dir__(self) -> List[str]:
        names = set(super().__dir__())
        table = _table_of(self)
        if table is not None:
            names.update(table.enumerable_names())
        return sorted(names)

    @classmethod
    def fuse(cls: Type[F], instance: object) -> F:
        """Fuse ``instance`` with this class through the default engine."""

        from .engine import default_engine

        return default_engine().fuse(instance, cls)


ROOT_INTERNAL_NAMES: FrozenSet[str] = frozenset(
    name for name in vars(Fusible) if not (name.startswith("__") and name.endswith("__"))
)


def extend(definition: type) -> Type[Fusible]:
    """Return a :class:`Fusible` flavour of ``definition``.

    Classes already deriving from :class:`Fusible` are returned unchanged;
    anything else gets a subclass with the same name that also derives from
    :class:`Fusible`.
    """

    require(isinstance(definition, type), f"extend() expects a class, got {definition!r}")
    if issubclass(definition, Fusible):
        return definition
    qualname = getattr(definition, "__qualname__", definition.__name__)
    namespace = {
        "__qualname__": qualname,
        "__module__": definition.__module__,
        "__doc__": definition.__doc__,
    }
    return types.new_class(
        definition.__name__,
        (definition, Fusible),
        exec_body=lambda ns: ns.update(namespace),
    )


__all__ = ["Fusible", "ROOT_INTERNAL_NAMES", "extend"]
