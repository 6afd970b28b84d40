"""Property model shared by the kernel, the merge engine and :class:`Fusible`.

Three views of an attribute exist:

``SourceDescriptor``
    what one class namespace entry declares (a function, a ``property``, a
    :func:`declare` wrapper, a plain value...), classified by :func:`classify`;
``PropertyRecord``
    the running result of merging every level of a user hierarchy;
``PropertyDescriptor``
    the immutable definition committed into an instance's
    :class:`PropertyTable`.
"""

from __future__ import annotations

import inspect
import types
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Tuple

PROPERTY_TABLE_KEY = "__fusion_properties__"


class PropertyKind(str, Enum):
    DATA = "data"
    ACCESSOR = "accessor"


def default_enumerable(name: str) -> bool:
    return not name.startswith("_")


# ---------------------------------------------------------------------------
# Declarations on user classes
# ---------------------------------------------------------------------------


class Declared:
    """Class-level declaration carrying explicit attribute flags.

    Instances are descriptors, so a user class holding them still behaves
    like a normal class when its instances are not fused.
    """

    __slots__ = (
        "kind",
        "value",
        "getter",
        "setter",
        "writable",
        "enumerable",
        "configurable",
        "name",
    )

    def __init__(
        self,
        kind: PropertyKind,
        *,
        value: object = None,
        getter: Optional[Callable] = None,
        setter: Optional[Callable] = None,
        writable: bool = True,
        enumerable: Optional[bool] = None,
        configurable: bool = True,
    ) -> None:
        self.kind = kind
        self.value = value
        self.getter = getter
        self.setter = setter
        self.writable = bool(writable)
        self.enumerable = enumerable
        self.configurable = bool(configurable)
        self.name: Optional[str] = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, obj: object, owner: Optional[type] = None) -> object:
        if obj is None:
            return self
        if self.kind is PropertyKind.ACCESSOR:
            if self.getter is None:
                raise AttributeError(f"property {self.name!r} has no getter")
            return self.getter(obj)
        stored = getattr(obj, "__dict__", None)
        if stored is not None and self.name in stored:
            return stored[self.name]
        if inspect.isfunction(self.value):
            return types.MethodType(self.value, obj)
        return self.value

    def __set__(self, obj: object, value: object) -> None:
        if self.kind is PropertyKind.ACCESSOR:
            if self.setter is None:
                raise AttributeError(f"property {self.name!r} has no setter")
            self.setter(obj, value)
            return
        if not self.writable:
            raise AttributeError(f"property {self.name!r} is read-only")
        obj.__dict__[self.name] = value

    def __repr__(self) -> str:
        flags = []
        if not self.writable:
            flags.append("readonly")
        if not self.configurable:
            flags.append("locked")
        suffix = f" {' '.join(flags)}" if flags else ""
        return f"<Declared {self.kind.value} {self.name!r}{suffix}>"


def declare(
    value: object,
    *,
    writable: bool = True,
    enumerable: Optional[bool] = None,
    configurable: bool = True,
) -> Declared:
    """Declare a data attribute with explicit flags."""

    return Declared(
        PropertyKind.DATA,
        value=value,
        writable=writable,
        enumerable=enumerable,
        configurable=configurable,
    )


def readonly(value: object, *, enumerable: Optional[bool] = None) -> Declared:
    return declare(value, writable=False, enumerable=enumerable)


def locked(value: object, *, writable: bool = True, enumerable: Optional[bool] = None) -> Declared:
    """Declare a non-configurable attribute; once locked it stays locked."""

    return declare(value, writable=writable, enumerable=enumerable, configurable=False)


def accessor(
    getter: Optional[Callable] = None,
    setter: Optional[Callable] = None,
    *,
    enumerable: Optional[bool] = None,
    configurable: bool = True,
) -> Declared:
    return Declared(
        PropertyKind.ACCESSOR,
        getter=getter,
        setter=setter,
        enumerable=enumerable,
        configurable=configurable,
    )


# ---------------------------------------------------------------------------
# Classification of raw namespace entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceDescriptor:
    """One level's own definition of an attribute."""

    kind: PropertyKind
    value: object = None
    getter: Optional[Callable] = None
    setter: Optional[Callable] = None
    writable: bool = True
    enumerable: bool = True
    configurable: bool = True
    bindable: bool = False

    @property
    def is_data(self) -> bool:
        return self.kind is PropertyKind.DATA


def _descriptor_getter(raw: object, owner: type) -> Callable:
    def get(instance: object) -> object:
        return raw.__get__(instance, owner)  # type: ignore[attr-defined]

    return get


def _descriptor_setter(raw: object) -> Callable:
    def set_(instance: object, value: object) -> None:
        raw.__set__(instance, value)  # type: ignore[attr-defined]

    return set_


def classify(raw: object, owner: type, name: str) -> SourceDescriptor:
    """Classify the raw namespace entry ``raw`` found on ``owner`` under ``name``.

    Functions are data and bindable; ``property`` objects and other data
    descriptors are accessors; ``staticmethod`` and ``classmethod`` entries
    are data resolved against ``owner``. Anything else is a plain data value.
    """

    enumerable = default_enumerable(name)
    if isinstance(raw, Declared):
        if raw.kind is PropertyKind.ACCESSOR:
            return SourceDescriptor(
                PropertyKind.ACCESSOR,
                getter=raw.getter,
                setter=raw.setter,
                enumerable=enumerable if raw.enumerable is None else raw.enumerable,
                configurable=raw.configurable,
            )
        return SourceDescriptor(
            PropertyKind.DATA,
            value=raw.value,
            writable=raw.writable,
            enumerable=enumerable if raw.enumerable is None else raw.enumerable,
            configurable=raw.configurable,
            bindable=inspect.isfunction(raw.value),
        )
    if isinstance(raw, property):
        return SourceDescriptor(
            PropertyKind.ACCESSOR,
            getter=raw.fget,
            setter=raw.fset,
            enumerable=enumerable,
        )
    if isinstance(raw, staticmethod):
        return SourceDescriptor(PropertyKind.DATA, value=raw.__func__, enumerable=enumerable)
    if isinstance(raw, classmethod):
        return SourceDescriptor(
            PropertyKind.DATA, value=raw.__get__(None, owner), enumerable=enumerable
        )
    if inspect.isfunction(raw):
        return SourceDescriptor(PropertyKind.DATA, value=raw, enumerable=enumerable, bindable=True)

    raw_type = type(raw)
    if hasattr(raw_type, "__get__"):
        is_data_descriptor = hasattr(raw_type, "__set__") or hasattr(raw_type, "__delete__")
        return SourceDescriptor(
            PropertyKind.ACCESSOR,
            getter=_descriptor_getter(raw, owner),
            setter=_descriptor_setter(raw) if hasattr(raw_type, "__set__") else None,
            enumerable=enumerable if is_data_descriptor else False,
        )
    return SourceDescriptor(PropertyKind.DATA, value=raw, enumerable=enumerable)


# ---------------------------------------------------------------------------
# Merge state and committed definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PropertyDescriptor:
    """A committed per-instance attribute definition."""

    kind: PropertyKind
    value: object = None
    getter: Optional[Callable] = None
    setter: Optional[Callable] = None
    writable: bool = True
    enumerable: bool = True
    configurable: bool = True

    def read(self, name: str) -> object:
        if self.kind is PropertyKind.DATA:
            return self.value
        if self.getter is None:
            raise AttributeError(f"property {name!r} has no getter")
        return self.getter()

    def write(self, name: str, value: object) -> Optional["PropertyDescriptor"]:
        """Apply an assignment; returns the replacement descriptor for data entries."""

        if self.kind is PropertyKind.ACCESSOR:
            if self.setter is None:
                raise AttributeError(f"property {name!r} has no setter")
            self.setter(value)
            return None
        if not self.writable:
            raise AttributeError(f"property {name!r} is read-only")
        return replace(self, value=value)


@dataclass
class PropertyRecord:
    """Running merge state for one attribute name."""

    name: str
    kind: PropertyKind
    value: object = None
    getter: Optional[Callable] = None
    setter: Optional[Callable] = None
    writable: bool = True
    enumerable: bool = True
    lockable: bool = False
    origin: Optional[type] = None

    def to_descriptor(self) -> PropertyDescriptor:
        if self.kind is PropertyKind.DATA:
            return PropertyDescriptor(
                PropertyKind.DATA,
                value=self.value,
                writable=self.writable,
                enumerable=self.enumerable,
                configurable=not self.lockable,
            )
        return PropertyDescriptor(
            PropertyKind.ACCESSOR,
            getter=self.getter,
            setter=self.setter,
            writable=True,
            enumerable=self.enumerable,
            configurable=not self.lockable,
        )


class PropertyTable:
    """Per-instance attribute definitions, consulted before class lookup."""

    __slots__ = ("_entries", "frozen")

    def __init__(self) -> None:
        self._entries: Dict[str, PropertyDescriptor] = {}
        self.frozen = False

    def get(self, name: str) -> Optional[PropertyDescriptor]:
        return self._entries.get(name)

    def define(self, name: str, descriptor: PropertyDescriptor) -> bool:
        if self.frozen:
            return False
        existing = self._entries.get(name)
        if existing is not None and not existing.configurable and existing != descriptor:
            return False
        self._entries[name] = descriptor
        return True

    def assign(self, name: str, value: object) -> bool:
        """Write ``value`` through the entry for ``name``; ``False`` when there is none."""

        existing = self._entries.get(name)
        if existing is None:
            return False
        if self.frozen and existing.kind is PropertyKind.DATA:
            raise AttributeError(f"property {name!r} is frozen")
        updated = existing.write(name, value)
        if updated is not None:
            self._entries[name] = updated
        return True

    def remove(self, name: str) -> bool:
        existing = self._entries.get(name)
        if existing is None:
            return False
        if self.frozen or not existing.configurable:
            raise AttributeError(f"property {name!r} is not configurable")
        del self._entries[name]
        return True

    def names(self) -> List[str]:
        return list(self._entries)

    def enumerable_names(self) -> List[str]:
        return [name for name, entry in self._entries.items() if entry.enumerable]

    def items(self) -> Iterator[Tuple[str, PropertyDescriptor]]:
        return iter(list(self._entries.items()))

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        state = " frozen" if self.frozen else ""
        return f"<PropertyTable{state} {sorted(self._entries)!r}>"


__all__ = [
    "PROPERTY_TABLE_KEY",
    "Declared",
    "PropertyDescriptor",
    "PropertyKind",
    "PropertyRecord",
    "PropertyTable",
    "SourceDescriptor",
    "accessor",
    "classify",
    "declare",
    "default_enumerable",
    "locked",
    "readonly",
]
