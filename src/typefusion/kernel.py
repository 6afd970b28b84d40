"""Hardened reflection kernel.

Every primitive the fusion engine relies on is captured once, when this
module is imported, straight from the interpreter's own slots
(``type.__dict__["__mro__"]``, ``object.__dict__["__class__"]`` ...). Later
overrides of ``__getattribute__``, ``__class__``, ``__mro__`` or metaclass
hooks on host objects cannot reach the captured versions.

Threat model, in short: host classes may lie about their class or ancestry,
expose properties that raise or mutate state when read, refuse class
reassignment, or have no ``__dict__`` at all. Every :class:`Kernel` method
therefore absorbs failures and returns a documented safe default instead of
raising. Callers must not add their own error handling around kernel calls.

What this cannot defend against: code that runs before this module is
imported and replaces the captured callables, or code holding a reference to
a kernel's :class:`Primitives`.
"""

from __future__ import annotations

import inspect
import logging
import operator
import threading
import types
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Mapping, Optional, Tuple

from .config import MAX_HIERARCHY_DEPTH
from .descriptors import PROPERTY_TABLE_KEY, PropertyDescriptor, PropertyTable

logger = logging.getLogger(__name__)

HOST_TYPE_ATTR = "__fusion_host__"
USER_TYPE_ATTR = "__fusion_user__"

MISSING = object()

_EMPTY_NAMESPACE: Mapping[str, object] = types.MappingProxyType({})


def _noop(*args: object, **kwargs: object) -> None:
    return None


_constructing = threading.local()


def instantiate_disposable(host: type) -> object:
    """Build a throwaway instance of ``host``.

    A fully constructed instance is preferred so attributes assigned in
    ``__init__`` are visible; hosts that need constructor arguments fall back
    to a bare ``__new__``. A host whose constructor fuses itself would ask
    for another disposable from inside ``__init__``; while a host is being
    constructed on this thread, nested requests for it get a bare
    ``__new__`` instance instead.
    """

    active = getattr(_constructing, "hosts", None)
    if active is None:
        active = _constructing.hosts = set()
    key = id(host)
    if key in active:
        return host.__new__(host)
    active.add(key)
    try:
        return host()
    except Exception:
        return host.__new__(host)
    finally:
        active.discard(key)


@dataclass(frozen=True)
class Primitives:
    """Raw operations captured at import time."""

    true_type: Callable[[object], type] = type
    read_base: Callable[[type], Optional[type]] = type.__dict__["__base__"].__get__
    read_bases: Callable[[type], Tuple[type, ...]] = type.__dict__["__bases__"].__get__
    read_mro: Callable[[type], Tuple[type, ...]] = type.__dict__["__mro__"].__get__
    read_namespace: Callable[[type], Mapping[str, object]] = type.__dict__["__dict__"].__get__
    read_name: Callable[[type], str] = type.__dict__["__name__"].__get__
    write_class: Callable[[object, type], None] = object.__dict__["__class__"].__set__
    getattr_static: Callable[..., object] = inspect.getattr_static
    make_method: Callable[[Callable, object], Callable] = types.MethodType
    is_function: Callable[[object], bool] = inspect.isfunction
    is_subclass: Callable[[type, type], bool] = issubclass
    list_append: Callable[[list, object], None] = list.append
    list_reverse: Callable[[list], None] = list.reverse
    contains: Callable[[object, object], bool] = operator.contains
    getset_type: type = types.GetSetDescriptorType
    disposable_factory: Callable[[type], object] = instantiate_disposable


PRIMITIVES = Primitives()


class Kernel:
    """Infallible reflection operations built on a fixed :class:`Primitives` set."""

    __slots__ = ("_p", "_logger", "max_depth")

    def __init__(
        self,
        primitives: Optional[Primitives] = None,
        *,
        log: Optional[logging.Logger] = None,
        max_depth: int = MAX_HIERARCHY_DEPTH,
    ) -> None:
        object.__setattr__(self, "_p", primitives if primitives is not None else PRIMITIVES)
        object.__setattr__(self, "_logger", log if log is not None else logger)
        object.__setattr__(self, "max_depth", max_depth)

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("Kernel instances are immutable")

    @property
    def primitives(self) -> Primitives:
        return self._p

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def debug(self, msg: str, *args: object) -> None:
        try:
            self._logger.debug(msg, *args)
        except Exception:
            pass

    def info(self, msg: str, *args: object) -> None:
        try:
            self._logger.info(msg, *args)
        except Exception:
            pass

    def warn(self, msg: str, *args: object) -> None:
        try:
            self._logger.warning(msg, *args)
        except Exception:
            pass

    def error(self, msg: str, *args: object) -> None:
        try:
            self._logger.error(msg, *args)
        except Exception:
            pass

    # ------------------------------------------------------------------
    # Hierarchy reads
    # ------------------------------------------------------------------

    def true_type(self, obj: object) -> type:
        try:
            return self._p.true_type(obj)
        except Exception:
            return object

    def parent_of(self, cls: type) -> Optional[type]:
        try:
            return self._p.read_base(cls)
        except Exception:
            return None

    def bases_of(self, cls: type) -> Tuple[type, ...]:
        try:
            return tuple(self._p.read_bases(cls))
        except Exception:
            return ()

    def mro_of(self, cls: type) -> Tuple[type, ...]:
        try:
            return tuple(self._p.read_mro(cls))
        except Exception:
            return ()

    def name_of(self, cls: type) -> str:
        try:
            return str(self._p.read_name(cls))
        except Exception:
            return "?"

    def namespace_of(self, cls: type) -> Mapping[str, object]:
        try:
            return self._p.read_namespace(cls)
        except Exception:
            return _EMPTY_NAMESPACE

    def is_class(self, obj: object) -> bool:
        # type.__subclasscheck__ reads the interpreter's own MRO, not __mro__.
        try:
            return bool(self._p.is_subclass(self.true_type(obj), type))
        except Exception:
            return False

    def is_ancestor(self, cls: type, candidate: type) -> bool:
        """Structural membership: ``candidate`` appears in the captured MRO of ``cls``."""

        if not self.is_class(cls):
            return False
        lineage = self.mro_of(cls)
        if not lineage:
            lineage = tuple(self.hierarchy_chain(cls)) + (object,)
        return any(klass is candidate for klass in lineage)

    def _walk_parents(self, start: type) -> Iterator[type]:
        current: Optional[type] = start
        steps = 0
        while current is not None and steps <= self.max_depth:
            yield current
            current = self.parent_of(current)
            steps += 1

    def hierarchy_chain(self, node: object, max_depth: Optional[int] = None) -> List[type]:
        """Return the ancestors of ``node`` (most derived first), excluding ``object``.

        ``node`` may be a class or an instance. The walk is bounded by
        ``max_depth`` and stops at the first repeated class; both conditions
        are logged and the chain truncated.
        """

        limit = self.max_depth if max_depth is None else max_depth
        chain: List[type] = []
        try:
            start = node if self.is_class(node) else self.true_type(node)
            lineage: Iterable[type] = self.mro_of(start) or self._walk_parents(start)  # type: ignore[arg-type]
            seen = set()
            for klass in lineage:
                if klass is object:
                    break
                if id(klass) in seen:
                    self.warn("Circular hierarchy detected at %s", self.name_of(klass))
                    break
                if len(chain) >= limit:
                    self.warn("Hierarchy chain exceeds max depth %d; truncating", limit)
                    break
                self.push(chain, klass)
                seen.add(id(klass))
        except Exception:
            self.warn("Hierarchy walk failed; truncating after %d entries", len(chain))
        return chain

    def lookup_static(self, cls: type, key: str, default: object = None) -> object:
        """Find ``key`` in the raw namespaces along the captured MRO of ``cls``."""

        for klass in self.mro_of(cls):
            namespace = self.namespace_of(klass)
            try:
                if key in namespace:
                    return namespace[key]
            except Exception:
                continue
        return default

    # ------------------------------------------------------------------
    # Own keys and entries
    # ------------------------------------------------------------------

    def own_dict(self, obj: object) -> Optional[dict]:
        """Return the instance ``__dict__`` of ``obj`` read through its native slot."""

        try:
            for klass in self.mro_of(self.true_type(obj)):
                slot = self.namespace_of(klass).get("__dict__")
                if slot is not None and self.true_type(slot) is self._p.getset_type:
                    mapping = slot.__get__(obj, klass)
                    return mapping if isinstance(mapping, dict) else None
        except Exception:
            return None
        return None

    def own_keys(self, node: object) -> List[str]:
        try:
            if self.is_class(node):
                source: Iterable[object] = list(self.namespace_of(node))  # type: ignore[arg-type]
            else:
                source = list(self.own_dict(node) or ())
            return [key for key in source if isinstance(key, str)]
        except Exception:
            return []

    def own_entry(self, node: object, key: str) -> object:
        """Return the raw own entry for ``key`` without triggering descriptors, or :data:`MISSING`."""

        try:
            if self.is_class(node):
                return self.namespace_of(node).get(key, MISSING)  # type: ignore[arg-type]
            mapping = self.own_dict(node)
            if mapping is None:
                return MISSING
            return mapping.get(key, MISSING)
        except Exception:
            return MISSING

    # ------------------------------------------------------------------
    # Property tables
    # ------------------------------------------------------------------

    def property_table(self, obj: object, create: bool = False) -> Optional[PropertyTable]:
        try:
            mapping = self.own_dict(obj)
            if mapping is None:
                return None
            table = mapping.get(PROPERTY_TABLE_KEY)
            if isinstance(table, PropertyTable):
                return table
            if not create:
                return None
            table = PropertyTable()
            mapping[PROPERTY_TABLE_KEY] = table
            return table
        except Exception:
            return None

    def get_property(self, obj: object, name: str) -> Optional[PropertyDescriptor]:
        table = self.property_table(obj)
        if table is None:
            return None
        try:
            return table.get(name)
        except Exception:
            return None

    def define_property(self, obj: object, name: str, descriptor: PropertyDescriptor) -> bool:
        table = self.property_table(obj, create=True)
        if table is None:
            return False
        try:
            return table.define(name, descriptor)
        except Exception:
            return False

    def freeze(self, obj: object) -> bool:
        table = self.property_table(obj, create=True)
        if table is None:
            return False
        table.frozen = True
        return True

    # ------------------------------------------------------------------
    # Class pointer
    # ------------------------------------------------------------------

    def set_class(self, obj: object, cls: type) -> bool:
        try:
            self._p.write_class(obj, cls)
            return True
        except Exception as exc:
            self.debug("Class reassignment to %s refused: %s", self.name_of(cls), exc)
            return False

    def host_type_of(self, instance: object) -> type:
        """The host class an instance was fused from, or its true class."""

        actual = self.true_type(instance)
        recorded = self.lookup_static(actual, HOST_TYPE_ATTR)
        if recorded is not None and self.is_class(recorded):
            return recorded  # type: ignore[return-value]
        return actual

    def user_type_of(self, instance: object) -> Optional[type]:
        recorded = self.lookup_static(self.true_type(instance), USER_TYPE_ATTR)
        if recorded is not None and self.is_class(recorded):
            return recorded  # type: ignore[return-value]
        return None

    # ------------------------------------------------------------------
    # Host-native membership
    # ------------------------------------------------------------------

    def create_disposable(self, host: type) -> Optional[object]:
        try:
            return self._p.disposable_factory(host)
        except Exception:
            return None

    def has(self, obj: object, key: str) -> bool:
        """Static membership test; never runs getters or ``__getattr__`` hooks."""

        try:
            return self._p.getattr_static(obj, key, MISSING) is not MISSING
        except Exception:
            return False

    def host_reference(self, instance: object) -> Optional[object]:
        """A disposable instance of the unfused host type of ``instance``."""

        return self.create_disposable(self.host_type_of(instance))

    def is_host_own_property(self, instance: object, key: str, reference: object = MISSING) -> bool:
        """Whether ``key`` belongs to the unfused host type of ``instance``.

        Pass a ``reference`` from :meth:`host_reference` to test many keys
        against one disposable instance; otherwise one is built per call.
        """

        if reference is MISSING:
            reference = self.host_reference(instance)
        if reference is None:
            return False
        return self.has(reference, key)

    # ------------------------------------------------------------------
    # Functions and sequences
    # ------------------------------------------------------------------

    def is_function(self, obj: object) -> bool:
        try:
            return bool(self._p.is_function(obj))
        except Exception:
            return False

    def bind(self, fn: Callable, receiver: object) -> Callable:
        try:
            return self._p.make_method(fn, receiver)
        except Exception:
            return _noop

    def call(self, fn: Callable, *args: object, default: object = None, **kwargs: object) -> object:
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            self.debug("Call to %r failed: %s", fn, exc)
            return default

    def push(self, seq: list, item: object) -> int:
        try:
            self._p.list_append(seq, item)
        except Exception:
            pass
        try:
            return len(seq)
        except Exception:
            return 0

    def reverse(self, seq: list) -> list:
        try:
            self._p.list_reverse(seq)
        except Exception:
            pass
        return seq

    def includes(self, seq: object, item: object) -> bool:
        try:
            return bool(self._p.contains(seq, item))
        except Exception:
            return False

    def for_each(self, seq: Iterable[object], callback: Callable[[object], object]) -> int:
        """Invoke ``callback`` for each item; failing items are logged and skipped."""

        completed = 0
        try:
            items = list(seq)
        except Exception:
            return 0
        for item in items:
            try:
                callback(item)
            except Exception as exc:
                self.debug("Callback failed for %r: %s", item, exc)
                continue
            completed += 1
        return completed


__all__ = [
    "HOST_TYPE_ATTR",
    "MISSING",
    "PRIMITIVES",
    "USER_TYPE_ATTR",
    "Kernel",
    "Primitives",
    "instantiate_disposable",
]
