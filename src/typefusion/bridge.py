"""Identity fusion: bridge classes that join a user hierarchy to a host hierarchy.

A bridge is composed, never spliced. For a user type ``T`` and a host type
``H`` the bridge is a fresh class with ``T`` and ``H`` as bases, so its MRO
reads::

    Bridge -> T -> ...T's ancestors... -> Fusible -> H -> ...H's ancestors... -> object

Neither hierarchy is mutated; the only new state is the bridge itself, which
is cached per pair and shared by every instance of that pair.
"""

from __future__ import annotations

import types
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .cache import BridgeCache, PairKey
from .errors import FusionUsageError
from .kernel import HOST_TYPE_ATTR, USER_TYPE_ATTR, Kernel

PARTIAL_ATTR = "__fusion_partial__"


@dataclass(frozen=True)
class FusionOutcome:
    """Result of redirecting one instance's class pointer."""

    bridge: Optional[type]
    user_type: type
    host_type: type
    redirected: bool
    partial: bool
    created: bool

    @property
    def fully_fused(self) -> bool:
        return self.redirected and not self.partial


class IdentityFusion:
    """Builds, caches and applies bridge classes for (user, host) pairs."""

    def __init__(self, kernel: Kernel, root: type, cache: BridgeCache) -> None:
        self._kernel = kernel
        self._root = root
        self._cache = cache

    @property
    def cache(self) -> BridgeCache:
        return self._cache

    def resolve_host(self, instance: object) -> type:
        """Host type of ``instance``; a recorded host wins so re-fusion keeps the original."""

        return self._kernel.host_type_of(instance)

    def compose_bases(self, user_type: type, host_type: Optional[type]) -> Tuple[type, ...]:
        kernel = self._kernel
        needs_root = not kernel.is_ancestor(user_type, self._root)
        if host_type is None or host_type is object or kernel.is_ancestor(user_type, host_type):
            bases: Tuple[type, ...] = (user_type,)
            return bases + (self._root,) if needs_root else bases
        if kernel.is_ancestor(host_type, user_type):
            bases = (host_type,)
            return bases + (self._root,) if needs_root else bases
        if needs_root:
            return (user_type, self._root, host_type)
        return (user_type, host_type)

    def _build(self, user_type: type, host_type: type, partial: bool) -> type:
        kernel = self._kernel
        user_name = kernel.name_of(user_type)
        host_name = kernel.name_of(host_type)
        name = f"{user_name}[{'~' if partial else ''}{host_name}]"
        namespace: Dict[str, object] = {
            HOST_TYPE_ATTR: host_type,
            USER_TYPE_ATTR: user_type,
            PARTIAL_ATTR: partial,
            "__qualname__": name,
            "__module__": kernel.lookup_static(user_type, "__module__", __name__),
            "__doc__": f"Fusion of {user_name} with {host_name}.",
        }
        bases = self.compose_bases(user_type, None if partial else host_type)
        return types.new_class(name, bases, exec_body=lambda ns: ns.update(namespace))

    def partial_bridge_for(self, user_type: type, host_type: type) -> type:
        """Bridge carrying user-type membership only, still recording ``host_type``."""

        def build() -> type:
            try:
                return self._build(user_type, host_type, partial=True)
            except Exception as exc:
                raise FusionUsageError(
                    f"Cannot derive a bridge from {self._kernel.name_of(user_type)}: {exc}"
                ) from exc

        bridge, _ = self._cache.get_or_create(PairKey.of(user_type, host_type, partial=True), build)
        return bridge

    def bridge_for(self, user_type: type, host_type: type) -> Tuple[type, bool]:
        """Return ``(bridge, created)`` for the pair, composing it on first use."""

        def build() -> type:
            try:
                return self._build(user_type, host_type, partial=False)
            except Exception as exc:
                self._kernel.warn(
                    "Cannot compose %s with host %s (%s); falling back to user-type membership",
                    self._kernel.name_of(user_type),
                    self._kernel.name_of(host_type),
                    exc,
                )
            return self.partial_bridge_for(user_type, host_type)

        return self._cache.get_or_create(PairKey.of(user_type, host_type), build)

    def is_partial(self, bridge: type) -> bool:
        return self._kernel.lookup_static(bridge, PARTIAL_ATTR, False) is True

    def fuse(self, instance: object, user_type: type, debug: bool = False) -> FusionOutcome:
        kernel = self._kernel
        host_type = self.resolve_host(instance)
        bridge, created = self.bridge_for(user_type, host_type)
        partial = self.is_partial(bridge)
        if created and debug:
            chain = kernel.hierarchy_chain(bridge)
            kernel.info(
                "Created bridge %s: %s",
                kernel.name_of(bridge),
                " -> ".join(kernel.name_of(klass) for klass in chain),
            )

        redirected = kernel.true_type(instance) is bridge or kernel.set_class(instance, bridge)
        if not redirected and not partial:
            kernel.warn(
                "Could not redirect %s instance to %s; keeping user-type membership only",
                kernel.name_of(host_type),
                kernel.name_of(bridge),
            )
            fallback = self.partial_bridge_for(user_type, host_type)
            if kernel.set_class(instance, fallback):
                bridge, partial, redirected = fallback, True, True
        if not redirected:
            kernel.warn(
                "%s instance left unfused; %s membership unavailable",
                kernel.name_of(host_type),
                kernel.name_of(user_type),
            )
            return FusionOutcome(None, user_type, host_type, False, partial, created)
        return FusionOutcome(bridge, user_type, host_type, True, partial, created)

    def is_member(self, instance: object, cls: type) -> bool:
        """Structural membership through the instance's true class."""

        return self._kernel.is_ancestor(self._kernel.true_type(instance), cls)


__all__ = ["PARTIAL_ATTR", "FusionOutcome", "IdentityFusion"]
