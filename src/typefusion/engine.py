"""Wiring of the kernel, identity fusion and descriptor merge into one engine."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, TypeVar, Union

from .bridge import FusionOutcome, IdentityFusion
from .cache import BridgeCache
from .config import FusionConfig, PolicyRegistry, StrictnessPolicy, coerce_config
from .descriptors import PropertyDescriptor
from .errors import require
from .kernel import Kernel
from .merge import DescriptorMerger, MergeReport
from .root import ROOT_INTERNAL_NAMES, Fusible

T = TypeVar("T")


@dataclass(frozen=True)
class FusionResult:
    """Everything one :meth:`FusionEngine.fuse_detailed` call did."""

    instance: object
    outcome: FusionOutcome
    report: MergeReport

    @property
    def bridge(self) -> Optional[type]:
        return self.outcome.bridge

    @property
    def fully_fused(self) -> bool:
        return self.outcome.fully_fused


class FusionEngine:
    """Owns one bridge cache, one policy registry and one kernel.

    Bridges live as long as the engine; the module-level functions share a
    process-wide default engine.
    """

    def __init__(
        self,
        config: Union[FusionConfig, Mapping[str, object], None] = None,
        *,
        kernel: Optional[Kernel] = None,
    ) -> None:
        resolved = coerce_config(config)
        self._kernel = kernel if kernel is not None else Kernel(max_depth=resolved.max_depth)
        self._policies = PolicyRegistry(resolved)
        self._cache = BridgeCache()
        self._identity = IdentityFusion(self._kernel, Fusible, self._cache)
        self._merger = DescriptorMerger(self._kernel, ROOT_INTERNAL_NAMES, frozenset({Fusible}))

    @property
    def kernel(self) -> Kernel:
        return self._kernel

    @property
    def cache(self) -> BridgeCache:
        return self._cache

    @property
    def config(self) -> FusionConfig:
        return self._policies.config

    def configure(
        self,
        policy: Union[StrictnessPolicy, str, None] = None,
        per_type: Optional[type] = None,
        *,
        debug: Optional[bool] = None,
    ) -> FusionConfig:
        """Set the strictness policy globally, or for ``per_type`` and its subclasses."""

        return self._policies.update(policy, per_type, debug=debug)

    def reset_policies(self) -> None:
        self._policies.replace(FusionConfig(max_depth=self.config.max_depth))
        self._policies.clear_overrides()

    def policy_for(self, user_type: type) -> StrictnessPolicy:
        return self._policies.policy_for(self._kernel.mro_of(user_type))

    def _validate(self, instance: object, user_type: object) -> None:
        kernel = self._kernel
        require(kernel.is_class(user_type), f"user type must be a class, got {user_type!r}")
        require(instance is not None, "cannot fuse None")
        require(not kernel.is_class(instance), f"expected an instance to fuse, got class {instance!r}")

    def fuse_detailed(self, instance: object, user_type: type) -> FusionResult:
        self._validate(instance, user_type)
        config = self.config
        policy = self.policy_for(user_type)
        outcome = self._identity.fuse(instance, user_type, debug=config.debug)
        if not outcome.redirected:
            report = MergeReport(policy)
            report.diagnostics.append("instance not redirected; attributes not merged")
            return FusionResult(instance, outcome, report)
        report = self._merger.merge(
            instance,
            user_type,
            policy,
            debug=config.debug,
            max_depth=config.max_depth,
        )
        return FusionResult(instance, outcome, report)

    def fuse(self, instance: T, user_type: type) -> T:
        """Fuse ``instance`` with ``user_type`` in place and return the same object."""

        return self.fuse_detailed(instance, user_type).instance  # type: ignore[return-value]

    def merge(
        self,
        instance: object,
        user_type: type,
        policy: Union[StrictnessPolicy, str, None] = None,
    ) -> MergeReport:
        """Run both merge passes again without touching the class pointer."""

        self._validate(instance, user_type)
        resolved = StrictnessPolicy.coerce(policy) if policy is not None else self.policy_for(user_type)
        return self._merger.merge(instance, user_type, resolved, max_depth=self.config.max_depth)

    def bridge_for(self, user_type: type, host_type: type) -> type:
        require(self._kernel.is_class(user_type), f"user type must be a class, got {user_type!r}")
        require(self._kernel.is_class(host_type), f"host type must be a class, got {host_type!r}")
        bridge, _ = self._identity.bridge_for(user_type, host_type)
        return bridge

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def is_fused(self, obj: object) -> bool:
        return self._kernel.user_type_of(obj) is not None

    def user_type_of(self, obj: object) -> Optional[type]:
        return self._kernel.user_type_of(obj)

    def host_type_of(self, obj: object) -> type:
        return self._kernel.host_type_of(obj)

    def own_properties(self, obj: object) -> Dict[str, PropertyDescriptor]:
        table = self._kernel.property_table(obj)
        if table is None:
            return {}
        return dict(table.items())

    def freeze(self, obj: object) -> bool:
        """Refuse further definitions and data writes on ``obj``'s property table."""

        return self._kernel.freeze(obj)


_DEFAULT_ENGINE: Optional[FusionEngine] = None
_DEFAULT_LOCK = threading.Lock()


def default_engine() -> FusionEngine:
    global _DEFAULT_ENGINE
    with _DEFAULT_LOCK:
        if _DEFAULT_ENGINE is None:
            _DEFAULT_ENGINE = FusionEngine()
        return _DEFAULT_ENGINE


def fuse(instance: T, user_type: type) -> T:
    """Fuse ``instance`` with ``user_type`` using the default engine."""

    return default_engine().fuse(instance, user_type)


def configure(
    policy: Union[StrictnessPolicy, str, None] = None,
    per_type: Optional[type] = None,
    *,
    debug: Optional[bool] = None,
) -> FusionConfig:
    return default_engine().configure(policy, per_type, debug=debug)


def is_fused(obj: object) -> bool:
    return default_engine().is_fused(obj)


def user_type_of(obj: object) -> Optional[type]:
    return default_engine().user_type_of(obj)


def host_type_of(obj: object) -> type:
    return default_engine().host_type_of(obj)


def own_properties(obj: object) -> Dict[str, PropertyDescriptor]:
    return default_engine().own_properties(obj)


__all__ = [
    "FusionEngine",
    "FusionResult",
    "configure",
    "default_engine",
    "fuse",
    "host_type_of",
    "is_fused",
    "own_properties",
    "user_type_of",
]
