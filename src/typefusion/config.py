"""Configuration for the fusion engine: strictness policies and their registry."""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple, Union

from .errors import FusionUsageError, InvalidPolicyError

MAX_HIERARCHY_DEPTH = 50


class StrictnessPolicy(str, Enum):
    """How conflicting definitions across hierarchy levels are resolved."""

    FLEXIBLE = "flexible"
    STRICT = "strict"
    STRICTEST = "strictest"

    @classmethod
    def coerce(cls, value: Union["StrictnessPolicy", str]) -> "StrictnessPolicy":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        choices = ", ".join(member.value for member in cls)
        raise InvalidPolicyError(f"Unknown strictness policy {value!r}; expected one of: {choices}")


@dataclass(frozen=True)
class FusionConfig:
    """Engine-wide settings consulted at merge time."""

    policy: StrictnessPolicy = StrictnessPolicy.FLEXIBLE
    debug: bool = False
    max_depth: int = MAX_HIERARCHY_DEPTH

    def __post_init__(self) -> None:
        object.__setattr__(self, "policy", StrictnessPolicy.coerce(self.policy))
        if not isinstance(self.debug, bool):
            raise FusionUsageError("debug must be a boolean")
        if isinstance(self.max_depth, bool) or not isinstance(self.max_depth, int):
            raise FusionUsageError("max_depth must be an integer")
        if self.max_depth <= 0:
            raise FusionUsageError("max_depth must be positive")


def coerce_config(value: Union[FusionConfig, Mapping[str, object], None]) -> FusionConfig:
    """Turn what :class:`FusionEngine` and :meth:`PolicyRegistry.replace` accept into a config.

    ``None`` means all defaults. A mapping overrides only the fields it
    names, so ``FusionEngine({"policy": "strict"})`` keeps the default
    ``max_depth`` and ``debug``. Keys that are not config fields are ignored,
    so a caller can pass a broader options dictionary through unchanged.
    Values still go through :class:`FusionConfig` validation.
    """

    if value is None:
        return FusionConfig()
    if isinstance(value, FusionConfig):
        return value
    if isinstance(value, Mapping):
        names = {field.name for field in dataclasses.fields(FusionConfig) if field.init}
        return dataclasses.replace(
            FusionConfig(),
            **{key: val for key, val in value.items() if key in names},
        )
    raise FusionUsageError(f"Expected FusionConfig or a mapping of its fields, got {type(value)!r}")


class PolicyRegistry:
    """Holds the global configuration plus per-type policy overrides.

    Per-type overrides apply to the configured class and its subclasses; the
    nearest configured ancestor in the user type's MRO wins.
    """

    def __init__(self, config: Optional[FusionConfig] = None) -> None:
        self._lock = threading.RLock()
        self._config = config if config is not None else FusionConfig()
        # Keyed by identity; the class is kept alongside so the id stays valid.
        self._per_type: Dict[int, Tuple[type, StrictnessPolicy]] = {}

    @property
    def config(self) -> FusionConfig:
        with self._lock:
            return self._config

    def update(
        self,
        policy: Union[StrictnessPolicy, str, None] = None,
        per_type: Optional[type] = None,
        *,
        debug: Optional[bool] = None,
    ) -> FusionConfig:
        if per_type is not None and not isinstance(per_type, type):
            raise FusionUsageError(f"per_type must be a class, got {per_type!r}")
        resolved = StrictnessPolicy.coerce(policy) if policy is not None else None
        with self._lock:
            changes: Dict[str, object] = {}
            if debug is not None:
                changes["debug"] = debug
            if resolved is not None:
                if per_type is not None:
                    self._per_type[id(per_type)] = (per_type, resolved)
                else:
                    changes["policy"] = resolved
            if changes:
                self._config = dataclasses.replace(self._config, **changes)
            return self._config

    def replace(self, config: Union[FusionConfig, Mapping[str, object]]) -> FusionConfig:
        coerced = coerce_config(config)
        with self._lock:
            self._config = coerced
            return coerced

    def clear_overrides(self) -> None:
        with self._lock:
            self._per_type.clear()

    def override_for(self, user_type: type) -> Optional[StrictnessPolicy]:
        with self._lock:
            entry = self._per_type.get(id(user_type))
        if entry is None or entry[0] is not user_type:
            return None
        return entry[1]

    def policy_for(self, lineage: Iterable[type]) -> StrictnessPolicy:
        """Resolve the policy for the first class of ``lineage`` (its MRO)."""

        with self._lock:
            overrides = dict(self._per_type)
            default = self._config.policy
        for klass in lineage:
            entry = overrides.get(id(klass))
            if entry is not None and entry[0] is klass:
                return entry[1]
        return default


__all__ = [
    "MAX_HIERARCHY_DEPTH",
    "FusionConfig",
    "PolicyRegistry",
    "StrictnessPolicy",
    "coerce_config",
]
