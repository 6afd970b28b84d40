"""Fuse user-defined class hierarchies onto host objects.

``fuse(instance, UserType)`` redirects ``instance`` through a cached bridge
class so it is simultaneously an instance of ``UserType`` (and its
ancestors) and of its original host class (and its ancestors), then merges
every attribute declared across the user hierarchy onto the instance under
the configured :class:`StrictnessPolicy`.
"""

from __future__ import annotations

from .config import FusionConfig, StrictnessPolicy
from .descriptors import (
    Declared,
    PropertyDescriptor,
    PropertyKind,
    accessor,
    declare,
    locked,
    readonly,
)
from .engine import (
    FusionEngine,
    FusionResult,
    configure,
    default_engine,
    fuse,
    host_type_of,
    is_fused,
    own_properties,
    user_type_of,
)
from .errors import FusionError, FusionUsageError, InvalidPolicyError
from .merge import MergeReport
from .root import Fusible, extend

__version__ = "0.1.0"

__all__ = [
    "Declared",
    "Fusible",
    "FusionConfig",
    "FusionEngine",
    "FusionError",
    "FusionResult",
    "FusionUsageError",
    "InvalidPolicyError",
    "MergeReport",
    "PropertyDescriptor",
    "PropertyKind",
    "StrictnessPolicy",
    "accessor",
    "configure",
    "declare",
    "default_engine",
    "extend",
    "fuse",
    "host_type_of",
    "is_fused",
    "locked",
    "own_properties",
    "readonly",
    "user_type_of",
]
