"""Descriptor merge engine.

Pass one walks the user hierarchy from its most basal class to the most
derived one (the reverse of normal lookup order) and folds every own
namespace entry into a :class:`~typefusion.descriptors.PropertyRecord`
according to the active :class:`~typefusion.config.StrictnessPolicy`:

============================  ============  ======================  ======================
conflict                      flexible      strict                  strictest
============================  ============  ======================  ======================
redefine a locked data attr   leaf wins     leaf value, writable    rejected, parent kept
                                            is AND of all levels,
                                            lock propagates
getter-only parent,           getter lost   parent getter kept      same, unless locked
setter-only child
host-native name              skipped       skipped                 skipped
data/accessor kind change     silent        allowed, logged         rejected when locked
============================  ============  ======================  ======================

Pass two commits each record into the instance's property table with
``configurable = not lockable``. Individual failures are logged and skipped;
neither pass raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AbstractSet, Dict, FrozenSet, List, Optional

from .config import StrictnessPolicy
from .descriptors import (
    PROPERTY_TABLE_KEY,
    PropertyKind,
    PropertyRecord,
    SourceDescriptor,
    classify,
)
from .kernel import MISSING, Kernel


@dataclass
class MergeReport:
    """What the two passes did for one instance."""

    policy: StrictnessPolicy
    applied: List[str] = field(default_factory=list)
    skipped_native: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def is_reserved_name(name: str, internal: AbstractSet[str] = frozenset()) -> bool:
    if name.startswith("__") and name.endswith("__"):
        return True
    return name == PROPERTY_TABLE_KEY or name in internal


class DescriptorMerger:
    """Two-pass merge of a user hierarchy's namespace onto a fused instance."""

    def __init__(
        self,
        kernel: Kernel,
        internal_names: FrozenSet[str] = frozenset(),
        skip_types: FrozenSet[type] = frozenset(),
    ) -> None:
        self._kernel = kernel
        self._internal = internal_names
        self._skip_types = skip_types

    # ------------------------------------------------------------------
    # Pass one
    # ------------------------------------------------------------------

    def collect(
        self,
        instance: object,
        user_type: type,
        policy: StrictnessPolicy,
        report: Optional[MergeReport] = None,
        debug: bool = False,
        max_depth: Optional[int] = None,
    ) -> Dict[str, PropertyRecord]:
        kernel = self._kernel
        report = report if report is not None else MergeReport(policy)
        records: Dict[str, PropertyRecord] = {}
        native: Dict[str, bool] = {}
        # One disposable host instance per pass, built on first need.
        reference: object = MISSING

        levels = kernel.reverse(kernel.hierarchy_chain(user_type, max_depth))
        for level in levels:
            if any(level is skipped for skipped in self._skip_types):
                continue
            for name in kernel.own_keys(level):
                if is_reserved_name(name, self._internal):
                    continue
                raw = kernel.own_entry(level, name)
                if raw is MISSING:
                    continue
                if name not in native:
                    if reference is MISSING:
                        reference = kernel.host_reference(instance)
                    native[name] = kernel.is_host_own_property(instance, name, reference)
                if native[name]:
                    if not kernel.includes(report.skipped_native, name):
                        kernel.push(report.skipped_native, name)
                    if debug:
                        kernel.debug("Skipping host-native attribute %s", name)
                    continue
                source = kernel.call(classify, raw, level, name)
                if not isinstance(source, SourceDescriptor):
                    self._diagnose(report, "Unreadable definition of %s on %s", name, level)
                    continue
                merged = self._merge_one(instance, name, level, source, records.get(name), policy, report)
                if merged is not None:
                    records[name] = merged
        return records

    def _merge_one(
        self,
        instance: object,
        name: str,
        level: type,
        source: SourceDescriptor,
        existing: Optional[PropertyRecord],
        policy: StrictnessPolicy,
        report: MergeReport,
    ) -> Optional[PropertyRecord]:
        kernel = self._kernel
        if policy is StrictnessPolicy.STRICTEST and existing is not None and existing.lockable:
            self._reject(report, "Cannot override non-configurable inherited attribute %s (on %s)", name, level)
            return None

        if existing is not None and policy is not StrictnessPolicy.FLEXIBLE and existing.kind is not source.kind:
            direction = "data to accessor" if existing.kind is PropertyKind.DATA else "accessor to data"
            self._diagnose(report, "Converting %s from " + direction + " (on %s)", name, level)

        if policy is StrictnessPolicy.FLEXIBLE:
            lockable = not source.configurable
            writable = source.writable
        else:
            lockable = (not source.configurable) or (existing.lockable if existing is not None else False)
            writable = source.writable
            if source.is_data and existing is not None and existing.kind is PropertyKind.DATA:
                writable = writable and existing.writable
        enumerable = source.enumerable

        if source.is_data:
            value = source.value
            if source.bindable and kernel.is_function(value):
                value = kernel.bind(value, instance)
            return PropertyRecord(
                name=name,
                kind=PropertyKind.DATA,
                value=value,
                writable=writable,
                enumerable=enumerable,
                lockable=lockable,
                origin=level,
            )

        getter = kernel.bind(source.getter, instance) if source.getter is not None else None
        setter = kernel.bind(source.setter, instance) if source.setter is not None else None
        if (
            policy is not StrictnessPolicy.FLEXIBLE
            and existing is not None
            and existing.kind is PropertyKind.ACCESSOR
        ):
            getter = getter if getter is not None else existing.getter
            setter = setter if setter is not None else existing.setter
        return PropertyRecord(
            name=name,
            kind=PropertyKind.ACCESSOR,
            getter=getter,
            setter=setter,
            writable=True,
            enumerable=enumerable,
            lockable=lockable,
            origin=level,
        )

    def _reject(self, report: MergeReport, msg: str, name: str, level: type) -> None:
        self._kernel.warn(msg, name, self._kernel.name_of(level))
        self._kernel.push(report.rejected, name)
        self._kernel.push(report.diagnostics, msg % (name, self._kernel.name_of(level)))

    def _diagnose(self, report: MergeReport, msg: str, name: str, level: type) -> None:
        self._kernel.info(msg, name, self._kernel.name_of(level))
        self._kernel.push(report.diagnostics, msg % (name, self._kernel.name_of(level)))

    # ------------------------------------------------------------------
    # Pass two
    # ------------------------------------------------------------------

    def commit(
        self,
        instance: object,
        records: Dict[str, PropertyRecord],
        report: MergeReport,
        debug: bool = False,
    ) -> MergeReport:
        kernel = self._kernel

        def apply(record: PropertyRecord) -> None:
            if kernel.define_property(instance, record.name, record.to_descriptor()):
                kernel.push(report.applied, record.name)
                if debug:
                    kernel.debug(
                        "Copied %s (%s, %s)",
                        record.name,
                        record.kind.value,
                        "locked" if record.lockable else "configurable",
                    )
                return
            kernel.warn("Failed to define %s property %s", record.kind.value, record.name)
            kernel.push(report.failed, record.name)

        kernel.for_each(records.values(), apply)
        return report

    def merge(
        self,
        instance: object,
        user_type: type,
        policy: StrictnessPolicy,
        debug: bool = False,
        max_depth: Optional[int] = None,
    ) -> MergeReport:
        report = MergeReport(policy)
        try:
            records = self.collect(instance, user_type, policy, report, debug=debug, max_depth=max_depth)
            self.commit(instance, records, report, debug=debug)
        except Exception as exc:  # pragma: no cover - defensive logging
            self._kernel.warn("Attribute merge aborted; methods could not be copied: %s", exc)
            self._kernel.push(report.diagnostics, f"merge aborted: {exc}")
        return report


__all__ = ["DescriptorMerger", "MergeReport", "is_reserved_name"]
