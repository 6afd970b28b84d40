from __future__ import annotations

import logging
import threading
from typing import Optional

import pytest

from tests.hierarchy_fixtures import A, B, Basket, Box, C, Crate
from typefusion import FusionEngine, FusionUsageError, Fusible, extend
from typefusion.bridge import PARTIAL_ATTR
from typefusion.cache import BridgeCache, PairKey


class Gadget(Fusible):
    def label(self) -> str:
        return "gadget"


class HostMeta(type):
    pass


class UserMeta(type):
    pass


class MetaHost(metaclass=HostMeta):
    def __init__(self) -> None:
        self.ready = True


class MetaUser(Fusible, metaclass=UserMeta):
    def ping(self) -> str:
        return "pong"


class SlottedHost:
    __slots__ = ("volume",)

    def __init__(self) -> None:
        self.volume = 2


class Member(Fusible):
    pass


class Parcel:
    def __init__(self) -> None:
        self.weight = 5


class Toolkit(Fusible):
    def one(self) -> int:
        return 1

    def two(self) -> int:
        return 2

    def three(self) -> int:
        return 3

    def four(self) -> int:
        return 4

    def five(self) -> int:
        return 5


class CountingHost:
    constructions = 0

    def __init__(self) -> None:
        CountingHost.constructions += 1
        self.volume = 1


class SelfFusingHost:
    engine: Optional[FusionEngine] = None
    constructions = 0

    def __init__(self) -> None:
        SelfFusingHost.constructions += 1
        self.ready = True
        if SelfFusingHost.engine is not None:
            SelfFusingHost.engine.fuse(self, Toolkit)


class PlainWidget:
    def render(self) -> str:
        return f"widget:{self.volume}"  # type: ignore[attr-defined]


def test_fused_instance_is_member_of_both_hierarchies(engine: FusionEngine) -> None:
    box = Crate(4)
    result = engine.fuse_detailed(box, C)

    assert result.fully_fused
    for cls in (C, B, A, Fusible, Crate, Box, object):
        assert isinstance(box, cls)
    assert type(box) is result.bridge
    assert box.volume == 4
    assert box.capacity() == 40


def test_plain_fusible_subclass_fully_fuses_with_plain_host(engine: FusionEngine) -> None:
    parcel = Parcel()
    outcome = engine.fuse_detailed(parcel, Member).outcome

    assert outcome.redirected
    assert outcome.fully_fused
    assert isinstance(parcel, Member) and isinstance(parcel, Parcel)
    assert parcel.weight == 5


def test_fuse_returns_the_same_object(engine: FusionEngine) -> None:
    box = Box()
    assert engine.fuse(box, C) is box


def test_bridge_mro_places_user_chain_before_host_chain(engine: FusionEngine) -> None:
    bridge = engine.bridge_for(C, Box)
    assert bridge.__mro__ == (bridge, C, B, A, Fusible, Box, object)
    assert bridge.__name__ == "C[Box]"


def test_one_bridge_per_pair(engine: FusionEngine) -> None:
    first, second = Box(1), Box(2)
    engine.fuse(first, C)
    engine.fuse(second, C)

    assert type(first) is type(second)
    assert engine.cache.creations == 1
    assert engine.cache.hits == 1


def test_distinct_hosts_get_distinct_bridges(engine: FusionEngine) -> None:
    box, basket = Box(), Basket()
    engine.fuse(box, C)
    engine.fuse(basket, C)

    assert type(box) is not type(basket)
    assert isinstance(basket, C) and isinstance(basket, Basket)
    assert not isinstance(basket, Box)
    assert not isinstance(box, Basket)
    assert engine.cache.creations == 2


def test_unfused_user_instance_is_not_a_host(engine: FusionEngine) -> None:
    engine.fuse(Box(), C)
    plain = C()
    assert isinstance(plain, C)
    assert not isinstance(plain, Box)
    assert not engine.is_fused(plain)


def test_host_hierarchies_are_not_mutated(engine: FusionEngine) -> None:
    before_user, before_host = C.__mro__, Box.__mro__
    engine.fuse(Box(), C)
    assert C.__mro__ == before_user
    assert Box.__mro__ == before_host
    assert not isinstance(Box(), C)


def test_introspection_reports_recorded_types(engine: FusionEngine) -> None:
    box = Box()
    assert engine.user_type_of(box) is None
    assert engine.host_type_of(box) is Box
    engine.fuse(box, C)
    assert engine.is_fused(box)
    assert engine.user_type_of(box) is C
    assert engine.host_type_of(box) is Box


def test_refusion_keeps_the_original_host(engine: FusionEngine) -> None:
    box = Box()
    engine.fuse(box, C)
    engine.fuse(box, Gadget)

    assert isinstance(box, Gadget) and isinstance(box, Box)
    assert not isinstance(box, C)
    assert engine.host_type_of(box) is Box
    assert box.label() == "gadget"


def test_refusing_with_the_same_type_is_idempotent(engine: FusionEngine) -> None:
    box = Box()
    engine.fuse(box, C)
    bridge = type(box)
    result = engine.fuse_detailed(box, C)
    assert type(box) is bridge
    assert result.fully_fused
    assert not result.outcome.created


def test_user_type_without_root_is_given_one(engine: FusionEngine) -> None:
    widget_box = Box(7)
    engine.fuse(widget_box, PlainWidget)
    assert isinstance(widget_box, Fusible)
    assert isinstance(widget_box, PlainWidget)
    assert widget_box.render() == "widget:7"


def test_metaclass_conflict_degrades_to_user_membership(
    engine: FusionEngine, caplog: pytest.LogCaptureFixture
) -> None:
    host = MetaHost()
    with caplog.at_level(logging.WARNING, logger="typefusion"):
        result = engine.fuse_detailed(host, MetaUser)

    assert result.outcome.redirected
    assert result.outcome.partial
    assert not result.fully_fused
    assert isinstance(host, MetaUser)
    assert not isinstance(host, MetaHost)
    assert engine.host_type_of(host) is MetaHost
    assert getattr(type(host), PARTIAL_ATTR) is True
    assert host.ping() == "pong"
    assert host.ready is True
    assert "falling back" in caplog.text
    assert engine.cache.creations == 1
    assert len(engine.cache) == 2


def test_layout_mismatch_leaves_instance_untouched(
    engine: FusionEngine, caplog: pytest.LogCaptureFixture
) -> None:
    host = SlottedHost()
    with caplog.at_level(logging.WARNING, logger="typefusion"):
        result = engine.fuse_detailed(host, C)

    assert not result.outcome.redirected
    assert result.bridge is None
    assert type(host) is SlottedHost
    assert host.volume == 2
    assert "left unfused" in caplog.text
    assert result.report.applied == []


def test_builtin_instances_cannot_be_redirected(engine: FusionEngine) -> None:
    number = 12
    result = engine.fuse_detailed(number, C)
    assert not result.outcome.redirected
    assert type(number) is int


def test_usage_errors_are_raised_at_the_boundary(engine: FusionEngine) -> None:
    with pytest.raises(FusionUsageError):
        engine.fuse(Box(), "C")  # type: ignore[arg-type]
    with pytest.raises(FusionUsageError):
        engine.fuse(None, C)
    with pytest.raises(FusionUsageError):
        engine.fuse(Box, C)
    with pytest.raises(TypeError):
        engine.bridge_for(C, 3)  # type: ignore[arg-type]


def test_concurrent_fusion_creates_one_bridge(engine: FusionEngine) -> None:
    boxes = [Box(index) for index in range(16)]
    barrier = threading.Barrier(len(boxes))

    def worker(box: Box) -> None:
        barrier.wait()
        engine.fuse(box, C)

    threads = [threading.Thread(target=worker, args=(box,)) for box in boxes]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert engine.cache.creations == 1
    assert len({type(box) for box in boxes}) == 1
    assert [box.volume for box in boxes] == list(range(16))


def test_debug_mode_logs_created_chain(caplog: pytest.LogCaptureFixture) -> None:
    engine = FusionEngine({"debug": True})
    with caplog.at_level(logging.DEBUG, logger="typefusion"):
        engine.fuse(Box(), C)
    assert "Created bridge C[Box]: C[Box] -> C -> B -> A -> Fusible -> Box" in caplog.text
    assert "Copied color" in caplog.text


def test_engines_do_not_share_caches() -> None:
    first, second = FusionEngine(), FusionEngine()
    assert first.bridge_for(C, Box) is not second.bridge_for(C, Box)


def test_extend_and_classmethod_fuse_use_the_default_engine() -> None:
    Widget = extend(PlainWidget)
    assert issubclass(Widget, Fusible) and issubclass(Widget, PlainWidget)
    assert extend(Widget) is Widget
    box = Widget.fuse(Box(3))
    assert isinstance(box, Widget) and isinstance(box, Box)
    assert box.render() == "widget:3"


def test_extend_rejects_non_classes() -> None:
    with pytest.raises(FusionUsageError):
        extend(5)  # type: ignore[arg-type]


def test_bridge_cache_counts_creations_and_hits() -> None:
    cache = BridgeCache()
    calls: list = []

    def factory() -> type:
        calls.append(1)
        return type("Made", (), {})

    key = PairKey.of(C, Box)
    made, created = cache.get_or_create(key, factory)
    again, created_again = cache.get_or_create(key, factory)

    assert created and not created_again
    assert made is again
    assert len(calls) == 1
    assert key in cache and len(cache) == 1
    assert cache.stats().creations == 1 and cache.stats().hits == 1
    assert PairKey.of(C, Box, partial=True) not in cache


def test_unsubclassable_user_type_is_a_usage_error(engine: FusionEngine) -> None:
    with pytest.raises(FusionUsageError, match="Cannot derive a bridge from bool"):
        engine.fuse(Box(), bool)


def test_bridge_cache_counts_an_aliased_bridge_once() -> None:
    cache = BridgeCache()
    made, _ = cache.get_or_create(PairKey.of(C, Box, partial=True), lambda: type("Made", (), {}))
    aliased, created = cache.get_or_create(PairKey.of(C, Box), lambda: made)

    assert created and aliased is made
    assert cache.creations == 1
    assert cache.stats().entries == 2


def test_host_is_constructed_once_per_fuse(engine: FusionEngine) -> None:
    host = CountingHost()
    CountingHost.constructions = 0
    engine.fuse(host, Toolkit)

    assert CountingHost.constructions == 1
    assert host.five() == 5
    assert host.volume == 1


def test_host_that_fuses_itself_in_init_terminates(
    engine: FusionEngine, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(SelfFusingHost, "engine", engine)
    monkeypatch.setattr(SelfFusingHost, "constructions", 0)

    host = SelfFusingHost()

    assert SelfFusingHost.constructions == 2
    assert isinstance(host, Toolkit) and isinstance(host, SelfFusingHost)
    assert host.ready is True
    assert host.one() + host.five() == 6
    assert engine.cache.creations == 1
