from __future__ import annotations

import pytest

from ragedit.errors import QuotaExceededError
from ragedit.streams import SettingsPlanProvider, StreamRegistry

LIMITS = {"free": 1, "silver": 3, "gold": 8, "suspended": 0}


def _registry(**assignments: str) -> StreamRegistry:
    return StreamRegistry(SettingsPlanProvider(LIMITS, default_plan="free", assignments=assignments))


def test_plan_provider_maps_tiers_to_limits():
    plans = SettingsPlanProvider(LIMITS, assignments={"ada": "gold"})
    assert plans.concurrency_limit("ada") == 8
    assert plans.concurrency_limit("anyone") == 1
    assert plans.plan_for("nobody") == "free"
    assert plans.can_start_stream("nobody")
    plans.assign("bob", "suspended")
    assert not plans.can_start_stream("bob")
    with pytest.raises(ValueError):
        plans.assign("bob", "platinum")
    with pytest.raises(ValueError):
        SettingsPlanProvider(LIMITS, default_plan="platinum")


def test_stream_beyond_ceiling_is_rejected_without_entry():
    registry = _registry(ada="silver")
    for index in range(3):
        registry.acquire("ada", "doc", f"s{index}")

    with pytest.raises(QuotaExceededError) as excinfo:
        registry.acquire("ada", "doc", "s3")

    assert excinfo.value.limit == 3
    assert "s3" not in registry
    assert len(registry) == 3
    assert registry.session("ada", "doc").active == 3


def test_ceiling_counts_streams_across_documents():
    registry = _registry()
    registry.acquire("ada", "doc-1", "s1")
    with pytest.raises(QuotaExceededError):
        registry.acquire("ada", "doc-2", "s2")
    assert registry.session("ada", "doc-2") is None


def test_other_users_are_not_affected():
    registry = _registry()
    registry.acquire("ada", "doc", "s1")
    registry.acquire("bob", "doc", "s2")
    assert registry.active_streams("ada") == 1
    assert registry.active_streams("bob") == 1


def test_release_frees_slot_and_removes_empty_session():
    registry = _registry()
    registry.acquire("ada", "doc", "s1")
    registry.release("s1")
    assert registry.session("ada", "doc") is None
    assert "s1" not in registry
    registry.release("s1")
    registry.acquire("ada", "doc", "s2")
    assert registry.active_streams("ada") == 1


def test_cancel_sets_signal():
    registry = _registry()
    signal = registry.acquire("ada", "doc", "s1")
    assert not signal.is_set()
    assert registry.cancel("s1")
    assert signal.is_set()
    assert not registry.cancel("unknown")


def test_plan_without_streaming_is_rejected():
    registry = _registry(bob="suspended")
    with pytest.raises(QuotaExceededError):
        registry.acquire("bob", "doc", "s1")
    assert len(registry) == 0


def test_duplicate_stream_id_rejected():
    registry = _registry(ada="gold")
    registry.acquire("ada", "doc", "s1")
    with pytest.raises(ValueError):
        registry.acquire("ada", "doc", "s1")
