"""发布存储测试"""

import typing

import pytest

from kanary.kanary_orchestrator import RolloutOrchestrator, RolloutRecord, RolloutStore
from kanary.kanary_utils.errors import RolloutNotFound
from kanary.models import Phase, RolloutPlan, RolloutState


def make_record(
    rollout_id, service="api", created_at=0.0, phase=Phase.PROGRESSING, **plan_fields
):
    values = dict(service=service, stable_revision="v1", canary_revision="v2", namespace="shop")
    values.update(plan_fields)
    plan = RolloutPlan(**values)
    state = RolloutState(rollout_id=rollout_id, plan=plan, created_at=created_at, phase=phase)
    if phase.is_terminal:
        state.finished_at = created_at
    return RolloutRecord(state=state)


class TestRolloutStore:
    """RolloutStore测试"""

    def test_add_and_get(self) -> None:
        store = RolloutStore()
        record = make_record("r1")
        store.add(record)
        assert store.get("r1") is record
        assert "r1" in store
        assert len(store) == 1

    def test_duplicate_id(self) -> None:
        store = RolloutStore()
        store.add(make_record("r1"))
        with pytest.raises(ValueError):
            store.add(make_record("r1"))

    def test_get_missing(self) -> None:
        with pytest.raises(RolloutNotFound):
            RolloutStore().get("r1")

    def test_list_sorted_by_creation(self) -> None:
        store = RolloutStore()
        store.add(make_record("late", service="a", created_at=20.0))
        store.add(make_record("early", service="b", created_at=10.0))
        assert [r.rollout_id for r in store.list()] == ["early", "late"]

    def test_find_active_ignores_terminal(self) -> None:
        store = RolloutStore()
        store.add(make_record("done", phase=Phase.PROMOTED))
        assert store.find_active("api", "shop") is None
        store.add(make_record("live"))
        assert store.find_active("api", "shop").rollout_id == "live"
        assert store.find_active("api", "other") is None

    def test_find_sharing_ingress(self) -> None:
        store = RolloutStore()
        store.add(make_record("live", service="api"))
        shared = RolloutPlan(
            service="api-eu",
            stable_revision="v1",
            canary_revision="v2",
            namespace="shop",
            canary_ingress="api-canary",
        )
        separate = RolloutPlan(
            service="search", stable_revision="v1", canary_revision="v2", namespace="shop"
        )
        assert store.find_sharing_ingress(shared).rollout_id == "live"
        assert store.find_sharing_ingress(separate) is None

    def test_find_sharing_ingress_ignores_terminal_and_other_namespaces(self) -> None:
        store = RolloutStore()
        store.add(make_record("done", phase=Phase.ROLLED_BACK))
        store.add(make_record("elsewhere", service="x", stable_ingress="api-stable", namespace="prod"))
        plan = RolloutPlan(
            service="api", stable_revision="v1", canary_revision="v2", namespace="shop"
        )
        assert store.find_sharing_ingress(plan) is None

    def test_annotations_resolve_despite_list_method(self) -> None:
        assert typing.get_type_hints(RolloutStore.prune)["return"] == typing.List[str]
        assert typing.get_type_hints(RolloutOrchestrator.prune)["return"] == typing.List[str]

    def test_prune(self) -> None:
        store = RolloutStore()
        store.add(make_record("old", created_at=0.0, phase=Phase.ROLLED_BACK))
        store.add(make_record("new", created_at=90.0, phase=Phase.FAILED))
        store.add(make_record("active", service="b", created_at=0.0))
        assert store.prune(now=100.0, retention=50.0) == ["old"]
        assert "new" in store
        assert "active" in store

