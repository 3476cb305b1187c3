"""Unit tests for pod classification and tier phase aggregation."""

import pytest
from kubernetes_asyncio.client import (
    V1ContainerState,
    V1ContainerStateWaiting,
    V1ContainerStatus,
    V1LabelSelector,
    V1ObjectMeta,
    V1Pod,
    V1PodStatus,
    V1PodTemplateSpec,
    V1StatefulSet,
    V1StatefulSetSpec,
    V1StatefulSetStatus,
)

from starop.common.models.labels import Labels
from starop.resources.status import (
    InstanceState,
    StatusAggregator,
    WorkloadKind,
    classify_pod,
    rollout_complete,
)

LABELS = Labels.generate_default_labels("sr", "be", "sr-be", "starrocks-operator")


def make_pod(name, phase="Running", ready=True, waiting=None, reason=None):
    state = V1ContainerState(waiting=V1ContainerStateWaiting(reason=waiting)) if waiting else None
    return V1Pod(
        metadata=V1ObjectMeta(name=name, namespace="default", labels=LABELS.as_dict()),
        status=V1PodStatus(
            phase=phase,
            reason=reason,
            container_statuses=[
                V1ContainerStatus(
                    name="be", image="be:3.2", image_id="", ready=ready, restart_count=0, state=state
                )
            ],
        ),
    )


def make_sts(ready=3, replicas=3, current="r1", update="r1", observed=1, generation=1):
    return V1StatefulSet(
        metadata=V1ObjectMeta(name="sr-be", namespace="default", generation=generation),
        spec=V1StatefulSetSpec(
            replicas=replicas,
            selector=V1LabelSelector(match_labels=LABELS.selector().as_dict()),
            service_name="sr-be-search",
            template=V1PodTemplateSpec(),
        ),
        status=V1StatefulSetStatus(
            replicas=replicas,
            ready_replicas=ready,
            current_revision=current,
            update_revision=update,
            observed_generation=observed,
        ),
    )


@pytest.fixture
def aggregator(registry):
    """Status aggregator for the backend tier."""
    return StatusAggregator(registry, "sr", "default", "sr-be", LABELS, WorkloadKind.STATEFUL_SET)


class TestClassifyPod:
    """Tests for per-pod lifecycle classification."""

    def test_running_and_ready(self):
        assert classify_pod(make_pod("p")) is InstanceState.READY

    def test_running_not_ready_is_creating(self):
        assert classify_pod(make_pod("p", ready=False)) is InstanceState.CREATING

    def test_pending_is_creating(self):
        assert classify_pod(make_pod("p", phase="Pending", ready=False)) is InstanceState.CREATING

    def test_crash_loop_is_failed(self):
        """A crash looping container counts as failed even though the pod runs."""
        pod = make_pod("p", ready=False, waiting="CrashLoopBackOff")
        assert classify_pod(pod) is InstanceState.FAILED

    def test_failed_phase(self):
        assert classify_pod(make_pod("p", phase="Failed", ready=False)) is InstanceState.FAILED


class TestRolloutComplete:
    """Tests for the workload rollout signal."""

    def test_complete(self):
        assert rollout_complete(WorkloadKind.STATEFUL_SET, make_sts())

    def test_revision_mismatch(self):
        """Old revision pods may still be ready while the new ones arrive."""
        assert not rollout_complete(WorkloadKind.STATEFUL_SET, make_sts(update="r2"))

    def test_stale_observed_generation(self):
        assert not rollout_complete(WorkloadKind.STATEFUL_SET, make_sts(observed=1, generation=2))

    def test_missing_workload(self):
        assert not rollout_complete(WorkloadKind.STATEFUL_SET, None)


class TestStatusAggregator:
    """Tests for the failed > creating > rollout priority."""

    @pytest.mark.asyncio
    async def test_one_failed_among_three(self, kube, aggregator):
        """A single failed pod fails the tier regardless of the others."""
        kube.pods = [
            make_pod("sr-be-0"),
            make_pod("sr-be-1"),
            make_pod("sr-be-2", phase="Failed", ready=False, reason="Evicted"),
        ]
        kube.put("StatefulSet", make_sts())
        status = await aggregator.compute()
        assert status["phase"] == "failed"
        assert status["reason"] == "Evicted"
        assert status["failedInstances"] == ["sr-be-2"]
        assert status["runningInstances"] == ["sr-be-0", "sr-be-1"]

    @pytest.mark.asyncio
    async def test_creating_pod_reconciles(self, kube, aggregator):
        kube.pods = [make_pod("sr-be-0"), make_pod("sr-be-1", phase="Pending", ready=False)]
        kube.put("StatefulSet", make_sts())
        status = await aggregator.compute()
        assert status["phase"] == "reconciling"
        assert status["creatingInstances"] == ["sr-be-1"]

    @pytest.mark.asyncio
    async def test_incomplete_rollout_reconciles(self, kube, aggregator):
        """All pods ready but the StatefulSet still rolling."""
        kube.pods = [make_pod("sr-be-0")]
        kube.put("StatefulSet", make_sts(update="r2"))
        status = await aggregator.compute()
        assert status["phase"] == "reconciling"

    @pytest.mark.asyncio
    async def test_complete_rollout_runs(self, kube, aggregator):
        kube.pods = [make_pod(f"sr-be-{i}") for i in range(3)]
        kube.put("StatefulSet", make_sts())
        status = await aggregator.compute()
        assert status["phase"] == "running"
        assert "reason" not in status

    @pytest.mark.asyncio
    async def test_other_tiers_pods_are_ignored(self, kube, aggregator):
        """Pods are selected by the tier's own labels."""
        foreign = make_pod("sr-cn-0", phase="Failed", ready=False)
        foreign.metadata.labels = {"app.kubernetes.io/component": "cn"}
        kube.pods = [make_pod("sr-be-0"), foreign]
        kube.put("StatefulSet", make_sts(ready=1, replicas=1))
        status = await aggregator.compute()
        assert status["phase"] == "running"
