"""Unit tests for full reconcile passes."""

import copy

import pytest
from kubernetes_asyncio.client import (
    ApiException,
    V1ContainerStatus,
    V1ObjectMeta,
    V1Pod,
    V1PodStatus,
    V1StatefulSetStatus,
)

from starop.common.models.labels import Labels
from starop.resources.cluster import StarRocksCluster
from starop.resources.orchestrator import Orchestrator, ReconcileResult, cluster_phase
from starop.utils.errors import UpgradeFailedError

PLURAL = StarRocksCluster.PLURAL


def ready_pod(name, tier):
    labels = Labels.generate_default_labels("sr", tier, f"sr-{tier}", "starrocks-operator")
    return V1Pod(
        metadata=V1ObjectMeta(name=name, namespace="default", labels=labels.as_dict()),
        status=V1PodStatus(
            phase="Running",
            container_statuses=[
                V1ContainerStatus(name=tier, image="img", image_id="", ready=True, restart_count=0)
            ],
        ),
    )


def finish_rollouts(kube):
    """Mark every StatefulSet as fully rolled out."""
    for (kind, _, _), obj in kube.objects.items():
        if kind != "StatefulSet":
            continue
        replicas = obj.spec.replicas if obj.spec.replicas is not None else 1
        obj.status = V1StatefulSetStatus(
            replicas=replicas,
            ready_replicas=replicas,
            current_revision="r1",
            update_revision="r1",
            observed_generation=obj.metadata.generation,
        )


@pytest.fixture
def orchestrator(registry, conf, sensor):
    return Orchestrator(registry, conf, sensor)


@pytest.fixture
def stored(kube, cluster_body, fe_spec, cn_spec):
    """Store a cluster in the fake API and return a reader for it."""

    def _store(spec=None, status=None, **metadata):
        body = cluster_body(spec or {"starRocksFeSpec": fe_spec, "starRocksCnSpec": cn_spec}, status)
        body["metadata"].update(metadata)
        kube.put_custom(PLURAL, body)
        return lambda: kube.custom_object(PLURAL, "default", "sr")

    return _store


class TestClusterPhase:
    """Tests for deriving the cluster phase from tier phases."""

    def test_first_non_running_tier_wins(self, cluster_body):
        sr_cluster = StarRocksCluster(
            cluster_body(
                {},
                {
                    "starRocksFeStatus": {"phase": "running"},
                    "starRocksBeStatus": {"phase": "reconciling"},
                    "starRocksCnStatus": {"phase": "failed"},
                },
            )
        )
        assert cluster_phase(sr_cluster).value == "reconciling"

    def test_all_running(self, cluster_body):
        sr_cluster = StarRocksCluster(cluster_body({}, {"starRocksFeStatus": {"phase": "running"}}))
        assert cluster_phase(sr_cluster).value == "running"

    def test_no_tiers_is_pending(self, cluster_body):
        assert cluster_phase(StarRocksCluster(cluster_body({}))).value == "pending"


class TestReconcile:
    """Tests for end to end passes against the in-memory API."""

    @pytest.mark.asyncio
    async def test_fresh_cluster_converges(self, kube, orchestrator, stored, sensor):
        current = stored()
        kube.set_endpoints_ready("default", "sr-fe-service")

        result = await orchestrator.reconcile("sr", "default")
        assert result == ReconcileResult()
        assert kube.get("StatefulSet", "default", "sr-fe").spec.replicas == 3
        assert kube.get("StatefulSet", "default", "sr-cn").spec.replicas == 1
        status = current()["status"]
        assert status["phase"] == "reconciling"
        assert status["starRocksFeStatus"]["serviceName"] == "sr-fe-service"

        kube.pods = [ready_pod(f"sr-fe-{i}", "fe") for i in range(3)] + [ready_pod("sr-cn-0", "cn")]
        finish_rollouts(kube)
        await orchestrator.reconcile("sr", "default")
        status = current()["status"]
        assert status["phase"] == "running"
        assert status["starRocksCnStatus"]["runningInstances"] == ["sr-cn-0"]
        sensor.on_cluster_phase.assert_called_with("sr", "default", "running")

    @pytest.mark.asyncio
    async def test_steady_state_issues_no_writes(self, kube, orchestrator, stored):
        stored()
        kube.set_endpoints_ready("default", "sr-fe-service")
        await orchestrator.reconcile("sr", "default")
        kube.pods = [ready_pod(f"sr-fe-{i}", "fe") for i in range(3)] + [ready_pod("sr-cn-0", "cn")]
        finish_rollouts(kube)
        await orchestrator.reconcile("sr", "default")
        writes = list(kube.writes)
        await orchestrator.reconcile("sr", "default")
        assert kube.writes == writes

    @pytest.mark.asyncio
    async def test_worker_waits_for_frontend(self, kube, orchestrator, stored):
        stored()
        await orchestrator.reconcile("sr", "default")
        assert kube.get("StatefulSet", "default", "sr-fe") is not None
        assert kube.get("StatefulSet", "default", "sr-cn") is None

    @pytest.mark.asyncio
    async def test_spec_mutation_is_persisted_and_requeued(self, kube, orchestrator, stored, fe_spec, cn_spec):
        cn = dict(cn_spec, replicas=2, autoScalingPolicy={"maxReplicas": 4})
        current = stored({"starRocksFeSpec": fe_spec, "starRocksCnSpec": cn})
        kube.set_endpoints_ready("default", "sr-fe-service")

        result = await orchestrator.reconcile("sr", "default")
        assert result.requeue
        assert "replicas" not in current()["spec"]["starRocksCnSpec"]
        assert ("replace", PLURAL, "sr") in kube.writes
        assert "status" not in current()

        result = await orchestrator.reconcile("sr", "default")
        assert not result.requeue
        assert current()["status"]["starRocksCnStatus"]["hpaName"] == "sr-cn-autoscaler"

    @pytest.mark.asyncio
    async def test_spec_write_keeps_concurrent_edits(self, kube, orchestrator, stored, fe_spec, cn_spec):
        """An edit landing between the first read and the spec write survives it."""
        cn = dict(cn_spec, replicas=2, autoScalingPolicy={"maxReplicas": 4})
        current = stored({"starRocksFeSpec": fe_spec, "starRocksCnSpec": cn})
        kube.set_endpoints_ready("default", "sr-fe-service")
        read = kube.get_namespaced_custom_object
        edited = []

        async def read_then_edit(group, version, namespace, plural, name):
            body = await read(group, version, namespace, plural, name)
            if plural == PLURAL and not edited:
                edit = copy.deepcopy(current())
                edit["spec"]["starRocksFeSpec"]["image"] = "starrocks/fe-ubuntu:3.3.0"
                edited.append(kube.put_custom(PLURAL, edit))
            return body

        kube.get_namespaced_custom_object = read_then_edit
        result = await orchestrator.reconcile("sr", "default")
        assert result.requeue
        spec = current()["spec"]
        assert spec["starRocksFeSpec"]["image"] == "starrocks/fe-ubuntu:3.3.0"
        assert "replicas" not in spec["starRocksCnSpec"]

    @pytest.mark.asyncio
    async def test_spec_write_skipped_when_autoscaling_was_dropped(
        self, kube, orchestrator, stored, fe_spec, cn_spec
    ):
        cn = dict(cn_spec, replicas=2, autoScalingPolicy={"maxReplicas": 4})
        current = stored({"starRocksFeSpec": fe_spec, "starRocksCnSpec": cn})
        kube.set_endpoints_ready("default", "sr-fe-service")
        read = kube.get_namespaced_custom_object
        edited = []

        async def read_then_edit(group, version, namespace, plural, name):
            body = await read(group, version, namespace, plural, name)
            if plural == PLURAL and not edited:
                edit = copy.deepcopy(current())
                del edit["spec"]["starRocksCnSpec"]["autoScalingPolicy"]
                edited.append(kube.put_custom(PLURAL, edit))
            return body

        kube.get_namespaced_custom_object = read_then_edit
        await orchestrator.reconcile("sr", "default")
        assert current()["spec"]["starRocksCnSpec"]["replicas"] == 2
        assert ("replace", PLURAL, "sr") not in kube.writes

    @pytest.mark.asyncio
    async def test_controller_error_marks_cluster_failed(self, kube, registry, orchestrator, stored):
        current = stored()

        async def reject(namespace, body):
            raise ApiException(status=422, reason="Invalid")

        registry.apps_v1_api.create_namespaced_stateful_set = reject
        with pytest.raises(ApiException):
            await orchestrator.reconcile("sr", "default")
        status = current()["status"]
        assert status["phase"] == "failed"
        assert status["reason"].startswith("error from fe controller")

    @pytest.mark.asyncio
    async def test_status_error_marks_cluster_failed(self, kube, registry, orchestrator, stored):
        current = stored()

        async def unavailable(namespace, label_selector=None):
            raise ApiException(status=503, reason="ServiceUnavailable")

        registry.core_v1_api.list_namespaced_pod = unavailable
        with pytest.raises(ApiException):
            await orchestrator.reconcile("sr", "default")
        status = current()["status"]
        assert status["phase"] == "failed"
        assert status["reason"].startswith("error from fe controller status")

    @pytest.mark.asyncio
    async def test_missing_cluster(self, orchestrator):
        assert await orchestrator.reconcile("absent", "default") == ReconcileResult()

    @pytest.mark.asyncio
    async def test_deleting_cluster(self, kube, orchestrator, stored):
        current = stored(deletionTimestamp="2026-01-01T00:00:00Z")
        await orchestrator.reconcile("sr", "default")
        assert current()["status"]["phase"] == "deleting"
        assert kube.objects == {}


class TestUpgradeGate:
    """Tests for the upgrade manager holding back convergence."""

    @pytest.mark.asyncio
    async def test_detected_upgrade_blocks_tiers(self, kube, orchestrator, stored, stateful_set, fe_spec):
        kube.put("StatefulSet", stateful_set("sr-fe", "starrocks/fe-ubuntu:3.1.0", "fe", replicas=3))
        current = stored(
            {"starRocksFeSpec": fe_spec},
            {"phase": "running", "starRocksFeStatus": {"phase": "running"}},
        )
        result = await orchestrator.reconcile("sr", "default")
        assert result.requeue
        status = current()["status"]
        assert status["phase"] == "reconciling"
        assert status["reason"] == "upgrade preparation in progress"
        assert status["starRocksFeStatus"]["upgradeState"]["phase"] == "Detected"
        image = kube.get("StatefulSet", "default", "sr-fe").spec.template.spec.containers[0].image
        assert image == "starrocks/fe-ubuntu:3.1.0"

    @pytest.mark.asyncio
    async def test_failed_upgrade_marks_cluster_failed(self, orchestrator, stored, fe_spec):
        state = {"phase": "Failed", "targetVersion": fe_spec["image"], "reason": "Critical pre-upgrade hook x failed"}
        current = stored(
            {"starRocksFeSpec": fe_spec},
            {"phase": "running", "starRocksFeStatus": {"phase": "running", "upgradeState": state}},
        )
        with pytest.raises(UpgradeFailedError):
            await orchestrator.reconcile("sr", "default")
        status = current()["status"]
        assert status["phase"] == "failed"
        assert "Critical pre-upgrade hook x failed" in status["reason"]

    @pytest.mark.asyncio
    async def test_upgrade_read_error_marks_cluster_failed(self, kube, registry, orchestrator, stored, fe_spec):
        current = stored(
            {"starRocksFeSpec": fe_spec},
            {"phase": "running", "starRocksFeStatus": {"phase": "running"}},
        )

        async def unavailable(name, namespace):
            raise ApiException(status=503, reason="ServiceUnavailable")

        registry.apps_v1_api.read_namespaced_stateful_set = unavailable
        with pytest.raises(ApiException):
            await orchestrator.reconcile("sr", "default")
        status = current()["status"]
        assert status["phase"] == "failed"
        assert status["reason"].startswith("error from upgrade manager")
