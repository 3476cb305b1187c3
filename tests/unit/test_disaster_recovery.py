"""Unit tests for the frontend snapshot restore cycle."""

import pytest
from kubernetes_asyncio.client import (
    V1ConfigMap,
    V1Container,
    V1ContainerStatus,
    V1EnvVar,
    V1ObjectMeta,
    V1Pod,
    V1PodSpec,
    V1PodStatus,
)

from starop.common.models.labels import Labels
from starop.resources.cluster import StarRocksCluster
from starop.resources.disaster_recovery import (
    DOING_REASON,
    DONE_REASON,
    MANIFEST_MISSING_REASON,
    RESTORE_GENERATION_ENV,
    has_cluster_snapshot_conf,
    pod_restored,
    should_enter,
)
from starop.resources.frontend import FrontendController
from starop.types.schemas.cluster_spec import DisasterRecoverySpecSchema
from starop.types.schemas.component_spec import MountReferenceSchema

SHARED_DATA = {"run_mode": "shared_data"}
FE_LABELS = Labels.generate_default_labels("sr", "fe", "sr-fe", "starrocks-operator")


def dr_spec(generation, enabled=True):
    return DisasterRecoverySpecSchema().load({"enabled": enabled, "generation": generation})


def restored_pod(generation, ready=True):
    env = [V1EnvVar(name=RESTORE_GENERATION_ENV, value=str(generation))]
    return V1Pod(
        metadata=V1ObjectMeta(name="sr-fe-0", namespace="default", labels=FE_LABELS.as_dict()),
        spec=V1PodSpec(containers=[V1Container(name="fe", image="fe", env=env)]),
        status=V1PodStatus(
            phase="Running",
            container_statuses=[
                V1ContainerStatus(name="fe", image="fe", image_id="", ready=ready, restart_count=0)
            ],
        ),
    )


@pytest.fixture
def dr_cluster(kube, cluster_body, fe_spec):
    """Factory for a shared-data cluster with a mounted snapshot manifest."""
    kube.put(
        "ConfigMap",
        V1ConfigMap(
            metadata=V1ObjectMeta(name="fe-conf", namespace="default"),
            data={"fe.conf": "run_mode = shared_data\n"},
        ),
    )

    def _make(generation=1, status=None, mounts=True):
        spec = dict(fe_spec, configMapInfo={"configMapName": "fe-conf", "resolveKey": "fe.conf"})
        if mounts:
            spec["configMaps"] = [
                {
                    "name": "snapshot",
                    "mountPath": "/opt/starrocks/fe/snapshot/cluster_snapshot.yaml",
                    "subPath": "cluster_snapshot.yaml",
                }
            ]
        return cluster_body(
            {"starRocksFeSpec": spec, "disasterRecovery": {"enabled": True, "generation": generation}},
            status,
        )

    return _make


class TestShouldEnter:
    """Tests for arming the restore cycle."""

    def test_first_generation_enters(self):
        assert should_enter(dr_spec(1), {"observedGeneration": 0, "phase": "todo"}, SHARED_DATA)[0]

    def test_no_status_enters(self):
        assert should_enter(dr_spec(1), None, SHARED_DATA)[0]

    def test_done_generation_does_not_enter(self):
        status = {"observedGeneration": 1, "phase": "done"}
        assert not should_enter(dr_spec(1), status, SHARED_DATA)[0]

    def test_bumped_generation_enters(self):
        status = {"observedGeneration": 1, "phase": "done"}
        assert should_enter(dr_spec(2), status, SHARED_DATA)[0]

    def test_shared_nothing_never_enters(self):
        assert not should_enter(dr_spec(1), None, {})[0]

    def test_disabled_never_enters(self):
        assert not should_enter(dr_spec(1, enabled=False), None, SHARED_DATA)[0]

    def test_returns_query_port(self):
        config = dict(SHARED_DATA, query_port="9131")
        assert should_enter(dr_spec(1), None, config) == (True, 9131)


class TestHelpers:
    """Tests for manifest detection and pod restore markers."""

    def test_manifest_by_sub_path(self):
        refs = [MountReferenceSchema().load({"name": "s", "mountPath": "/x", "subPath": "cluster_snapshot.yaml"})]
        assert has_cluster_snapshot_conf(refs)

    def test_manifest_by_conf_dir(self):
        refs = [MountReferenceSchema().load({"name": "s", "mountPath": "/opt/starrocks/fe/conf/"})]
        assert has_cluster_snapshot_conf(refs)

    def test_no_manifest(self):
        refs = [MountReferenceSchema().load({"name": "s", "mountPath": "/opt/starrocks/fe/log"})]
        assert not has_cluster_snapshot_conf(refs)

    def test_pod_restored_requires_marker_and_readiness(self):
        assert pod_restored(restored_pod(2), 2)
        assert not pod_restored(restored_pod(1), 2)
        assert not pod_restored(restored_pod(2, ready=False), 2)


class TestRestoreCycle:
    """Tests for the todo -> doing -> done progression through the frontend controller."""

    @pytest.mark.asyncio
    async def test_todo_rewrites_frontend(self, kube, registry, conf, sensor, dr_cluster):
        fe = FrontendController(StarRocksCluster(dr_cluster()), registry, conf, sensor)
        await fe.sync_cluster()
        dr_status = fe.sr_cluster.dr_status
        assert dr_status["phase"] == "doing"
        assert dr_status["observedGeneration"] == 0
        assert dr_status["reason"] == DOING_REASON
        sts = kube.get("StatefulSet", "default", "sr-fe")
        assert sts.spec.replicas == 1
        container = sts.spec.template.spec.containers[0]
        assert container.liveness_probe is None
        assert container.startup_probe is None
        assert container.readiness_probe.tcp_socket.port == 9030
        assert {e.name: e.value for e in container.env}[RESTORE_GENERATION_ENV] == "1"
        phases = [c.args[2] for c in sensor.on_disaster_recovery_phase.call_args_list]
        assert phases == ["todo", "doing"]

    @pytest.mark.asyncio
    async def test_missing_manifest_waits(self, kube, registry, conf, sensor, dr_cluster):
        fe = FrontendController(StarRocksCluster(dr_cluster(mounts=False)), registry, conf, sensor)
        await fe.sync_cluster()
        assert fe.sr_cluster.dr_status["phase"] == "todo"
        assert fe.sr_cluster.dr_status["reason"] == MANIFEST_MISSING_REASON
        assert kube.get("StatefulSet", "default", "sr-fe") is None

    @pytest.mark.asyncio
    async def test_doing_completes_when_pods_restored(self, kube, registry, conf, sensor, dr_cluster):
        fe = FrontendController(StarRocksCluster(dr_cluster()), registry, conf, sensor)
        await fe.sync_cluster()
        kube.pods = [restored_pod(1)]
        status = {"starRocksFeStatus": {"disasterRecoveryStatus": fe.sr_cluster.dr_status}}
        fe = FrontendController(StarRocksCluster(dr_cluster(status=status)), registry, conf, sensor)
        await fe.sync_cluster()
        dr_status = fe.sr_cluster.dr_status
        assert dr_status["phase"] == "done"
        assert dr_status["observedGeneration"] == 1
        assert dr_status["reason"] == DONE_REASON
        assert "endTimestamp" in dr_status

    @pytest.mark.asyncio
    async def test_doing_reports_progress_until_pods_restore(self, kube, registry, conf, sensor, dr_cluster):
        doing = {"phase": "doing", "observedGeneration": 0}
        status = {"starRocksFeStatus": {"disasterRecoveryStatus": doing}}
        fe = FrontendController(StarRocksCluster(dr_cluster(status=status)), registry, conf, sensor)
        await fe.sync_cluster()
        assert fe.sr_cluster.dr_status == {"phase": "doing", "observedGeneration": 0, "reason": DOING_REASON}
        sensor.on_disaster_recovery_phase.assert_not_called()

    @pytest.mark.asyncio
    async def test_done_returns_to_regular_apply(self, kube, registry, conf, sensor, dr_cluster):
        """After a finished cycle the frontend goes back to its desired replica count."""
        fe = FrontendController(StarRocksCluster(dr_cluster()), registry, conf, sensor)
        await fe.sync_cluster()
        done = {"phase": "done", "observedGeneration": 1}
        status = {"starRocksFeStatus": {"disasterRecoveryStatus": done}}
        fe = FrontendController(StarRocksCluster(dr_cluster(status=status)), registry, conf, sensor)
        await fe.sync_cluster()
        assert fe.sr_cluster.dr_status == done
        assert not fe.sr_cluster.dr_active
        assert kube.get("StatefulSet", "default", "sr-fe").spec.replicas == 3

    @pytest.mark.asyncio
    async def test_bumped_generation_starts_new_cycle(self, kube, registry, conf, sensor, dr_cluster):
        done = {"phase": "done", "observedGeneration": 1}
        status = {"starRocksFeStatus": {"disasterRecoveryStatus": done}}
        fe = FrontendController(StarRocksCluster(dr_cluster(generation=2, status=status)), registry, conf, sensor)
        await fe.sync_cluster()
        assert fe.sr_cluster.dr_status["phase"] == "doing"
        assert fe.sr_cluster.dr_status["observedGeneration"] == 1
        assert fe.sr_cluster.dr_active
