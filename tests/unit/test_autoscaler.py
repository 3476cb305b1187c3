"""Unit tests for the compute tier autoscaler."""

import pytest

from starop.common.models.labels import Labels
from starop.common.models.version import PlatformVersion
from starop.resources.autoscaler import (
    HPA_PLURAL,
    AutoscalerAdapter,
    AutoscalerVersion,
    build_autoscaler,
    select_version,
)
from starop.types.schemas.component_spec import AutoScalingPolicySchema

OWNER = {"apiVersion": "starrocks.com/v1", "kind": "StarRocksCluster", "name": "sr", "uid": "uid-1"}

CPU_METRIC = {
    "type": "Resource",
    "resource": {"name": "cpu", "target": {"type": "Utilization", "averageUtilization": 60}},
}


def make_policy(**overrides):
    data = {"maxReplicas": 5, "hpaPolicy": {"metrics": [CPU_METRIC]}}
    data.update(overrides)
    return AutoScalingPolicySchema().load(data)


@pytest.fixture
def adapter(registry, conf, sensor):
    """Autoscaler adapter for cluster ``sr``."""
    labels = Labels.generate_default_labels("sr", "cn", "sr-cn", "starrocks-operator")
    return AutoscalerAdapter("sr", "default", labels, registry, conf, sensor)


class TestSelectVersion:
    """Tests for autoscaling API version selection."""

    def test_explicit_version_wins(self):
        assert select_version("v1", PlatformVersion(1, 29)) is AutoscalerVersion.V1

    def test_new_server_uses_v2(self):
        assert select_version(None, PlatformVersion(1, 26)) is AutoscalerVersion.V2

    def test_old_server_uses_v2beta2(self):
        assert select_version(None, PlatformVersion(1, 25)) is AutoscalerVersion.V2BETA2

    def test_unknown_server_uses_v2beta2(self):
        assert select_version(None, PlatformVersion.parse(None, None)) is AutoscalerVersion.V2BETA2

    def test_managed_minor_suffix(self):
        """Versions like ``27+`` reported by managed offerings still parse."""
        assert select_version(None, PlatformVersion.parse("1", "27+")) is AutoscalerVersion.V2


class TestBuildAutoscaler:
    """Tests for rendering the autoscaler body."""

    def test_v2_carries_metrics(self):
        body = build_autoscaler(
            "sr-cn-autoscaler", "default", "sr-cn", make_policy(), AutoscalerVersion.V2, Labels(), OWNER
        )
        assert body["apiVersion"] == "autoscaling/v2"
        assert body["spec"]["metrics"] == [CPU_METRIC]
        assert body["spec"]["minReplicas"] == 1
        assert body["spec"]["scaleTargetRef"]["name"] == "sr-cn"
        assert body["metadata"]["ownerReferences"] == [OWNER]

    def test_v1_uses_cpu_percentage(self):
        body = build_autoscaler(
            "sr-cn-autoscaler", "default", "sr-cn", make_policy(), AutoscalerVersion.V1, Labels(), OWNER
        )
        assert body["spec"]["targetCPUUtilizationPercentage"] == 60
        assert "metrics" not in body["spec"]


class TestAutoscalerAdapter:
    """Tests for converging the autoscaler object."""

    @pytest.mark.asyncio
    async def test_create_then_noop(self, kube, adapter):
        """A second apply with the same policy issues no write."""
        result = await adapter.apply(make_policy(), OWNER)
        assert result == {"name": "sr-cn-autoscaler", "version": "v2"}
        assert kube.custom_object(HPA_PLURAL, "default", "sr-cn-autoscaler") is not None
        await adapter.apply(make_policy(), OWNER)
        assert kube.writes == [("create", HPA_PLURAL, "sr-cn-autoscaler")]

    @pytest.mark.asyncio
    async def test_changed_policy_replaces(self, kube, adapter, sensor):
        await adapter.apply(make_policy(), OWNER)
        await adapter.apply(make_policy(maxReplicas=9), OWNER)
        live = kube.custom_object(HPA_PLURAL, "default", "sr-cn-autoscaler")
        assert live["spec"]["maxReplicas"] == 9
        assert kube.writes_of("replace") == [("replace", HPA_PLURAL, "sr-cn-autoscaler")]
        sensor.on_resource_drift_detected.assert_called_once()

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, kube, adapter):
        await adapter.apply(make_policy(), OWNER)
        await adapter.delete("v2")
        await adapter.delete("v2")
        assert kube.custom_object(HPA_PLURAL, "default", "sr-cn-autoscaler") is None
        assert kube.writes_of("delete") == [("delete", HPA_PLURAL, "sr-cn-autoscaler")]

    @pytest.mark.asyncio
    async def test_platform_version_from_server(self, kube, adapter, conf):
        conf.kubernetes_version = None
        kube.platform.minor = "24"
        assert await adapter.resolve_version(make_policy()) is AutoscalerVersion.V2BETA2
