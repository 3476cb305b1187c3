"""Horizontal pod autoscaler for the compute tier.

The autoscaling API group went through three versions; the one to use is
either pinned by the cluster spec or picked from the Kubernetes server
version. The object is handled as a plain dict through the custom objects
API so one code path serves all three shapes.
"""
import logging
from enum import Enum
from logging import Logger
from typing import Any, Dict, Optional

from starop.common.models.labels import Labels
from starop.common.models.tier import TierKind
from starop.common.models.version import PlatformVersion
from starop.resources.base import BaseResource
from starop.resources.registry import ApiRegistry
from starop.sensors.base import OperatorSensor
from starop.types.models.cluster_resources import StarRocksClusterResources
from starop.types.models.component_spec import AutoScalingPolicy
from starop.types.settings import Settings
from starop.utils.errors import retry_on_conflict
from starop.utils.fingerprint import autoscaler_fingerprint

module_logger = logging.getLogger(__name__)

AUTOSCALING_GROUP = "autoscaling"
HPA_PLURAL = "horizontalpodautoscalers"
HPA_KIND = "HorizontalPodAutoscaler"


class AutoscalerVersion(str, Enum):
    V1 = "v1"
    V2BETA2 = "v2beta2"
    V2 = "v2"

    @property
    def api_version(self) -> str:
        return f"{AUTOSCALING_GROUP}/{self.value}"


def select_version(policy_version: Optional[str], platform: PlatformVersion) -> AutoscalerVersion:
    """Explicit policy version wins; otherwise v2 from Kubernetes 1.26 on."""
    if policy_version:
        return AutoscalerVersion(policy_version)
    if platform.major is None:
        return AutoscalerVersion.V2BETA2
    if platform.major == 1:
        if platform.minor is not None and platform.minor > 25:
            return AutoscalerVersion.V2
        return AutoscalerVersion.V2BETA2
    return AutoscalerVersion.V2


def _cpu_utilization(metrics) -> Optional[int]:
    for metric in metrics or []:
        resource = metric.get("resource") or {}
        if metric.get("type") == "Resource" and resource.get("name") == "cpu":
            target = resource.get("target") or {}
            return target.get("averageUtilization")
    return None


def build_autoscaler(
    name: str,
    namespace: str,
    target_name: str,
    policy: AutoScalingPolicy,
    version: AutoscalerVersion,
    labels: Labels,
    owner_reference: Dict[str, Any],
) -> Dict[str, Any]:
    spec: Dict[str, Any] = {
        "scaleTargetRef": {"apiVersion": "apps/v1", "kind": "StatefulSet", "name": target_name},
        "minReplicas": policy.min_replicas if policy.min_replicas is not None else 1,
        "maxReplicas": policy.max_replicas,
    }
    hpa_policy = policy.hpa_policy
    if version is AutoscalerVersion.V1:
        cpu = _cpu_utilization(hpa_policy.metrics if hpa_policy else None)
        if cpu is not None:
            spec["targetCPUUtilizationPercentage"] = cpu
    elif hpa_policy is not None:
        if hpa_policy.metrics:
            spec["metrics"] = list(hpa_policy.metrics)
        if hpa_policy.behavior:
            spec["behavior"] = dict(hpa_policy.behavior)
    return {
        "apiVersion": version.api_version,
        "kind": HPA_KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": labels.as_dict(),
            "ownerReferences": [owner_reference],
        },
        "spec": spec,
    }


class AutoscalerAdapter(BaseResource):
    """Creates, updates and deletes the compute tier autoscaler."""

    def __init__(
        self,
        cluster: str,
        namespace: str,
        labels: Labels,
        registry: ApiRegistry,
        conf: Settings,
        sensor: OperatorSensor,
        logger: Logger = None,
    ):
        super().__init__(cluster, namespace, StarRocksClusterResources.hpa_name(cluster), labels)
        self.registry = registry
        self.conf = conf
        self.sensor = sensor
        self.logger = logger or module_logger

    @property
    def target_name(self) -> str:
        return StarRocksClusterResources.component_name(self.cluster, TierKind.COMPUTE)

    async def platform_version(self) -> PlatformVersion:
        if self.conf.kubernetes_version:
            return PlatformVersion.from_git_version(self.conf.kubernetes_version)
        info = await self.registry.version_api.get_code()
        return PlatformVersion.parse(info.major, info.minor)

    async def resolve_version(self, policy: AutoScalingPolicy) -> AutoscalerVersion:
        if policy.version:
            return AutoscalerVersion(policy.version)
        return select_version(None, await self.platform_version())

    async def apply(self, policy: AutoScalingPolicy, owner_reference: Dict[str, Any]) -> Dict[str, str]:
        """Converge the autoscaler. Returns the status fragment describing it."""
        version = await self.resolve_version(policy)
        desired = build_autoscaler(
            self.component_name,
            self.namespace,
            self.target_name,
            policy,
            version,
            self.labels,
            owner_reference,
        )
        digest = autoscaler_fingerprint(desired)
        desired["metadata"]["annotations"] = self.prepare_hash_annotation(digest)
        custom_objects_api = self.registry.custom_objects_api

        async def _apply():
            live = await self.get_custom_object(
                custom_objects_api, self.namespace, AUTOSCALING_GROUP, version.value, HPA_PLURAL, self.component_name
            )
            if live is None:
                await self._tracked(
                    "create",
                    self.create_custom_object(
                        custom_objects_api, self.namespace, AUTOSCALING_GROUP, version.value, HPA_PLURAL, desired
                    ),
                )
                return
            annotations = (live.get("metadata") or {}).get("annotations") or {}
            if annotations.get(Labels.HASH_ANNOTATION) == digest:
                return
            body = dict(desired)
            body["metadata"] = {
                **desired["metadata"],
                "annotations": {**annotations, **desired["metadata"]["annotations"]},
                "resourceVersion": live["metadata"]["resourceVersion"],
            }
            self.sensor.on_resource_drift_detected(
                self.cluster, TierKind.COMPUTE.value, self.component_name, self.namespace, HPA_KIND, ["spec"]
            )
            await self._tracked(
                "update",
                self.replace_custom_object(
                    custom_objects_api,
                    self.namespace,
                    AUTOSCALING_GROUP,
                    version.value,
                    HPA_PLURAL,
                    self.component_name,
                    body,
                ),
            )

        await retry_on_conflict(
            _apply,
            attempts=self.conf.conflict_retry_attempts,
            base_delay=self.conf.conflict_retry_base_delay_seconds,
            max_delay=self.conf.conflict_retry_max_delay_seconds,
            description=f"{HPA_KIND} {self.component_name}",
        )
        return {"name": self.component_name, "version": version.value}

    async def delete(self, version: Optional[str] = None) -> None:
        """Remove the autoscaler if present, under the version recorded in status when known."""
        if version:
            resolved = AutoscalerVersion(version)
        else:
            resolved = select_version(None, await self.platform_version())
        custom_objects_api = self.registry.custom_objects_api
        live = await self.get_custom_object(
            custom_objects_api, self.namespace, AUTOSCALING_GROUP, resolved.value, HPA_PLURAL, self.component_name
        )
        if live is None:
            return
        await self.delete_custom_object(
            custom_objects_api,
            self.namespace,
            AUTOSCALING_GROUP,
            resolved.value,
            HPA_PLURAL,
            self.component_name,
        )

    async def _tracked(self, operation: str, call) -> None:
        state = self.sensor.on_resource_sync_start(
            self.cluster, TierKind.COMPUTE.value, self.component_name, self.namespace, HPA_KIND
        )
        try:
            await call
        except Exception as e:
            self.sensor.on_resource_sync_complete(
                self.cluster, TierKind.COMPUTE.value, self.component_name, self.namespace,
                HPA_KIND, state, operation, False, e,
            )
            raise
        self.sensor.on_resource_sync_complete(
            self.cluster, TierKind.COMPUTE.value, self.component_name, self.namespace,
            HPA_KIND, state, operation, True,
        )
        self.logger.info(f"{HPA_KIND} {self.component_name}: {operation} ok")
