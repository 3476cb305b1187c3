"""Common convergence logic shared by the four tier controllers.

A controller owns one workload kind for one cluster. Each pass it renders the
desired children, applies them through a change gate so an unchanged tier
issues no writes, and reports its own phase. Removing the tier spec tears the
children down before the tier status is dropped.
"""
import logging
from logging import Logger
from typing import Any, Awaitable, Callable, Dict, List, Optional

from kubernetes_asyncio.client import V1ConfigMap, V1Deployment, V1Service, V1StatefulSet

from starop.common.models.labels import Labels
from starop.common.models.tier import TierKind
from starop.resources.base import BaseResource
from starop.resources.cluster import StarRocksCluster, UPGRADE_STATE_KEY
from starop.resources.registry import ApiRegistry
from starop.resources.status import StatusAggregator, WorkloadKind
from starop.resources.volumes import VolumeExpander
from starop.sensors.base import OperatorSensor
from starop.types.models.cluster_resources import StarRocksClusterResources
from starop.types.settings import Settings
from starop.utils.errors import retry_on_conflict
from starop.utils.fingerprint import workload_fingerprint
from starop.utils.helpers import deep_compare_dict, parse_properties, prune_nulls
from starop.utils.objects import attr

module_logger = logging.getLogger(__name__)


class ComponentController(BaseResource):
    """Base tier controller.

    Subclasses set ``tier`` and implement ``sync_resources``; everything
    else (preconditions, teardown, gated apply, status) lives here.
    """

    tier: TierKind
    workload_kind: WorkloadKind = WorkloadKind.STATEFUL_SET

    #: Status keys that survive the per-pass recomputation of a tier status
    PRESERVED_STATUS_KEYS = (UPGRADE_STATE_KEY,)

    def __init__(
        self,
        sr_cluster: StarRocksCluster,
        registry: ApiRegistry,
        conf: Settings,
        sensor: OperatorSensor,
        logger: Logger = None,
    ):
        component_name = StarRocksClusterResources.component_name(sr_cluster.name, self.tier)
        super().__init__(
            sr_cluster.name,
            sr_cluster.namespace,
            component_name,
            Labels.generate_default_labels(
                sr_cluster.name, self.tier.value, component_name, self.STARROCKS_OPERATOR_NAME
            ),
        )
        self.sr_cluster = sr_cluster
        self.registry = registry
        self.conf = conf
        self.sensor = sensor
        self.logger = logger or module_logger
        self._teardown_complete = False
        self.volume_errors: List[str] = []

    @property
    def name(self) -> str:
        return self.tier.value

    @property
    def spec(self):
        return self.sr_cluster.tier_spec(self.tier)

    @property
    def service_name(self) -> str:
        return StarRocksClusterResources.service_name(self.cluster, self.tier)

    @property
    def search_service_name(self) -> str:
        return StarRocksClusterResources.search_service_name(self.cluster, self.tier)

    def resource_names(self) -> List[str]:
        return [self.component_name, self.service_name, self.search_service_name]

    @property
    def aggregator(self) -> StatusAggregator:
        return StatusAggregator(
            self.registry,
            self.cluster,
            self.namespace,
            self.component_name,
            self.labels,
            self.workload_kind,
        )

    @property
    def volume_expander(self) -> VolumeExpander:
        return VolumeExpander(
            self.cluster, self.namespace, self.component_name, self.labels, self.registry, self.logger
        )

    # ------------------------------------------------------------------
    # Controller contract
    # ------------------------------------------------------------------

    async def sync_cluster(self) -> None:
        spec = self.spec
        if spec is None:
            await self.clear_resources()
            return
        if self.tier is not TierKind.FRONTEND:
            if self.sr_cluster.dr_active:
                self.logger.info(f"Disaster recovery in progress, skipping {self.name} sync")
                return
            if not await self.frontend_reachable():
                self.logger.info(f"FE service has no ready endpoints yet, skipping {self.name} sync")
                return
        await self.sync_resources(spec)

    async def sync_resources(self, spec) -> None:
        raise NotImplementedError()

    async def update_cluster_status(self) -> None:
        if self.spec is None:
            if not self._teardown_complete:
                await self.clear_resources()
            self.sr_cluster.set_tier_status(self.tier, None)
            return
        previous = self.sr_cluster.tier_status(self.tier) or {}
        status: Dict[str, Any] = {
            "serviceName": self.service_name,
            "resourceNames": self.resource_names(),
        }
        status.update(await self.aggregator.compute())
        for key in self.PRESERVED_STATUS_KEYS:
            if previous.get(key) is not None:
                status[key] = previous[key]
        if self.volume_errors:
            status["volumeExpansionErrors"] = list(self.volume_errors)
        await self.extend_status(status)
        self.sr_cluster.set_tier_status(self.tier, status)

    async def extend_status(self, status: Dict[str, Any]) -> None:
        """Hook for tier specific status fields."""

    async def clear_resources(self) -> None:
        """Delete the workload and services of this tier. Absence counts as success."""
        apps_v1_api = self.registry.apps_v1_api
        core_v1_api = self.registry.core_v1_api
        if self.workload_kind is WorkloadKind.STATEFUL_SET:
            await self.delete_stateful_set(apps_v1_api, self.component_name, self.namespace)
        else:
            await self.delete_deployment(apps_v1_api, self.component_name, self.namespace)
        await self.delete_service(core_v1_api, self.service_name, self.namespace)
        if self.tier.is_stateful:
            await self.delete_service(core_v1_api, self.search_service_name, self.namespace)
        await self.clear_extra_resources()
        self._teardown_complete = True

    async def clear_extra_resources(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Preconditions and configuration
    # ------------------------------------------------------------------

    async def frontend_reachable(self) -> bool:
        """True once the FE external service has at least one ready address."""
        endpoints = await self.fetch_endpoints(
            self.registry.core_v1_api,
            StarRocksClusterResources.service_name(self.cluster, TierKind.FRONTEND),
            self.namespace,
        )
        if endpoints is None:
            return False
        return any(subset.addresses for subset in endpoints.subsets or [])

    async def resolve_config(self, spec) -> Dict[str, str]:
        """Properties referenced by ``configMapInfo``; empty when not configured or missing."""
        info = spec.config_map_info if spec is not None else None
        if info is None or not info.config_map_name or not info.resolve_key:
            return {}
        config_map = await self.fetch_config_map(
            self.registry.core_v1_api, info.config_map_name, self.namespace
        )
        if config_map is None or not config_map.data:
            self.logger.warning(
                f"ConfigMap {info.config_map_name} not found or empty, using default {self.name} config"
            )
            return {}
        return parse_properties(config_map.data.get(info.resolve_key))

    # ------------------------------------------------------------------
    # Gated apply
    # ------------------------------------------------------------------

    async def _tracked(
        self,
        operation: str,
        resource_type: str,
        resource_name: str,
        call: Callable[[], Awaitable[Any]],
    ) -> None:
        state = self.sensor.on_resource_sync_start(
            self.cluster, self.tier.value, resource_name, self.namespace, resource_type
        )
        try:
            await call()
        except Exception as e:
            self.sensor.on_resource_sync_complete(
                self.cluster,
                self.tier.value,
                resource_name,
                self.namespace,
                resource_type,
                state,
                operation,
                False,
                e,
            )
            raise
        self.sensor.on_resource_sync_complete(
            self.cluster,
            self.tier.value,
            resource_name,
            self.namespace,
            resource_type,
            state,
            operation,
            True,
        )
        self.logger.info(f"{resource_type} {resource_name}: {operation} ok")

    def _drift(self, resource_type: str, resource_name: str, current: Dict, wanted: Dict) -> None:
        fields = [k for k in wanted if not deep_compare_dict(current.get(k), wanted[k])]
        self.logger.info(f"{resource_type} {resource_name} drifted: {', '.join(fields)}")
        self.sensor.on_resource_drift_detected(
            self.cluster, self.tier.value, resource_name, self.namespace, resource_type, fields
        )

    async def _retry(self, fn: Callable[[], Awaitable[Any]], description: str):
        return await retry_on_conflict(
            fn,
            attempts=self.conf.conflict_retry_attempts,
            base_delay=self.conf.conflict_retry_base_delay_seconds,
            max_delay=self.conf.conflict_retry_max_delay_seconds,
            description=description,
        )

    def target_replicas(
        self,
        live_replicas: Optional[int],
        desired_replicas: Optional[int],
        keep_live_replicas: bool,
        allow_scale_to_one: bool,
    ) -> Optional[int]:
        if keep_live_replicas or desired_replicas is None:
            return live_replicas
        if (
            desired_replicas == 1
            and (live_replicas or 0) > 1
            and not allow_scale_to_one
            and not self.conf.enable_scale_to_one
        ):
            self.logger.warning(
                f"Refusing to scale {self.component_name} from {live_replicas} to 1 replica; "
                f"set ENABLE_SCALE_TO_ONE to allow it"
            )
            return live_replicas
        return desired_replicas

    async def _apply_workload(
        self,
        desired,
        resource_type: str,
        fetch,
        create,
        patch,
        strategy_field: str,
        keep_live_replicas: bool,
        allow_scale_to_one: bool,
    ):
        """Create or patch a workload. Returns the live object it found, if any."""
        digest = workload_fingerprint(prune_nulls(desired.to_dict()))
        desired.metadata.annotations = {
            **(desired.metadata.annotations or {}),
            **self.prepare_hash_annotation(digest),
        }
        name = desired.metadata.name
        apps_v1_api = self.registry.apps_v1_api

        async def _apply():
            live = await fetch(apps_v1_api, name, self.namespace)
            if live is None:
                await self._tracked(
                    "create", resource_type, name,
                    lambda: create(apps_v1_api, self.namespace, desired),
                )
                return None
            live_annotations = live.metadata.annotations or {}
            replicas = self.target_replicas(
                live.spec.replicas, desired.spec.replicas, keep_live_replicas, allow_scale_to_one
            )
            current = {
                "hash": live_annotations.get(Labels.HASH_ANNOTATION),
                "replicas": live.spec.replicas,
                "labels": live.metadata.labels or {},
            }
            wanted = {
                "hash": digest,
                "replicas": replicas,
                "labels": desired.metadata.labels or {},
            }
            if deep_compare_dict(current, wanted):
                return live
            self._drift(resource_type, name, current, wanted)
            strategy = getattr(desired.spec, _SNAKE[strategy_field])
            body = [
                {"op": "add", "path": "/metadata/resourceVersion", "value": live.metadata.resource_version},
                {"op": "add", "path": "/metadata/labels", "value": desired.metadata.labels},
                {"op": "add", "path": "/metadata/annotations", "value": {**live_annotations, **desired.metadata.annotations}},
                {"op": "add", "path": "/spec/template", "value": desired.spec.template},
                {"op": "add", "path": f"/spec/{strategy_field}", "value": strategy},
            ]
            if replicas is not None:
                body.append({"op": "add", "path": "/spec/replicas", "value": replicas})
            await self._tracked(
                "update", resource_type, name,
                lambda: patch(apps_v1_api, name, self.namespace, body),
            )
            return live

        return await self._retry(_apply, f"{resource_type} {name}")

    async def apply_stateful_set(
        self,
        desired: V1StatefulSet,
        keep_live_replicas: bool = False,
        allow_scale_to_one: bool = False,
    ) -> None:
        """Create or update a StatefulSet.

        Immutable fields (selector, serviceName, podManagementPolicy and
        volumeClaimTemplates) are never sent on update, so the live values stay.
        Larger claim templates are rolled out by resizing the live claims.
        """
        live = await self._apply_workload(
            desired,
            "StatefulSet",
            self.fetch_stateful_set,
            self.create_stateful_set,
            self.patch_stateful_set,
            "updateStrategy",
            keep_live_replicas,
            allow_scale_to_one,
        )
        if live is not None and desired.spec.volume_claim_templates:
            await self.expand_volumes(live, desired)

    async def expand_volumes(self, live: V1StatefulSet, desired: V1StatefulSet) -> None:
        expander = self.volume_expander
        plan = await expander.plan(live, desired)
        self.volume_errors = plan.errors
        for reason in plan.errors:
            self.logger.warning(f"StatefulSet {desired.metadata.name}: {reason}")
        for claim in plan.claims:
            await self._tracked(
                "expand", "PersistentVolumeClaim", claim.claim_name,
                lambda claim=claim: expander.expand(claim),
            )

    async def apply_deployment(self, desired: V1Deployment) -> None:
        await self._apply_workload(
            desired,
            "Deployment",
            self.fetch_deployment,
            self.create_deployment,
            self.patch_deployment,
            "strategy",
            False,
            True,
        )

    async def apply_service(self, desired: V1Service) -> None:
        name = desired.metadata.name
        core_v1_api = self.registry.core_v1_api

        async def _apply():
            live = await self.fetch_service(core_v1_api, name, self.namespace)
            if live is None:
                await self._tracked(
                    "create", "Service", name,
                    lambda: self.create_service(core_v1_api, self.namespace, desired),
                )
                return
            _keep_allocated_node_ports(desired, live)
            current = service_watch_fields(live, desired)
            wanted = service_watch_fields(desired, desired)
            if deep_compare_dict(current, wanted):
                return
            self._drift("Service", name, current, wanted)
            body = [
                {"op": "add", "path": "/metadata/resourceVersion", "value": live.metadata.resource_version},
                {"op": "add", "path": "/metadata/labels", "value": desired.metadata.labels},
                {
                    "op": "add",
                    "path": "/metadata/annotations",
                    "value": {**(live.metadata.annotations or {}), **(desired.metadata.annotations or {})},
                },
                {"op": "add", "path": "/spec/selector", "value": desired.spec.selector},
                {"op": "add", "path": "/spec/ports", "value": desired.spec.ports},
            ]
            if desired.spec.type:
                body.append({"op": "add", "path": "/spec/type", "value": desired.spec.type})
            await self._tracked(
                "update", "Service", name,
                lambda: self.patch_service(core_v1_api, name, self.namespace, body),
            )

        await self._retry(_apply, f"Service {name}")

    async def apply_config_map(self, desired: V1ConfigMap) -> None:
        name = desired.metadata.name
        core_v1_api = self.registry.core_v1_api

        async def _apply():
            live = await self.fetch_config_map(core_v1_api, name, self.namespace)
            if live is None:
                await self._tracked(
                    "create", "ConfigMap", name,
                    lambda: self.create_config_map(core_v1_api, self.namespace, desired),
                )
                return
            current = {"labels": live.metadata.labels or {}, "data": live.data or {}}
            wanted = {"labels": desired.metadata.labels or {}, "data": desired.data or {}}
            if deep_compare_dict(current, wanted):
                return
            self._drift("ConfigMap", name, current, wanted)
            body = [
                {"op": "add", "path": "/metadata/resourceVersion", "value": live.metadata.resource_version},
                {"op": "add", "path": "/metadata/labels", "value": desired.metadata.labels},
                {"op": "add", "path": "/data", "value": desired.data},
            ]
            await self._tracked(
                "update", "ConfigMap", name,
                lambda: self.patch_config_map(core_v1_api, name, self.namespace, body),
            )

        await self._retry(_apply, f"ConfigMap {name}")


_SNAKE = {"updateStrategy": "update_strategy", "strategy": "strategy"}


def _keep_allocated_node_ports(desired: V1Service, live: V1Service) -> None:
    """Reuse node ports the API server allocated so updates do not reshuffle them."""
    if desired.spec.type not in ("NodePort", "LoadBalancer"):
        return
    allocated = {p.name: p.node_port for p in attr(live, "spec", "ports", default=[]) if p.node_port}
    for port in desired.spec.ports or []:
        if port.node_port is None and port.name in allocated:
            port.node_port = allocated[port.name]


def service_watch_fields(service: V1Service, desired: V1Service) -> Dict[str, Any]:
    """Project the fields this operator owns. Node ports only count where they are pinned."""
    pinned = {p.name for p in desired.spec.ports or [] if p.node_port}
    wanted_annotations = desired.metadata.annotations or {}
    annotations = service.metadata.annotations or {}
    return {
        "labels": service.metadata.labels or {},
        "annotations": {k: annotations.get(k) for k in wanted_annotations},
        "type": service.spec.type or "ClusterIP",
        "selector": service.spec.selector or {},
        "ports": [
            {
                "name": p.name,
                "port": p.port,
                "target_port": p.target_port,
                "protocol": p.protocol or "TCP",
                "node_port": p.node_port if p.name in pinned else None,
            }
            for p in service.spec.ports or []
        ],
    }
