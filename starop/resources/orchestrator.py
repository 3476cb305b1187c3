"""One reconcile pass over a StarRocksCluster.

The pass is: read the object, let the upgrade manager gate it, run the tier
controllers in the order the scenario calls for, then either persist a spec
the controllers mutated or recompute and persist the status. Every write is
a read-modify-write retried on conflict.
"""
import logging
from logging import Logger
from typing import Dict, NamedTuple, Optional

from kubernetes_asyncio.client import ApiException

from starop.common.models.tier import STATUS_ORDER, TierKind
from starop.resources.backend import BackendController
from starop.resources.base import BaseResource
from starop.resources.cluster import StarRocksCluster
from starop.resources.component import ComponentController
from starop.resources.compute import ComputeController
from starop.resources.feproxy import FeProxyController
from starop.resources.frontend import FrontendController
from starop.resources.ordering import detect_scenario, live_images, order_for
from starop.resources.registry import ApiRegistry
from starop.sensors.base import OperatorSensor
from starop.types.models.status import ClusterPhase, ComponentPhase
from starop.types.settings import Settings
from starop.upgrade.custom_hooks import CommandExecutor
from starop.upgrade.manager import UpgradeManager
from starop.utils.errors import UpgradeFailedError, retry_on_conflict
from starop.utils.helpers import deep_compare_dict

module_logger = logging.getLogger(__name__)

CONTROLLER_TYPES = {
    TierKind.FRONTEND: FrontendController,
    TierKind.BACKEND: BackendController,
    TierKind.COMPUTE: ComputeController,
    TierKind.PROXY: FeProxyController,
}


class ReconcileResult(NamedTuple):
    requeue: bool = False
    delay: Optional[float] = None


def cluster_phase(sr_cluster: StarRocksCluster) -> ClusterPhase:
    """The phase of the first tier (in status order) that is not running."""
    seen = False
    for tier in STATUS_ORDER:
        status = sr_cluster.tier_status(tier)
        if not status or not status.get("phase"):
            continue
        seen = True
        if status["phase"] == ComponentPhase.FAILED.value:
            return ClusterPhase.FAILED
        if status["phase"] == ComponentPhase.RECONCILING.value:
            return ClusterPhase.RECONCILING
    return ClusterPhase.RUNNING if seen else ClusterPhase.PENDING


class Orchestrator(BaseResource):
    """Drives the tier controllers for one StarRocksCluster."""

    def __init__(
        self,
        registry: ApiRegistry,
        conf: Settings,
        sensor: OperatorSensor,
        logger: Logger = None,
        upgrade_manager: UpgradeManager = None,
        command_executor: CommandExecutor = None,
    ):
        super().__init__(None, None, None, None)
        self.registry = registry
        self.conf = conf
        self.sensor = sensor
        self.logger = logger or module_logger
        self.upgrade_manager = upgrade_manager or UpgradeManager(
            registry, conf, sensor, command_executor=command_executor, logger=self.logger
        )

    def controllers(self, sr_cluster: StarRocksCluster) -> Dict[TierKind, ComponentController]:
        return {
            tier: controller_type(sr_cluster, self.registry, self.conf, self.sensor, self.logger)
            for tier, controller_type in CONTROLLER_TYPES.items()
        }

    def requeue(self) -> ReconcileResult:
        return ReconcileResult(True, self.conf.requeue_delay_seconds)

    async def fetch(self, name: str, namespace: str) -> Optional[StarRocksCluster]:
        body = await self.get_custom_object(
            self.registry.custom_objects_api,
            namespace,
            StarRocksCluster.GROUP,
            StarRocksCluster.VERSION,
            StarRocksCluster.PLURAL,
            name,
        )
        return StarRocksCluster(body) if body is not None else None

    async def reconcile(self, name: str, namespace: str) -> ReconcileResult:
        sr_cluster = await self.fetch(name, namespace)
        if sr_cluster is None:
            self.logger.info(f"StarRocksCluster {namespace}/{name} not found, nothing to do")
            return ReconcileResult()

        if sr_cluster.deleting:
            sr_cluster.set_phase(ClusterPhase.DELETING)
            await self.write_status_best_effort(sr_cluster)
            return ReconcileResult()

        fingerprint = sr_cluster.fingerprint()

        try:
            blocked_requeue = await self.upgrade_manager.reconcile(sr_cluster)
        except UpgradeFailedError as e:
            await self.fail(sr_cluster, f"upgrade failed: {e}")
            raise
        except Exception as e:
            await self.fail(sr_cluster, f"error from upgrade manager: {e}")
            raise
        if self.upgrade_manager.should_block_forward_convergence(sr_cluster):
            self.logger.info("Upgrade preparation in progress, holding back tier convergence")
            sr_cluster.set_phase(ClusterPhase.RECONCILING, "upgrade preparation in progress")
            await self.write_status(sr_cluster)
            return self.requeue()

        controllers = self.controllers(sr_cluster)
        try:
            scenario = detect_scenario(sr_cluster, await live_images(self.registry, sr_cluster))
        except Exception as e:
            await self.fail(sr_cluster, f"error detecting reconcile order: {e}")
            raise
        self.logger.debug(f"Reconciling {namespace}/{name} in {scenario.value} order")
        for controller in order_for(scenario, controllers):
            try:
                await controller.sync_cluster()
            except Exception as e:
                await self.fail(sr_cluster, f"error from {controller.name} controller: {e}")
                raise

        if sr_cluster.fingerprint() != fingerprint:
            self.logger.info(f"Spec of {namespace}/{name} changed during the pass, persisting it")
            await self.write_spec(sr_cluster)
            return self.requeue()

        for tier in STATUS_ORDER:
            controller = controllers[tier]
            try:
                await controller.update_cluster_status()
            except Exception as e:
                await self.fail(sr_cluster, f"error from {controller.name} controller status: {e}")
                raise
        phase = cluster_phase(sr_cluster)
        sr_cluster.set_phase(phase)
        await self.write_status(sr_cluster)
        self.sensor.on_cluster_phase(name, namespace, phase.value)
        return self.requeue() if blocked_requeue else ReconcileResult()

    async def fail(self, sr_cluster: StarRocksCluster, reason: str) -> None:
        """Mark the cluster failed and persist that as far as the API allows."""
        self.logger.error(reason)
        sr_cluster.set_phase(ClusterPhase.FAILED, reason)
        await self.write_status_best_effort(sr_cluster)

    async def _retry(self, fn, description: str):
        return await retry_on_conflict(
            fn,
            attempts=self.conf.conflict_retry_attempts,
            base_delay=self.conf.conflict_retry_base_delay_seconds,
            max_delay=self.conf.conflict_retry_max_delay_seconds,
            description=description,
        )

    async def write_spec(self, sr_cluster: StarRocksCluster) -> None:
        """Persist the spec mutations of this pass on top of the latest object.

        Only the recorded mutations are replayed, so concurrent user edits to
        the spec survive.
        """
        custom_objects_api = self.registry.custom_objects_api

        async def _write():
            latest = await self.fetch(sr_cluster.name, sr_cluster.namespace)
            if latest is None:
                return
            if not sr_cluster.replay_spec_mutations(latest):
                return
            body = latest.body
            await self.replace_custom_object(
                custom_objects_api,
                sr_cluster.namespace,
                StarRocksCluster.GROUP,
                StarRocksCluster.VERSION,
                StarRocksCluster.PLURAL,
                sr_cluster.name,
                body,
            )

        await self._retry(_write, f"spec of {sr_cluster.namespace}/{sr_cluster.name}")

    async def write_status(self, sr_cluster: StarRocksCluster) -> None:
        custom_objects_api = self.registry.custom_objects_api

        async def _write():
            latest = await self.fetch(sr_cluster.name, sr_cluster.namespace)
            if latest is None:
                return
            if deep_compare_dict(latest.status, sr_cluster.status):
                return
            body = latest.body
            body["status"] = sr_cluster.status
            await custom_objects_api.replace_namespaced_custom_object_status(
                group=StarRocksCluster.GROUP,
                version=StarRocksCluster.VERSION,
                namespace=sr_cluster.namespace,
                plural=StarRocksCluster.PLURAL,
                name=sr_cluster.name,
                body=body,
            )

        await self._retry(_write, f"status of {sr_cluster.namespace}/{sr_cluster.name}")
        self.sensor.on_status_update(sr_cluster.name, sr_cluster.namespace, "status")

    async def write_status_best_effort(self, sr_cluster: StarRocksCluster) -> None:
        try:
            await self.write_status(sr_cluster)
        except ApiException as e:
            self.logger.warning(f"Failed to write status of {sr_cluster.namespace}/{sr_cluster.name}: {e.reason}")
