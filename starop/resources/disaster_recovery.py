"""Snapshot restore of the frontend tier.

A restore cycle is armed by bumping ``disasterRecovery.generation`` on a
shared-data cluster. While it runs, the frontend StatefulSet is rewritten to
a single replica that boots from the mounted cluster snapshot, and every
other tier is left alone. The cycle moves todo -> doing -> done;
``observedGeneration`` only advances when done is reached.
"""
import copy
import logging
from logging import Logger
from typing import Any, Dict, List, Mapping, Optional, Tuple

from kubernetes_asyncio.client import V1EnvVar, V1Pod, V1StatefulSet

from starop.common.models.tier import TierKind
from starop.resources.templates import SEARCH_PORT_KEY, get_port, port_ready_probe
from starop.types.models.cluster_spec import DisasterRecoverySpec
from starop.types.models.component_spec import MountReference
from starop.types.models.status import DisasterRecoveryPhase
from starop.utils.errors import DisasterRecoveryPending
from starop.utils.helpers import now

module_logger = logging.getLogger(__name__)

SHARED_DATA_RUN_MODE = "shared_data"
SNAPSHOT_MANIFEST = "cluster_snapshot.yaml"
RESTORE_GENERATION_ENV = "RESTORE_CLUSTER_GENERATION"
RESTORE_SNAPSHOT_ENV = "RESTORE_CLUSTER_SNAPSHOT"
DOING_REASON = "disaster recovery is in progress"
DONE_REASON = "disaster recovery is done"
MANIFEST_MISSING_REASON = f"{SNAPSHOT_MANIFEST} is not mounted"


def should_enter(
    dr_spec: Optional[DisasterRecoverySpec],
    dr_status: Optional[Mapping[str, Any]],
    fe_config: Mapping[str, str],
) -> Tuple[bool, int]:
    """Decide whether this pass runs the restore cycle.

    Returns the decision and the frontend query port the restore readiness
    probe should use.
    """
    query_port = get_port(TierKind.FRONTEND, fe_config, SEARCH_PORT_KEY[TierKind.FRONTEND])
    if fe_config.get("run_mode") != SHARED_DATA_RUN_MODE:
        return False, query_port
    if dr_spec is None or not dr_spec.enabled:
        return False, query_port
    if not dr_status:
        return True, query_port
    observed = dr_status.get("observedGeneration") or 0
    if dr_spec.generation > observed:
        return True, query_port
    if dr_spec.generation == observed and dr_status.get("phase") != DisasterRecoveryPhase.DONE.value:
        return True, query_port
    return False, query_port


def new_cycle(previous: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    return {
        "phase": DisasterRecoveryPhase.TODO.value,
        "observedGeneration": (previous or {}).get("observedGeneration") or 0,
        "startTimestamp": now(),
    }


def has_cluster_snapshot_conf(config_maps: List[MountReference]) -> bool:
    for ref in config_maps or []:
        if ref.sub_path and SNAPSHOT_MANIFEST in ref.sub_path:
            return True
        mount_path = (ref.mount_path or "").rstrip("/")
        if mount_path.endswith("fe/conf"):
            return True
    return False


def rewrite_stateful_set(sts: V1StatefulSet, generation: int, query_port: int) -> V1StatefulSet:
    """Return a copy of the frontend StatefulSet switched to restore mode."""
    restored = copy.deepcopy(sts)
    restored.spec.replicas = 1
    for container in restored.spec.template.spec.containers:
        if container.name != TierKind.FRONTEND.container_name:
            continue
        container.startup_probe = None
        container.liveness_probe = None
        container.readiness_probe = port_ready_probe(query_port)
        markers = {RESTORE_GENERATION_ENV: str(generation), RESTORE_SNAPSHOT_ENV: "true"}
        env = [e for e in container.env or [] if e.name not in markers]
        env.extend(V1EnvVar(name=name, value=value) for name, value in markers.items())
        container.env = env
    return restored


def pod_restored(pod: V1Pod, generation: int) -> bool:
    """The pod runs the restore generation and its frontend container is ready."""
    container_name = TierKind.FRONTEND.container_name
    marker = None
    for container in pod.spec.containers or []:
        if container.name == container_name:
            for env in container.env or []:
                if env.name == RESTORE_GENERATION_ENV:
                    marker = env.value
    if marker != str(generation):
        return False
    statuses = (pod.status.container_statuses if pod.status else None) or []
    ready = [s for s in statuses if s.name == container_name]
    return bool(ready) and all(s.ready for s in ready)


class DisasterRecoveryController:
    """Drives one restore cycle on behalf of the frontend controller."""

    def __init__(self, frontend, logger: Logger = None):
        self.frontend = frontend
        self.sr_cluster = frontend.sr_cluster
        self.logger = logger or frontend.logger or module_logger

    async def reconcile(self, desired: V1StatefulSet, fe_config: Mapping[str, str]) -> bool:
        """Run one step of the cycle.

        Returns True when the restore cycle owns the frontend StatefulSet this
        pass, so the regular apply must be skipped.
        """
        dr_spec = self.sr_cluster.spec.disaster_recovery
        dr_status = self.sr_cluster.dr_status
        enter, query_port = should_enter(dr_spec, dr_status, fe_config)
        if not enter:
            return False

        if not dr_status or (
            dr_spec.generation > (dr_status.get("observedGeneration") or 0)
            and dr_status.get("phase") == DisasterRecoveryPhase.DONE.value
        ):
            dr_status = new_cycle(dr_status)
            self.logger.info(f"Starting disaster recovery for generation {dr_spec.generation}")
            self._set(dr_status)
        else:
            dr_status = dict(dr_status)

        phase = dr_status.get("phase")
        if phase == DisasterRecoveryPhase.TODO.value:
            try:
                self.check_manifest()
            except DisasterRecoveryPending as e:
                self.logger.warning(f"Disaster recovery waiting: {e}")
                dr_status["reason"] = str(e)
                self._set(dr_status)
                return True
            await self.apply_restore(desired, dr_spec.generation, query_port)
            dr_status["phase"] = DisasterRecoveryPhase.DOING.value
            dr_status["reason"] = DOING_REASON
            self._set(dr_status)
            return True

        await self.apply_restore(desired, dr_spec.generation, query_port)
        if await self.frontend_restored(dr_spec.generation):
            dr_status["phase"] = DisasterRecoveryPhase.DONE.value
            dr_status["observedGeneration"] = dr_spec.generation
            dr_status["endTimestamp"] = now()
            dr_status["reason"] = DONE_REASON
            self.logger.info(f"Disaster recovery for generation {dr_spec.generation} is done")
            self._set(dr_status)
        elif dr_status.get("reason") != DOING_REASON:
            dr_status["reason"] = DOING_REASON
            self._set(dr_status)
        return True

    def check_manifest(self) -> None:
        spec = self.sr_cluster.tier_spec(TierKind.FRONTEND)
        if not has_cluster_snapshot_conf(spec.config_maps):
            raise DisasterRecoveryPending(MANIFEST_MISSING_REASON)

    async def apply_restore(self, desired: V1StatefulSet, generation: int, query_port: int) -> None:
        await self.frontend.apply_stateful_set(
            rewrite_stateful_set(desired, generation, query_port), allow_scale_to_one=True
        )

    async def frontend_restored(self, generation: int) -> bool:
        frontend = self.frontend
        pods = await frontend.list_pods(
            frontend.registry.core_v1_api, frontend.namespace, frontend.labels.selector().as_dict()
        )
        items = pods.items or []
        return bool(items) and all(pod_restored(pod, generation) for pod in items)

    def _set(self, dr_status: Dict[str, Any]) -> None:
        previous = (self.sr_cluster.dr_status or {}).get("phase")
        self.sr_cluster.set_dr_status(dict(dr_status))
        if previous != dr_status["phase"]:
            self.frontend.sensor.on_disaster_recovery_phase(
                self.sr_cluster.name, self.sr_cluster.namespace, dr_status["phase"]
            )
