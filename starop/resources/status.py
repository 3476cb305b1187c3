"""Tier phase aggregation.

Pod readiness alone is not enough during a rolling update: old replicas stay
ready while new ones are still arriving. A tier is only ``running`` once no
pod is failed or creating and the owning workload reports its rollout done.
"""
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from kubernetes_asyncio.client import V1Pod

from starop.common.models.labels import Labels
from starop.resources.base import BaseResource
from starop.resources.registry import ApiRegistry
from starop.types.models.status import ComponentPhase
from starop.utils.objects import attr

logger = logging.getLogger(__name__)

#: Container waiting reasons that will not resolve without intervention
FAILED_WAITING_REASONS = frozenset(
    {
        "CrashLoopBackOff",
        "ImagePullBackOff",
        "ErrImagePull",
        "InvalidImageName",
        "CreateContainerConfigError",
        "CreateContainerError",
    }
)


class WorkloadKind(Enum):
    STATEFUL_SET = "StatefulSet"
    DEPLOYMENT = "Deployment"


class InstanceState(Enum):
    CREATING = "creating"
    READY = "ready"
    FAILED = "failed"


def _container_reason(pod: V1Pod) -> Optional[str]:
    for status in attr(pod, "status", "container_statuses", default=[]):
        waiting = attr(status, "state", "waiting")
        if waiting is not None and waiting.reason:
            return waiting.reason
        terminated = attr(status, "state", "terminated")
        if terminated is not None and terminated.reason:
            return terminated.reason
    return None


def failure_reason(pod: V1Pod) -> str:
    """Best human readable reason for a failed pod."""
    return (
        attr(pod, "status", "reason")
        or attr(pod, "status", "message")
        or _container_reason(pod)
        or attr(pod, "status", "phase", default="Unknown")
    )


def classify_pod(pod: V1Pod) -> InstanceState:
    phase = attr(pod, "status", "phase")
    statuses = attr(pod, "status", "container_statuses", default=[])
    if phase in ("Failed", "Unknown", "Succeeded"):
        return InstanceState.FAILED
    for status in statuses:
        reason = attr(status, "state", "waiting", "reason")
        if reason in FAILED_WAITING_REASONS:
            return InstanceState.FAILED
    if phase == "Running" and statuses and all(s.ready for s in statuses):
        return InstanceState.READY
    return InstanceState.CREATING


def rollout_complete(kind: WorkloadKind, workload) -> bool:
    """The workload's own view of whether its last spec change has fully rolled out."""
    if workload is None:
        return False
    generation = attr(workload, "metadata", "generation", default=0)
    status = workload.status
    if status is None or (status.observed_generation or 0) < generation:
        return False
    replicas = workload.spec.replicas if workload.spec.replicas is not None else 1
    if kind is WorkloadKind.STATEFUL_SET:
        return (
            status.current_revision == status.update_revision
            and (status.ready_replicas or 0) == replicas
        )
    return (
        (status.updated_replicas or 0) == replicas
        and (status.available_replicas or 0) == replicas
    )


def partition_pods(pods: List[V1Pod]) -> Tuple[List[str], List[str], List[str], Optional[str]]:
    """Split pods into (failed, creating, running) names plus the first failure reason."""
    failed, creating, running = [], [], []
    reason = None
    for pod in sorted(pods, key=lambda p: p.metadata.name):
        state = classify_pod(pod)
        if state is InstanceState.FAILED:
            failed.append(pod.metadata.name)
            if reason is None:
                reason = failure_reason(pod)
        elif state is InstanceState.CREATING:
            creating.append(pod.metadata.name)
        else:
            running.append(pod.metadata.name)
    return failed, creating, running, reason


class StatusAggregator(BaseResource):
    """Computes one tier's phase from its pods and its workload rollout."""

    def __init__(
        self,
        registry: ApiRegistry,
        cluster: str,
        namespace: str,
        component_name: str,
        labels: Labels,
        workload_kind: WorkloadKind,
    ):
        super().__init__(cluster, namespace, component_name, labels)
        self.registry = registry
        self.workload_kind = workload_kind

    async def fetch_workload(self):
        if self.workload_kind is WorkloadKind.STATEFUL_SET:
            return await self.fetch_stateful_set(
                self.registry.apps_v1_api, self.component_name, self.namespace
            )
        return await self.fetch_deployment(
            self.registry.apps_v1_api, self.component_name, self.namespace
        )

    async def compute(self) -> Dict[str, Any]:
        pods = await self.list_pods(
            self.registry.core_v1_api, self.namespace, self.labels.selector().as_dict()
        )
        failed, creating, running, reason = partition_pods(pods.items or [])
        status: Dict[str, Any] = {
            "failedInstances": failed,
            "creatingInstances": creating,
            "runningInstances": running,
        }
        if failed:
            status["phase"] = ComponentPhase.FAILED.value
            status["reason"] = reason
        elif creating:
            status["phase"] = ComponentPhase.RECONCILING.value
            status["reason"] = f"{len(creating)} instance(s) starting"
        else:
            workload = await self.fetch_workload()
            if rollout_complete(self.workload_kind, workload):
                status["phase"] = ComponentPhase.RUNNING.value
            else:
                status["phase"] = ComponentPhase.RECONCILING.value
                status["reason"] = (
                    f"{self.workload_kind.value} {self.component_name} not found"
                    if workload is None
                    else f"{self.workload_kind.value} {self.component_name} rollout in progress"
                )
        logger.debug(
            f"{self.component_name}: phase={status['phase']} failed={len(failed)} "
            f"creating={len(creating)} running={len(running)}"
        )
        return status
