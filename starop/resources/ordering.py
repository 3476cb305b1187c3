"""Which order the tier controllers run in.

A fresh cluster needs the frontend first: workers register with it. A live
image upgrade rolls the workers before the frontend, which is the upgrade
procedure StarRocks documents.
"""
import logging
from enum import Enum
from typing import Dict, List, Sequence, TypeVar

from starop.common.models.tier import TierKind
from starop.resources.base import BaseResource
from starop.resources.cluster import StarRocksCluster
from starop.resources.registry import ApiRegistry
from starop.resources.templates import workload_image
from starop.types.models.cluster_resources import StarRocksClusterResources
from starop.types.models.status import ClusterPhase, UpgradePhase

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATEFUL_TIERS = (TierKind.FRONTEND, TierKind.BACKEND, TierKind.COMPUTE)

#: Upgrade phases during which the cluster counts as mid-upgrade regardless of its phase
ACTIVE_UPGRADE_PHASES = (UpgradePhase.READY.value, UpgradePhase.IN_PROGRESS.value)


class Scenario(Enum):
    FRESH_DEPLOY = "FreshDeploy"
    UPGRADE = "Upgrade"


ORDERS: Dict[Scenario, Sequence[TierKind]] = {
    Scenario.FRESH_DEPLOY: (TierKind.FRONTEND, TierKind.BACKEND, TierKind.COMPUTE, TierKind.PROXY),
    Scenario.UPGRADE: (TierKind.BACKEND, TierKind.COMPUTE, TierKind.FRONTEND, TierKind.PROXY),
}


async def live_images(registry: ApiRegistry, sr_cluster: StarRocksCluster) -> Dict[TierKind, str]:
    """Container image of each live tier StatefulSet. Absent workloads are left out."""
    reader = BaseResource(sr_cluster.name, sr_cluster.namespace, "", None)
    images = {}
    for tier in STATEFUL_TIERS:
        sts = await reader.fetch_stateful_set(
            registry.apps_v1_api,
            StarRocksClusterResources.component_name(sr_cluster.name, tier),
            sr_cluster.namespace,
        )
        image = workload_image(sts, tier.container_name)
        if image:
            images[tier] = image
    return images


def image_changes(sr_cluster: StarRocksCluster, images: Dict[TierKind, str]) -> List[TierKind]:
    changed = []
    for tier in STATEFUL_TIERS:
        spec = sr_cluster.tier_spec(tier)
        if spec is None or tier not in images:
            continue
        if spec.image != images[tier]:
            changed.append(tier)
    return changed


def upgrade_underway(sr_cluster: StarRocksCluster) -> bool:
    return any(
        (sr_cluster.upgrade_state(tier) or {}).get("phase") in ACTIVE_UPGRADE_PHASES
        for tier in STATEFUL_TIERS
    )


def detect_scenario(sr_cluster: StarRocksCluster, images: Dict[TierKind, str]) -> Scenario:
    """Upgrade when a running cluster's live images differ from the desired ones.

    Without a live frontend StatefulSet this is a fresh deploy, even if
    worker StatefulSets exist, so the frontend is recreated first.
    """
    if TierKind.FRONTEND not in images:
        if images:
            logger.warning(
                f"{sr_cluster.name}: worker StatefulSets exist without a frontend, treating as fresh deploy"
            )
        return Scenario.FRESH_DEPLOY
    changed = image_changes(sr_cluster, images)
    if not changed:
        return Scenario.FRESH_DEPLOY
    if sr_cluster.phase == ClusterPhase.RUNNING.value or upgrade_underway(sr_cluster):
        logger.info(
            f"{sr_cluster.name}: image change detected on {', '.join(t.value for t in changed)}, "
            f"using upgrade order"
        )
        return Scenario.UPGRADE
    return Scenario.FRESH_DEPLOY


def order_for(scenario: Scenario, controllers: Dict[TierKind, T]) -> List[T]:
    return [controllers[tier] for tier in ORDERS[scenario]]
