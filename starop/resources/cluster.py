import copy
from typing import Any, Dict, List, Mapping, Optional

from kubernetes_asyncio.client import V1OwnerReference

from starop.common.models.tier import TierKind
from starop.types.models.cluster_spec import StarRocksClusterSpec
from starop.types.models.status import ClusterPhase, DisasterRecoveryPhase
from starop.types.schemas.cluster_spec import StarRocksClusterSpecSchema
from starop.utils.fingerprint import cluster_fingerprint
from starop.utils.objects import cached_property

DR_STATUS_KEY = "disasterRecoveryStatus"
UPGRADE_STATE_KEY = "upgradeState"


class StarRocksCluster:
    """In-memory working copy of one StarRocksCluster for a single pass.

    The raw ``spec`` dict stays the source of truth so that any mutation made
    during the pass (clearing replicas under an autoscaler) is visible to the
    fingerprint. ``status`` starts from the observed status so the upgrade and
    disaster recovery histories carry over; everything else in it is
    recomputed before being written back.
    """

    GROUP = "starrocks.com"
    VERSION = "v1"
    PLURAL = "starrocksclusters"
    KIND = "StarRocksCluster"

    def __init__(self, body: Mapping[str, Any]) -> None:
        self.body: Dict[str, Any] = copy.deepcopy(dict(body))
        self.metadata: Dict[str, Any] = self.body.setdefault("metadata", {})
        if not self.body.get("spec"):
            self.body["spec"] = {}
        self.raw_spec: Dict[str, Any] = self.body["spec"]
        self.status: Dict[str, Any] = copy.deepcopy(self.body.get("status") or {})
        self.cleared_replicas: List[TierKind] = []

    @property
    def name(self) -> str:
        return self.metadata.get("name")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace")

    @property
    def uid(self) -> str:
        return self.metadata.get("uid")

    @property
    def generation(self) -> int:
        return self.metadata.get("generation") or 0

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @property
    def deleting(self) -> bool:
        return bool(self.metadata.get("deletionTimestamp"))

    @cached_property
    def spec(self) -> StarRocksClusterSpec:
        return StarRocksClusterSpecSchema().load(self.raw_spec)

    def fingerprint(self) -> str:
        return cluster_fingerprint(self.body)

    def tier_spec(self, tier: TierKind):
        return {
            TierKind.FRONTEND: self.spec.fe,
            TierKind.BACKEND: self.spec.be,
            TierKind.COMPUTE: self.spec.cn,
            TierKind.PROXY: self.spec.fe_proxy,
        }[tier]

    def clear_replicas(self, tier: TierKind) -> None:
        """Drop the explicit replica count of a tier (an autoscaler owns it)."""
        raw = self.raw_spec.get(tier.spec_key)
        if raw is not None and "replicas" in raw:
            del raw["replicas"]
            if tier not in self.cleared_replicas:
                self.cleared_replicas.append(tier)
        spec = self.tier_spec(tier)
        if spec is not None:
            spec.replicas = None

    def replay_spec_mutations(self, latest: "StarRocksCluster") -> bool:
        """Apply the mutations made during this pass onto a fresher copy.

        Only the cleared replica counts are carried over, and only for tiers
        that are still autoscaled in ``latest``. Returns True when ``latest``
        changed.
        """
        changed = False
        for tier in self.cleared_replicas:
            raw = latest.raw_spec.get(tier.spec_key) or {}
            if raw.get("autoScalingPolicy") is None or "replicas" not in raw:
                continue
            latest.clear_replicas(tier)
            changed = True
        return changed

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def phase(self) -> Optional[str]:
        return self.status.get("phase")

    def set_phase(self, phase: ClusterPhase, reason: str = None) -> None:
        self.status["phase"] = phase.value
        if reason is None:
            self.status.pop("reason", None)
        else:
            self.status["reason"] = reason

    def tier_status(self, tier: TierKind) -> Optional[Dict[str, Any]]:
        return self.status.get(tier.status_key)

    def set_tier_status(self, tier: TierKind, status: Optional[Dict[str, Any]]) -> None:
        if status is None:
            self.status.pop(tier.status_key, None)
        else:
            self.status[tier.status_key] = status

    def upgrade_state(self, tier: TierKind) -> Optional[Dict[str, Any]]:
        return (self.tier_status(tier) or {}).get(UPGRADE_STATE_KEY)

    def set_upgrade_state(self, tier: TierKind, state: Optional[Dict[str, Any]]) -> None:
        status = self.status.setdefault(tier.status_key, {})
        if state is None:
            status.pop(UPGRADE_STATE_KEY, None)
        else:
            status[UPGRADE_STATE_KEY] = state

    @property
    def dr_status(self) -> Optional[Dict[str, Any]]:
        return (self.tier_status(TierKind.FRONTEND) or {}).get(DR_STATUS_KEY)

    def set_dr_status(self, dr_status: Optional[Dict[str, Any]]) -> None:
        status = self.status.setdefault(TierKind.FRONTEND.status_key, {})
        if dr_status is None:
            status.pop(DR_STATUS_KEY, None)
        else:
            status[DR_STATUS_KEY] = dr_status

    @property
    def dr_active(self) -> bool:
        """A restore cycle is running; non-frontend tiers must stay untouched."""
        dr_spec = self.spec.disaster_recovery
        if dr_spec is None or not dr_spec.enabled:
            return False
        dr_status = self.dr_status
        return bool(dr_status) and dr_status.get("phase") in (
            DisasterRecoveryPhase.TODO.value,
            DisasterRecoveryPhase.DOING.value,
        )

    def owner_reference(self) -> V1OwnerReference:
        return V1OwnerReference(
            api_version=f"{self.GROUP}/{self.VERSION}",
            kind=self.KIND,
            name=self.name,
            uid=self.uid,
            controller=True,
            block_owner_deletion=True,
        )

    def owner_reference_dict(self) -> Dict[str, Any]:
        """Owner reference in wire form, for objects handled as plain dicts."""
        return {
            "apiVersion": f"{self.GROUP}/{self.VERSION}",
            "kind": self.KIND,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }
