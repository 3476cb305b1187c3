from typing import Any, Dict, List

from starop.common.models.tier import TierKind
from starop.resources.autoscaler import AutoscalerAdapter
from starop.resources.backend import StoreController
from starop.types.models.cluster_resources import StarRocksClusterResources


class ComputeController(StoreController):
    """Compute (cn) tier: stateless-storage workers, optionally autoscaled.

    With an autoscaling policy the replica count belongs to the autoscaler:
    the explicit ``replicas`` field is dropped from the cluster spec and the
    live count is kept on every apply.
    """

    tier = TierKind.COMPUTE

    _horizontal_scaler = None

    @property
    def autoscaler(self) -> AutoscalerAdapter:
        return AutoscalerAdapter(
            self.cluster,
            self.namespace,
            self.labels,
            self.registry,
            self.conf,
            self.sensor,
            self.logger,
        )

    def resource_names(self) -> List[str]:
        names = super().resource_names()
        if self.spec is not None and self.spec.autoscaling_policy is not None:
            names.append(StarRocksClusterResources.hpa_name(self.cluster))
        return names

    async def sync_resources(self, spec) -> None:
        policy = spec.autoscaling_policy
        self.keep_live_replicas = policy is not None
        if policy is not None:
            self.sr_cluster.clear_replicas(self.tier)
        await super().sync_resources(spec)
        if policy is not None:
            self._horizontal_scaler = await self.autoscaler.apply(
                policy, self.sr_cluster.owner_reference_dict()
            )
        else:
            await self.autoscaler.delete(self._recorded_version())
            self._horizontal_scaler = None

    async def clear_extra_resources(self) -> None:
        await self.autoscaler.delete(self._recorded_version())

    async def extend_status(self, status: Dict[str, Any]) -> None:
        scaler = self._horizontal_scaler
        if scaler is None and self.spec.autoscaling_policy is not None:
            scaler = (self.sr_cluster.tier_status(self.tier) or {}).get("horizontalScaler")
        if scaler:
            status["hpaName"] = scaler["name"]
            status["horizontalScaler"] = dict(scaler)

    def _recorded_version(self):
        scaler = (self.sr_cluster.tier_status(self.tier) or {}).get("horizontalScaler") or {}
        return scaler.get("version")
