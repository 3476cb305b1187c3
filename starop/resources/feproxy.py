from typing import List

from starop.common.models.tier import TierKind
from starop.resources.component import ComponentController
from starop.resources.status import WorkloadKind
from starop.resources.templates import (
    HEALTH_PORT_KEY,
    PROXY_PORT,
    build_external_service,
    build_proxy_config_map,
    build_proxy_deployment,
    get_port,
    render_nginx_conf,
)
from starop.types.models.cluster_resources import StarRocksClusterResources


class FeProxyController(ComponentController):
    """Stateless nginx proxy in front of the frontend http port."""

    tier = TierKind.PROXY
    workload_kind = WorkloadKind.DEPLOYMENT

    @property
    def config_map_name(self) -> str:
        return StarRocksClusterResources.proxy_config_map_name(self.cluster)

    def resource_names(self) -> List[str]:
        return [self.component_name, self.service_name, self.config_map_name]

    async def sync_resources(self, spec) -> None:
        fe_config = await self.resolve_config(self.sr_cluster.tier_spec(TierKind.FRONTEND))
        owner_reference = self.sr_cluster.owner_reference()
        nginx_conf = render_nginx_conf(
            self.cluster,
            self.namespace,
            get_port(TierKind.FRONTEND, fe_config, HEALTH_PORT_KEY[TierKind.FRONTEND]),
            spec.resolver,
            self.conf.service_domain_suffix,
        )
        await self.apply_config_map(
            build_proxy_config_map(
                self.config_map_name, self.namespace, nginx_conf, self.labels, owner_reference
            )
        )
        await self.apply_deployment(
            build_proxy_deployment(
                self.component_name,
                self.namespace,
                spec,
                self.config_map_name,
                self.labels,
                owner_reference,
            )
        )
        await self.apply_service(
            build_external_service(
                self.service_name,
                self.namespace,
                [("http", PROXY_PORT)],
                spec.service,
                self.labels,
                owner_reference,
            )
        )

    async def clear_extra_resources(self) -> None:
        await self.delete_config_map(self.registry.core_v1_api, self.config_map_name, self.namespace)
