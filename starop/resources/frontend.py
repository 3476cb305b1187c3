from typing import Dict

from starop.common.models.tier import TierKind
from starop.resources.cluster import DR_STATUS_KEY, UPGRADE_STATE_KEY
from starop.resources.component import ComponentController
from starop.resources.disaster_recovery import DisasterRecoveryController
from starop.resources.templates import (
    SEARCH_PORT_KEY,
    build_external_service,
    build_pod_template,
    build_search_service,
    build_stateful_set,
    get_port,
    tier_ports,
)


class FrontendController(ComponentController):
    """Frontend (fe) tier: metadata and query coordination.

    An active disaster recovery cycle takes over the StatefulSet apply.
    """

    tier = TierKind.FRONTEND

    PRESERVED_STATUS_KEYS = (UPGRADE_STATE_KEY, DR_STATUS_KEY)

    async def sync_resources(self, spec) -> None:
        config = await self.resolve_config(spec)
        owner_reference = self.sr_cluster.owner_reference()
        query_port = get_port(self.tier, config, SEARCH_PORT_KEY[self.tier])
        template = build_pod_template(
            self.cluster,
            self.namespace,
            self.tier,
            spec,
            config,
            self.labels,
            query_port,
            self.conf.service_domain_suffix,
        )
        desired = build_stateful_set(
            self.component_name,
            self.namespace,
            self.tier,
            spec,
            template,
            self.labels,
            owner_reference,
            self.search_service_name,
        )
        await self.apply_services(spec, config, owner_reference)
        if await DisasterRecoveryController(self).reconcile(desired, config):
            return
        await self.apply_stateful_set(desired)

    async def apply_services(self, spec, config: Dict[str, str], owner_reference) -> None:
        await self.apply_service(
            build_external_service(
                self.service_name,
                self.namespace,
                tier_ports(self.tier, config),
                spec.service,
                self.labels,
                owner_reference,
            )
        )
        await self.apply_service(
            build_search_service(
                self.search_service_name,
                self.namespace,
                "query-port",
                get_port(self.tier, config, SEARCH_PORT_KEY[self.tier]),
                self.labels,
                owner_reference,
            )
        )
