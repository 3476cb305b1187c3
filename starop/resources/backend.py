from starop.common.models.tier import TierKind
from starop.resources.component import ComponentController
from starop.resources.templates import (
    SEARCH_PORT_KEY,
    build_external_service,
    build_pod_template,
    build_search_service,
    build_stateful_set,
    get_port,
    tier_ports,
)


class StoreController(ComponentController):
    """Shared convergence of the two worker tiers (be and cn).

    Both resolve the frontend query port from the frontend properties so the
    workers know where to register.
    """

    keep_live_replicas = False

    async def frontend_query_port(self) -> int:
        fe_spec = self.sr_cluster.tier_spec(TierKind.FRONTEND)
        fe_config = await self.resolve_config(fe_spec)
        return get_port(TierKind.FRONTEND, fe_config, SEARCH_PORT_KEY[TierKind.FRONTEND])

    async def sync_resources(self, spec) -> None:
        config = await self.resolve_config(spec)
        owner_reference = self.sr_cluster.owner_reference()
        template = build_pod_template(
            self.cluster,
            self.namespace,
            self.tier,
            spec,
            config,
            self.labels,
            await self.frontend_query_port(),
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
                "heartbeat-port",
                get_port(self.tier, config, SEARCH_PORT_KEY[self.tier]),
                self.labels,
                owner_reference,
            )
        )
        await self.apply_stateful_set(desired, keep_live_replicas=self.keep_live_replicas)


class BackendController(StoreController):
    """Backend (be) tier: local storage workers."""

    tier = TierKind.BACKEND
