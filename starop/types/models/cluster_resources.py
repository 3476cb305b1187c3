from starop.common.models.tier import TierKind


class StarRocksClusterResources:
    """Encapsulates the naming scheme used for the resources which the operator manages
    for a StarRocksCluster."""

    @classmethod
    def component_name(cls, cluster_name: str, tier: TierKind):
        """Returns the name of the tier workload (StatefulSet or Deployment)."""
        return f"{cluster_name}-{tier.value}"

    @classmethod
    def service_name(cls, cluster_name: str, tier: TierKind):
        """Returns the name of the externally reachable service of a tier."""
        return f"{cls.component_name(cluster_name, tier)}-service"

    @classmethod
    def search_service_name(cls, cluster_name: str, tier: TierKind):
        """Returns the name of the headless service backing stable pod identities."""
        return f"{cls.component_name(cluster_name, tier)}-search"

    @classmethod
    def qualified_service_name(cls, cluster_name: str, namespace: str, tier: TierKind, domain_suffix: str):
        """Returns the fully qualified DNS name of a tier's external service."""
        return f"{cls.service_name(cluster_name, tier)}.{namespace}.svc.{domain_suffix}"

    @classmethod
    def hpa_name(cls, cluster_name: str):
        return f"{cluster_name}-cn-autoscaler"

    @classmethod
    def proxy_config_map_name(cls, cluster_name: str):
        return cls.component_name(cluster_name, TierKind.PROXY)
