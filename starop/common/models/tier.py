from enum import Enum


class TierKind(Enum):
    """The four workload roles managed for a StarRocksCluster.

    Everything that varies by tier (spec/status keys, name suffixes,
    workload kind) is looked up from the enum rather than inferred from
    the shape of a sub-spec.
    """

    FRONTEND = "fe"
    BACKEND = "be"
    COMPUTE = "cn"
    PROXY = "fe-proxy"

    @property
    def spec_key(self) -> str:
        return _SPEC_KEYS[self]

    @property
    def status_key(self) -> str:
        return _STATUS_KEYS[self]

    @property
    def is_stateful(self) -> bool:
        return self is not TierKind.PROXY

    @property
    def container_name(self) -> str:
        return self.value


_SPEC_KEYS = {
    TierKind.FRONTEND: "starRocksFeSpec",
    TierKind.BACKEND: "starRocksBeSpec",
    TierKind.COMPUTE: "starRocksCnSpec",
    TierKind.PROXY: "starRocksFeProxySpec",
}

_STATUS_KEYS = {
    TierKind.FRONTEND: "starRocksFeStatus",
    TierKind.BACKEND: "starRocksBeStatus",
    TierKind.COMPUTE: "starRocksCnStatus",
    TierKind.PROXY: "starRocksFeProxyStatus",
}

#: Tier scan order used by status aggregation and cluster phase derivation.
STATUS_ORDER = (TierKind.FRONTEND, TierKind.BACKEND, TierKind.COMPUTE, TierKind.PROXY)
