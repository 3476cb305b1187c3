from .component_spec import (
    StorageVolume,
    MountReference,
    ConfigMapInfo,
    ServicePort,
    ComponentService,
    CustomHookConfig,
    UpgradeHooks,
    HpaPolicy,
    AutoScalingPolicy,
    ComponentSpec,
    FeProxySpec,
)
from .cluster_spec import DisasterRecoverySpec, StarRocksClusterSpec
from .cluster_resources import StarRocksClusterResources
from .status import ComponentPhase, ClusterPhase, UpgradePhase, DisasterRecoveryPhase
