from .component_spec import (
    StorageVolumeSchema,
    MountReferenceSchema,
    ConfigMapInfoSchema,
    ServicePortSchema,
    ComponentServiceSchema,
    CustomHookConfigSchema,
    UpgradeHooksSchema,
    HpaPolicySchema,
    AutoScalingPolicySchema,
    ComponentSpecSchema,
    FeSpecSchema,
    BeSpecSchema,
    CnSpecSchema,
    FeProxySpecSchema,
)
from .cluster_spec import DisasterRecoverySpecSchema, StarRocksClusterSpecSchema
