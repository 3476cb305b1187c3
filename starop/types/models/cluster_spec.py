from typing import Optional
from starop.types.base import BaseModel
from starop.types.models.component_spec import ComponentSpec, FeProxySpec


class DisasterRecoverySpec(BaseModel):
    """A restore request. Raising ``generation`` arms a new cycle."""

    enabled: bool
    generation: int


class StarRocksClusterSpec(BaseModel):
    """StarRocksCluster CRD spec"""

    fe: Optional[ComponentSpec]
    be: Optional[ComponentSpec]
    cn: Optional[ComponentSpec]
    fe_proxy: Optional[FeProxySpec]
    disaster_recovery: Optional[DisasterRecoverySpec]
