from marshmallow import fields
from starop.types.base import BaseSchema
from starop.types.models.cluster_spec import DisasterRecoverySpec, StarRocksClusterSpec
from starop.types.schemas.component_spec import (
    FeSpecSchema,
    BeSpecSchema,
    CnSpecSchema,
    FeProxySpecSchema,
)


class DisasterRecoverySpecSchema(BaseSchema):
    __model__ = DisasterRecoverySpec

    enabled = fields.Bool(data_key="enabled", load_default=False)
    generation = fields.Int(data_key="generation", load_default=0)


class StarRocksClusterSpecSchema(BaseSchema):
    __model__ = StarRocksClusterSpec

    fe = fields.Nested(FeSpecSchema(), data_key="starRocksFeSpec", allow_none=True, load_default=None)
    be = fields.Nested(BeSpecSchema(), data_key="starRocksBeSpec", allow_none=True, load_default=None)
    cn = fields.Nested(CnSpecSchema(), data_key="starRocksCnSpec", allow_none=True, load_default=None)
    fe_proxy = fields.Nested(
        FeProxySpecSchema(), data_key="starRocksFeProxySpec", allow_none=True, load_default=None
    )
    disaster_recovery = fields.Nested(
        DisasterRecoverySpecSchema(),
        data_key="disasterRecovery",
        allow_none=True,
        load_default=None,
    )
