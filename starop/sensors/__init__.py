"""StarRocks Operator Sensor Framework.

A hook-based observability layer inspired by Faust's sensor architecture.
Reconcile code reports lifecycle events to a single sensor (usually a
SensorDelegate) without knowing which backends are listening.

Key components:
- OperatorSensor: Base class defining lifecycle hooks for operator events
- SensorDelegate: Fan-out pattern for routing events to multiple sensor backends
- PrometheusMonitor: Prometheus metrics exporter
"""

from starop.sensors.base import OperatorSensor
from starop.sensors.delegate import SensorDelegate
from starop.sensors.prometheus import PrometheusMonitor
from starop.sensors.server import init_metrics_server

__all__ = [
    'OperatorSensor',
    'SensorDelegate',
    'PrometheusMonitor',
    'init_metrics_server',
]
