"""Prometheus monitoring backend for the StarRocks operator.

PrometheusMonitor collects operator lifecycle events and exposes them as
Prometheus metrics:

1. Reconciliation loop health - duration, throughput, errors
2. Kubernetes resource sync - operation counts, latency, drift detection
3. Upgrade safety - phase transitions, hook outcomes
4. Cluster state - cluster phase, disaster recovery phase, status writes
"""

from typing import Dict, List, Optional, Any
import time
import logging

from prometheus_client import Counter, Histogram, Gauge

from starop.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)

CLUSTER_PHASES = ("pending", "reconciling", "running", "failed", "deleting")
DISASTER_RECOVERY_PHASES = ("todo", "doing", "done")


class PrometheusMonitor(OperatorSensor):
    """Prometheus metrics monitor for the StarRocks operator.

    Metrics are organized into these families:
    - starop_reconcile_* - Reconciliation loop metrics
    - starop_resource_* - Kubernetes resource sync metrics
    - starop_upgrade_* - Upgrade state machine metrics
    - starop_cluster_phase / starop_disaster_recovery_phase - one-hot phase gauges
    """

    def __init__(self):
        super().__init__()

        # =============================================================================
        # Reconciliation Loop Metrics
        # =============================================================================

        self.reconcile_duration = Histogram(
            'starop_reconcile_duration_seconds',
            'Time spent in reconciliation loop',
            labelnames=['cluster_name', 'namespace', 'trigger_source', 'result'],
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
        )

        self.reconcile_total = Counter(
            'starop_reconcile_total',
            'Total number of reconciliation attempts',
            labelnames=['cluster_name', 'namespace', 'trigger_source', 'result'],
        )

        self.reconcile_errors = Counter(
            'starop_reconcile_errors_total',
            'Total number of reconciliation errors',
            labelnames=['cluster_name', 'namespace', 'error_type'],
        )

        # =============================================================================
        # Kubernetes Resource Sync Metrics
        # =============================================================================

        self.resource_sync_duration = Histogram(
            'starop_resource_sync_duration_seconds',
            'Time spent syncing Kubernetes resources',
            labelnames=['cluster_name', 'tier', 'resource_name', 'namespace', 'resource_type', 'operation', 'result'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
        )

        self.resource_sync_total = Counter(
            'starop_resource_sync_total',
            'Total number of resource sync operations',
            labelnames=['cluster_name', 'tier', 'resource_name', 'namespace', 'resource_type', 'operation', 'result'],
        )

        self.resource_sync_errors = Counter(
            'starop_resource_sync_errors_total',
            'Total number of resource sync errors',
            labelnames=['cluster_name', 'tier', 'resource_name', 'namespace', 'resource_type', 'error_type'],
        )

        self.resource_drift_detected = Counter(
            'starop_resource_drift_detected_total',
            'Total number of resource drift detections',
            labelnames=['cluster_name', 'tier', 'resource_name', 'namespace', 'resource_type', 'drift_field'],
        )

        # =============================================================================
        # Upgrade Metrics
        # =============================================================================

        self.upgrade_phase_transitions = Counter(
            'starop_upgrade_phase_transitions_total',
            'Total number of upgrade state machine transitions',
            labelnames=['cluster_name', 'namespace', 'tier', 'from_phase', 'to_phase'],
        )

        self.upgrade_hook_executions = Counter(
            'starop_upgrade_hook_executions_total',
            'Total number of upgrade hook executions',
            labelnames=['cluster_name', 'namespace', 'hook_name', 'stage', 'result'],
        )

        # =============================================================================
        # Cluster State Metrics
        # =============================================================================

        self.status_updates = Counter(
            'starop_status_updates_total',
            'Total number of cluster object writes',
            labelnames=['cluster_name', 'namespace', 'update_field'],
        )

        self.cluster_phase = Gauge(
            'starop_cluster_phase',
            'Current cluster phase (1 for the active phase, 0 otherwise)',
            labelnames=['cluster_name', 'namespace', 'phase'],
        )

        self.disaster_recovery_phase = Gauge(
            'starop_disaster_recovery_phase',
            'Current disaster recovery phase (1 for the active phase, 0 otherwise)',
            labelnames=['cluster_name', 'namespace', 'phase'],
        )

        logger.info("PrometheusMonitor initialized with all metrics")

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(
        self,
        cluster_name: str,
        namespace: str,
        generation: int,
        trigger_source: str,
    ) -> Optional[Dict[str, Any]]:
        """Record reconciliation start time."""
        return {
            'start_time': time.time(),
            'trigger_source': trigger_source,
        }

    def on_reconcile_complete(
        self,
        cluster_name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Record reconciliation duration and result."""
        if state:
            duration = time.time() - state['start_time']
            trigger_source = state['trigger_source']
            result = 'success' if success else 'failure'

            self.reconcile_duration.labels(
                cluster_name=cluster_name,
                namespace=namespace,
                trigger_source=trigger_source,
                result=result,
            ).observe(duration)

            self.reconcile_total.labels(
                cluster_name=cluster_name,
                namespace=namespace,
                trigger_source=trigger_source,
                result=result,
            ).inc()

        if error:
            self.reconcile_errors.labels(
                cluster_name=cluster_name,
                namespace=namespace,
                error_type=error.__class__.__name__,
            ).inc()

    # =============================================================================
    # Resource Operation Hooks
    # =============================================================================

    def on_resource_sync_start(
        self,
        cluster_name: str,
        tier: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
    ) -> Optional[Dict[str, Any]]:
        """Record resource sync start time."""
        return {'start_time': time.time()}

    def on_resource_sync_complete(
        self,
        cluster_name: str,
        tier: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        state: Optional[Dict[str, Any]],
        operation: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Record resource sync duration and result."""
        result = 'success' if success else 'failure'
        labels = dict(
            cluster_name=cluster_name,
            tier=tier,
            resource_name=resource_name,
            namespace=namespace,
            resource_type=resource_type,
        )
        if state:
            self.resource_sync_duration.labels(
                operation=operation, result=result, **labels
            ).observe(time.time() - state['start_time'])

        self.resource_sync_total.labels(operation=operation, result=result, **labels).inc()

        if error:
            self.resource_sync_errors.labels(
                error_type=error.__class__.__name__, **labels
            ).inc()

    def on_resource_drift_detected(
        self,
        cluster_name: str,
        tier: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        drift_fields: List[str],
    ) -> None:
        """Record resource drift detection."""
        for field in drift_fields:
            self.resource_drift_detected.labels(
                cluster_name=cluster_name,
                tier=tier,
                resource_name=resource_name,
                namespace=namespace,
                resource_type=resource_type,
                drift_field=field,
            ).inc()

    # =============================================================================
    # Upgrade Hooks
    # =============================================================================

    def on_upgrade_phase_change(self, cluster_name, namespace, tier, old_phase, new_phase) -> None:
        self.upgrade_phase_transitions.labels(
            cluster_name=cluster_name,
            namespace=namespace,
            tier=tier,
            from_phase=old_phase or 'none',
            to_phase=new_phase,
        ).inc()

    def on_hook_executed(self, cluster_name, namespace, hook_name, stage, success) -> None:
        self.upgrade_hook_executions.labels(
            cluster_name=cluster_name,
            namespace=namespace,
            hook_name=hook_name,
            stage=stage,
            result='success' if success else 'failure',
        ).inc()

    # =============================================================================
    # Cluster State Hooks
    # =============================================================================

    def on_status_update(self, cluster_name, namespace, update_field) -> None:
        self.status_updates.labels(
            cluster_name=cluster_name,
            namespace=namespace,
            update_field=update_field,
        ).inc()

    def on_cluster_phase(self, cluster_name, namespace, phase) -> None:
        for candidate in CLUSTER_PHASES:
            self.cluster_phase.labels(
                cluster_name=cluster_name,
                namespace=namespace,
                phase=candidate,
            ).set(1 if candidate == phase else 0)

    def on_disaster_recovery_phase(self, cluster_name, namespace, phase) -> None:
        for candidate in DISASTER_RECOVERY_PHASES:
            self.disaster_recovery_phase.labels(
                cluster_name=cluster_name,
                namespace=namespace,
                phase=candidate,
            ).set(1 if candidate == phase else 0)
