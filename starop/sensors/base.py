"""Base sensor classes for operator monitoring.

This module defines the base OperatorSensor class that provides lifecycle hooks
for monitoring various operator events. All hooks are no-ops by default, allowing
subclasses to override only the events they care about.

The hook pattern follows Faust's sensor design:
- Hooks come in pairs: on_X_start() and on_X_complete()
- Start hooks return an optional state dict for tracking multi-phase operations
- Complete hooks receive the state dict from their corresponding start hook
- All hooks are optional - sensors only implement what they need
"""

from typing import Dict, List, Optional, Any


class OperatorSensor:
    """Base sensor class for StarRocks operator monitoring.

    Hooks are grouped into four categories:
    1. Reconciliation lifecycle (one convergence pass of a cluster)
    2. Resource operations (child workload, service and autoscaler sync)
    3. Upgrade safety (phase transitions and hook executions)
    4. Cluster state (status writes, cluster and disaster recovery phases)

    Example:
        class LoggingSensor(OperatorSensor):
            def on_reconcile_start(self, cluster_name, namespace, generation, trigger_source):
                return {'start_time': time.time()}

            def on_reconcile_complete(self, cluster_name, namespace, state, success, error=None):
                logger.info(f"Reconciled {cluster_name} in {time.time() - state['start_time']}s")
    """

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
        """Called when a convergence pass begins.

        Args:
            cluster_name: StarRocksCluster name
            namespace: Kubernetes namespace
            generation: metadata.generation of the cluster object
            trigger_source: What triggered the pass (create, update, resume, timer)

        Returns:
            Optional state dict passed to on_reconcile_complete
        """
        return None

    def on_reconcile_complete(
        self,
        cluster_name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Called when a convergence pass ends, successfully or not."""
        pass

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
        """Called before a child resource is created or updated.

        Args:
            cluster_name: StarRocksCluster name
            tier: fe, be, cn or fe-proxy
            resource_name: Child resource name
            namespace: Kubernetes namespace
            resource_type: StatefulSet, Deployment, Service, ConfigMap, HorizontalPodAutoscaler
        """
        return None

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
        """Called after a child resource write. ``operation`` is create, update or delete."""
        pass

    def on_resource_drift_detected(
        self,
        cluster_name: str,
        tier: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        drift_fields: List[str],
    ) -> None:
        """Called when a live child no longer matches its rendered form."""
        pass

    # =============================================================================
    # Upgrade Hooks
    # =============================================================================

    def on_upgrade_phase_change(
        self,
        cluster_name: str,
        namespace: str,
        tier: str,
        old_phase: Optional[str],
        new_phase: str,
    ) -> None:
        """Called on every upgrade state machine transition of a tier."""
        pass

    def on_hook_executed(
        self,
        cluster_name: str,
        namespace: str,
        hook_name: str,
        stage: str,
        success: bool,
    ) -> None:
        """Called once per upgrade hook after its retries are exhausted or it succeeded."""
        pass

    # =============================================================================
    # Cluster State Hooks
    # =============================================================================

    def on_status_update(
        self,
        cluster_name: str,
        namespace: str,
        update_field: str,
    ) -> None:
        """Called after the operator writes the cluster object (``status`` or ``spec``)."""
        pass

    def on_cluster_phase(
        self,
        cluster_name: str,
        namespace: str,
        phase: str,
    ) -> None:
        """Called with the aggregate cluster phase computed by a pass."""
        pass

    def on_disaster_recovery_phase(
        self,
        cluster_name: str,
        namespace: str,
        phase: str,
    ) -> None:
        """Called when the disaster recovery state machine changes phase."""
        pass
