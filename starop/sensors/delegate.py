"""Sensor delegation for fan-out pattern.

SensorDelegate routes sensor events to multiple monitoring backends at once.
Each backend receives the same events and keeps independent state; a failing
backend is logged and never breaks reconciliation.
"""

from typing import Set, Dict, List, Optional, Any
import logging

from starop.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class SensorDelegate(OperatorSensor):
    """Delegate sensor that fans out events to multiple backends.

    Example:
        delegate = SensorDelegate()
        delegate.add(PrometheusMonitor())

        state = delegate.on_reconcile_start("sr", "default", 5, "timer")
        delegate.on_reconcile_complete("sr", "default", state, True)
    """

    def __init__(self) -> None:
        self._sensors: Set[OperatorSensor] = set()

    def add(self, sensor: OperatorSensor) -> None:
        logger.info(f"Adding sensor: {sensor.__class__.__name__}")
        self._sensors.add(sensor)

    def remove(self, sensor: OperatorSensor) -> None:
        logger.info(f"Removing sensor: {sensor.__class__.__name__}")
        self._sensors.discard(sensor)

    def clear(self) -> None:
        """Remove all sensors from the delegate."""
        self._sensors.clear()

    def _dispatch(self, hook: str, *args: Any) -> None:
        for sensor in self._sensors:
            try:
                getattr(sensor, hook)(*args)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )

    def _start(self, hook: str, *args: Any) -> Optional[Dict[OperatorSensor, Any]]:
        if not self._sensors:
            return None
        states = {}
        for sensor in self._sensors:
            try:
                state = getattr(sensor, hook)(*args)
                if state is not None:
                    states[sensor] = state
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )
        return states if states else None

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(
        self,
        cluster_name: str,
        namespace: str,
        generation: int,
        trigger_source: str,
    ) -> Optional[Dict[OperatorSensor, Any]]:
        """Delegate reconcile_start to all sensors.

        Returns:
            Dict mapping each sensor to its returned state, or None if no sensors
        """
        return self._start("on_reconcile_start", cluster_name, namespace, generation, trigger_source)

    def on_reconcile_complete(
        self,
        cluster_name: str,
        namespace: str,
        state: Optional[Dict[OperatorSensor, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Delegate reconcile_complete to all sensors with their specific state."""
        for sensor in self._sensors:
            try:
                sensor_state = state.get(sensor) if state else None
                sensor.on_reconcile_complete(cluster_name, namespace, sensor_state, success, error)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.on_reconcile_complete: {e}",
                    exc_info=True,
                )

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
    ) -> Optional[Dict[OperatorSensor, Any]]:
        return self._start(
            "on_resource_sync_start", cluster_name, tier, resource_name, namespace, resource_type
        )

    def on_resource_sync_complete(
        self,
        cluster_name: str,
        tier: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        state: Optional[Dict[OperatorSensor, Any]],
        operation: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        for sensor in self._sensors:
            try:
                sensor_state = state.get(sensor) if state else None
                sensor.on_resource_sync_complete(
                    cluster_name,
                    tier,
                    resource_name,
                    namespace,
                    resource_type,
                    sensor_state,
                    operation,
                    success,
                    error,
                )
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.on_resource_sync_complete: {e}",
                    exc_info=True,
                )

    def on_resource_drift_detected(
        self,
        cluster_name: str,
        tier: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        drift_fields: List[str],
    ) -> None:
        self._dispatch(
            "on_resource_drift_detected",
            cluster_name,
            tier,
            resource_name,
            namespace,
            resource_type,
            drift_fields,
        )

    # =============================================================================
    # Upgrade Hooks
    # =============================================================================

    def on_upgrade_phase_change(self, cluster_name, namespace, tier, old_phase, new_phase) -> None:
        self._dispatch("on_upgrade_phase_change", cluster_name, namespace, tier, old_phase, new_phase)

    def on_hook_executed(self, cluster_name, namespace, hook_name, stage, success) -> None:
        self._dispatch("on_hook_executed", cluster_name, namespace, hook_name, stage, success)

    # =============================================================================
    # Cluster State Hooks
    # =============================================================================

    def on_status_update(self, cluster_name, namespace, update_field) -> None:
        self._dispatch("on_status_update", cluster_name, namespace, update_field)

    def on_cluster_phase(self, cluster_name, namespace, phase) -> None:
        self._dispatch("on_cluster_phase", cluster_name, namespace, phase)

    def on_disaster_recovery_phase(self, cluster_name, namespace, phase) -> None:
        self._dispatch("on_disaster_recovery_phase", cluster_name, namespace, phase)
