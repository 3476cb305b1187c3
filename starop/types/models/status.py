from enum import Enum


class ComponentPhase(str, Enum):
    """Phase of one tier, recomputed every pass."""

    RECONCILING = "reconciling"
    FAILED = "failed"
    RUNNING = "running"


class ClusterPhase(str, Enum):
    PENDING = "pending"
    RECONCILING = "reconciling"
    RUNNING = "running"
    FAILED = "failed"
    DELETING = "deleting"


class UpgradePhase(str, Enum):
    DETECTED = "Detected"
    PREPARING = "Preparing"
    READY = "Ready"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"


class DisasterRecoveryPhase(str, Enum):
    TODO = "todo"
    DOING = "doing"
    DONE = "done"
