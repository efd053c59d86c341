"""Pod Kernel data models."""

from pod_kernel.models.pod import (
    ActionKind,
    Observation,
    ObservationKind,
    PlannedAction,
    PodDesiredStatus,
    PodId,
    RemotePodSnapshot,
    TargetStatus,
)
from pod_kernel.models.policy import StatePolicy
from pod_kernel.models.readiness import PodDetails, PodLease
from pod_kernel.models.state import STATE_FORMAT_VERSION, PodState, now_unix_ms

__all__ = [
    "ActionKind",
    "Observation",
    "ObservationKind",
    "PlannedAction",
    "PodDesiredStatus",
    "PodDetails",
    "PodId",
    "PodLease",
    "PodState",
    "RemotePodSnapshot",
    "STATE_FORMAT_VERSION",
    "StatePolicy",
    "TargetStatus",
    "now_unix_ms",
]
