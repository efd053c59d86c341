"""Pod identity, remote observations and planned actions."""

from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Opaque id assigned by the remote system.
PodId = Annotated[str, Field(min_length=1)]


class PodDesiredStatus(str, Enum):
    """Remote lifecycle status (the API's `desiredStatus`)."""

    RUNNING = "RUNNING"
    EXITED = "EXITED"
    TERMINATED = "TERMINATED"    # Absorbing: nothing more can happen to this id

    def is_terminal(self) -> bool:
        return self is PodDesiredStatus.TERMINATED


class TargetStatus(str, Enum):
    """What the local owner wants the pod to be."""

    RUNNING = "RUNNING"
    EXITED = "EXITED"            # Stopped, storage preserved
    TERMINATED = "TERMINATED"    # Deleted


class RemotePodSnapshot(BaseModel):
    """Last confirmed remote read. Replaced wholesale, never patched."""

    model_config = ConfigDict(frozen=True)

    id: PodId
    name: str
    desired_status: PodDesiredStatus
    observed_at_ms: int = Field(ge=0)


class ObservationKind(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"          # Probe failed, no information gained


class Observation(BaseModel):
    """Result of one probe attempt against the remote API."""

    model_config = ConfigDict(frozen=True)

    kind: ObservationKind
    snapshot: Optional[RemotePodSnapshot] = None

    @model_validator(mode="after")
    def _snapshot_matches_kind(self) -> "Observation":
        if (self.kind == ObservationKind.FOUND) != (self.snapshot is not None):
            raise ValueError("a snapshot is required for FOUND and forbidden otherwise")
        return self

    @classmethod
    def found(cls, snapshot: RemotePodSnapshot) -> "Observation":
        return cls(kind=ObservationKind.FOUND, snapshot=snapshot)

    @classmethod
    def not_found(cls) -> "Observation":
        return cls(kind=ObservationKind.NOT_FOUND)

    @classmethod
    def unknown(cls) -> "Observation":
        return cls(kind=ObservationKind.UNKNOWN)


class ActionKind(str, Enum):
    NOOP = "noop"
    CREATE_POD = "create_pod"
    START_POD = "start_pod"
    STOP_POD = "stop_pod"
    TERMINATE_POD = "terminate_pod"


class PlannedAction(BaseModel):
    """
    The planner's single next step.

    CREATE_POD carries the logical name; START/STOP/TERMINATE carry the
    pod id; NOOP carries nothing. Consumed once by the caller, never persisted.
    """

    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    name: Optional[str] = None
    pod_id: Optional[PodId] = None

    @model_validator(mode="after")
    def _fields_match_kind(self) -> "PlannedAction":
        needs_name = self.kind == ActionKind.CREATE_POD
        needs_id = self.kind in (
            ActionKind.START_POD,
            ActionKind.STOP_POD,
            ActionKind.TERMINATE_POD,
        )
        if needs_name != (self.name is not None):
            raise ValueError(f"{self.kind.value} action name mismatch")
        if needs_id != (self.pod_id is not None):
            raise ValueError(f"{self.kind.value} action pod_id mismatch")
        return self

    @property
    def is_noop(self) -> bool:
        return self.kind == ActionKind.NOOP

    @classmethod
    def noop(cls) -> "PlannedAction":
        return cls(kind=ActionKind.NOOP)

    @classmethod
    def create_pod(cls, name: str) -> "PlannedAction":
        return cls(kind=ActionKind.CREATE_POD, name=name)

    @classmethod
    def start_pod(cls, pod_id: str) -> "PlannedAction":
        return cls(kind=ActionKind.START_POD, pod_id=pod_id)

    @classmethod
    def stop_pod(cls, pod_id: str) -> "PlannedAction":
        return cls(kind=ActionKind.STOP_POD, pod_id=pod_id)

    @classmethod
    def terminate_pod(cls, pod_id: str) -> "PlannedAction":
        return cls(kind=ActionKind.TERMINATE_POD, pod_id=pod_id)

    def describe(self) -> str:
        """Short human-readable form, e.g. `start_pod(p1)`."""
        arg = self.name if self.name is not None else self.pod_id
        return f"{self.kind.value}({arg})" if arg is not None else self.kind.value
