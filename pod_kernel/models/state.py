"""
Pod State: the persisted aggregate for one managed pod.

Mutated only through the planner (`reconcile`) and the `record_*` /
`set_target` callbacks below. The engine never reads the clock itself:
every mutation takes the caller's `now_ms`.
"""

import time
from typing import Optional

from pydantic import BaseModel

from pod_kernel.models.pod import PodId, RemotePodSnapshot, TargetStatus
from pod_kernel.models.policy import StatePolicy

STATE_FORMAT_VERSION = 1


class PodState(BaseModel):
    """Everything the kernel remembers about a pod between runs."""

    format_version: int = STATE_FORMAT_VERSION
    pod_name: str                                   # Stable logical name, e.g. "trainer-a40"
    pod_id: Optional[PodId] = None                  # None until created or observed
    target: TargetStatus = TargetStatus.RUNNING
    last_remote: Optional[RemotePodSnapshot] = None
    last_updated_ms: int = 0
    policy: StatePolicy = StatePolicy()

    @classmethod
    def new(
        cls,
        pod_name: str,
        now_ms: int,
        policy: Optional[StatePolicy] = None,
    ) -> "PodState":
        """Initial state: no id, target RUNNING."""
        return cls(
            pod_name=pod_name,
            last_updated_ms=now_ms,
            policy=policy or StatePolicy(),
        )

    def set_target(self, target: TargetStatus, now_ms: int) -> None:
        self.target = target
        self.last_updated_ms = now_ms

    def record_created(self, pod_id: str, now_ms: int) -> None:
        """
        Call after the executor successfully created a pod.

        The previous snapshot described the pod being replaced, so it is
        dropped; `last_remote` is filled in by the next observation.
        """
        if not pod_id:
            raise ValueError("record_created requires a non-empty pod id")
        self.pod_id = pod_id
        self.last_remote = None
        self.last_updated_ms = now_ms

    def record_terminated(self, now_ms: int) -> None:
        """Call after a successful termination, or to forget the pod id."""
        self.pod_id = None
        self.last_remote = None
        self.last_updated_ms = now_ms


def now_unix_ms() -> int:
    """Wall-clock milliseconds since the UNIX epoch (0 if the clock is before it)."""
    return max(0, int(time.time() * 1000))
