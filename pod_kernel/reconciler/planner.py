"""
Reconciliation Planner: maps (target, observed status, pod id) to one action.

Pure with respect to the outside world: no clock reads, no network, no I/O.
The only side effect is on the `PodState` passed in.

Each call runs three steps:
  1. Assimilate the observation (FOUND replaces, NOT_FOUND clears,
     UNKNOWN keeps what we already knew).
  2. Apply the policy override (auto-terminate pods left EXITED too long).
  3. Decide from the table below. First match wins; the rows are
     mutually exclusive and together cover every combination.

  target             | status               | has id | action
  -------------------+----------------------+--------+---------------------------
  TERMINATED         | absent / TERMINATED  | any    | NOOP
  RUNNING            | RUNNING              | any    | NOOP
  EXITED             | EXITED               | any    | NOOP
  RUNNING / EXITED   | absent / TERMINATED  | any    | CREATE_POD
  any                | present              | no     | CREATE_POD
  RUNNING            | EXITED               | yes    | START_POD (or CREATE_POD)
  EXITED             | RUNNING              | yes    | STOP_POD
  TERMINATED         | RUNNING / EXITED     | yes    | TERMINATE_POD

One guard sits in front of the table: an UNKNOWN probe while we hold an id
but have no snapshot of that id yet plans NOOP, never a second CREATE_POD.
"""

import logging
from typing import Optional

from pod_kernel.models.pod import (
    Observation,
    ObservationKind,
    PlannedAction,
    PodDesiredStatus,
    TargetStatus,
)
from pod_kernel.models.policy import StatePolicy
from pod_kernel.models.state import PodState

logger = logging.getLogger(__name__)


def assimilate(state: PodState, observation: Observation) -> Optional[PodDesiredStatus]:
    """Fold an observation into the state and return the effective remote status."""
    if observation.kind == ObservationKind.FOUND:
        snapshot = observation.snapshot
        state.pod_id = snapshot.id
        state.last_remote = snapshot
        return snapshot.desired_status

    if observation.kind == ObservationKind.NOT_FOUND:
        state.pod_id = None
        state.last_remote = None
        return None

    # UNKNOWN: a failed probe must not be read as "the pod vanished".
    remote = state.last_remote
    if remote is None:
        return None
    if state.pod_id is not None and remote.id != state.pod_id:
        # Snapshot of a pod we no longer track.
        return None
    return remote.desired_status


def apply_policy(state: PodState, now_ms: int) -> bool:
    """
    Force the target to TERMINATED when the last snapshot has been EXITED
    for at least `auto_terminate_after_exited_ms`.

    Returns True when the override fired.
    """
    threshold = state.policy.auto_terminate_after_exited_ms
    remote = state.last_remote
    if threshold is None or remote is None:
        return False
    if remote.desired_status != PodDesiredStatus.EXITED:
        return False

    elapsed = max(0, now_ms - remote.observed_at_ms)
    if elapsed < threshold:
        return False

    if state.target != TargetStatus.TERMINATED:
        logger.info(
            "Pod %s exited for %dms (limit %dms); forcing target TERMINATED",
            remote.id,
            elapsed,
            threshold,
            extra={
                "pod_id": remote.id,
                "elapsed_ms": elapsed,
                "event": "policy_auto_terminate",
            },
        )
    state.target = TargetStatus.TERMINATED
    return True


def decide(
    target: TargetStatus,
    status: Optional[PodDesiredStatus],
    pod_id: Optional[str],
    pod_name: str,
    policy: StatePolicy,
) -> PlannedAction:
    """The decision table. Raises AssertionError only if the table has a hole."""
    gone = status is None or status.is_terminal()

    if target == TargetStatus.TERMINATED and gone:
        return PlannedAction.noop()
    if target == TargetStatus.RUNNING and status == PodDesiredStatus.RUNNING:
        return PlannedAction.noop()
    if target == TargetStatus.EXITED and status == PodDesiredStatus.EXITED:
        return PlannedAction.noop()

    if target in (TargetStatus.RUNNING, TargetStatus.EXITED) and gone:
        return PlannedAction.create_pod(pod_name)

    if pod_id is None:
        # A positive observation with no id we can act on. Treated as
        # "no real pod yet", but usually means caller-side id tracking broke.
        logger.warning(
            "Pod %s reported %s without a known id; planning create",
            pod_name,
            status.value,
            extra={"pod_name": pod_name, "event": "create_without_id"},
        )
        return PlannedAction.create_pod(pod_name)

    if target == TargetStatus.RUNNING and status == PodDesiredStatus.EXITED:
        if policy.reuse_exited_pod:
            return PlannedAction.start_pod(pod_id)
        return PlannedAction.create_pod(pod_name)

    if target == TargetStatus.EXITED and status == PodDesiredStatus.RUNNING:
        return PlannedAction.stop_pod(pod_id)

    if target == TargetStatus.TERMINATED and status in (
        PodDesiredStatus.RUNNING,
        PodDesiredStatus.EXITED,
    ):
        return PlannedAction.terminate_pod(pod_id)

    raise AssertionError(
        f"decision table has no row for target={target}, status={status}, "
        f"has_id={pod_id is not None}"
    )


def reconcile(state: PodState, observation: Observation, now_ms: int) -> PlannedAction:
    """
    Update `state` from `observation` and plan the next action.

    Never raises for any observation or timestamp; out-of-order `now_ms`
    values are accepted and simply recomputed against.
    """
    state.last_updated_ms = now_ms

    status = assimilate(state, observation)
    apply_policy(state, now_ms)

    if (
        observation.kind == ObservationKind.UNKNOWN
        and status is None
        and state.pod_id is not None
    ):
        # We hold an id but have never seen the pod (e.g. just created) and
        # the probe failed. Creating now could leak a second pod: wait.
        action = PlannedAction.noop()
    else:
        action = decide(state.target, status, state.pod_id, state.pod_name, state.policy)

    logger.debug(
        "Reconciled %s: target=%s status=%s has_id=%s -> %s",
        state.pod_name,
        state.target.value,
        status.value if status else None,
        state.pod_id is not None,
        action.describe(),
        extra={
            "pod_name": state.pod_name,
            "pod_id": state.pod_id,
            "target": state.target,
            "status": status,
            "observation": observation,
            "action": action,
        },
    )
    return action
