"""
Reconciler Loop: drives one pod toward its target, one cycle at a time.

Each cycle:
  LOAD → PROBE → PLAN → (EXECUTE → RECORD) → SAVE → (WAIT READY)

The planner decides; this loop only wires the planner to its collaborators.
Probing and executing are injected coroutines so the kernel never talks to
the network itself.

Store errors abort the cycle before anything is executed: a state file we
cannot trust means "state unknown", and the default action must not run.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from pod_kernel.config.logging import configure_logging
from pod_kernel.config.settings import KernelConfig
from pod_kernel.errors import ExecutionError, PodKernelError
from pod_kernel.models.pod import ActionKind, Observation, PlannedAction
from pod_kernel.models.readiness import PodLease
from pod_kernel.models.state import PodState, now_unix_ms
from pod_kernel.readiness.poller import FetchDetails, wait_ready
from pod_kernel.reconciler.planner import reconcile
from pod_kernel.state_store.store import JsonFileStateStore, StateStore

logger = logging.getLogger(__name__)

# Given the current pod id (or None), observe the remote pod.
Probe = Callable[[Optional[str]], Awaitable[Observation]]
# Perform a planned action remotely. For CREATE_POD, return the new pod id.
Executor = Callable[[PlannedAction], Awaitable[Optional[str]]]


class CycleResult:
    """Outcome of a single reconciliation cycle."""

    def __init__(
        self,
        pod_name: str,
        observation: Observation,
        action: PlannedAction,
        pod_id: Optional[str],
        lease: Optional[PodLease] = None,
    ):
        self.pod_name = pod_name
        self.observation = observation
        self.action = action
        self.pod_id = pod_id
        self.lease = lease

    def to_dict(self) -> dict:
        return {
            "pod_name": self.pod_name,
            "observation": self.observation.kind.value,
            "action": self.action.kind.value,
            "pod_id": self.pod_id,
            "public_ip": self.lease.public_ip if self.lease else None,
        }


class ReconcilerLoop:
    """
    Keeps one pod converged on its target.

    States:
      STOPPED → RUNNING (cycle every heartbeat) → STOPPED
    """

    def __init__(
        self,
        store: StateStore,
        probe: Probe,
        executor: Executor,
        fetch_details: Optional[FetchDetails] = None,
        config: Optional[KernelConfig] = None,
        clock: Callable[[], int] = now_unix_ms,
    ):
        self.store = store
        self.probe = probe
        self.executor = executor
        self.fetch_details = fetch_details
        self.config = config or KernelConfig()
        self._clock = clock
        self._running = False
        self._last_result: Optional[CycleResult] = None

    @classmethod
    def from_config(
        cls,
        config: KernelConfig,
        probe: Probe,
        executor: Executor,
        fetch_details: Optional[FetchDetails] = None,
    ) -> "ReconcilerLoop":
        """Build a loop over the configured state file, with JSON logging."""
        configure_logging(config.log_level)
        return cls(
            store=JsonFileStateStore(config.state_path),
            probe=probe,
            executor=executor,
            fetch_details=fetch_details,
            config=config,
        )

    @property
    def status(self) -> str:
        """Current loop status."""
        return "running" if self._running else "stopped"

    @property
    def last_result(self) -> Optional[CycleResult]:
        return self._last_result

    def _now(self, state: Optional[PodState] = None) -> int:
        # Never hand the state a timestamp older than its last update.
        now = self._clock()
        if state is not None:
            now = max(now, state.last_updated_ms)
        return now

    def _load_or_init(self) -> PodState:
        state = self.store.load()
        if state is not None:
            return state

        state = PodState.new(
            self.config.pod_name, self._now(), policy=self.config.policy()
        )
        logger.info(
            "No stored state; starting fresh for pod %s",
            state.pod_name,
            extra={"pod_name": state.pod_name, "event": "state_initialized"},
        )
        return state

    async def reconcile_once(self) -> CycleResult:
        """Run a single reconciliation cycle."""
        state = self._load_or_init()

        observation = await self.probe(state.pod_id)
        action = reconcile(state, observation, self._now(state))

        try:
            if not action.is_noop:
                await self._execute(state, action)
        finally:
            self.store.save(state)

        lease = None
        if (
            action.kind in (ActionKind.CREATE_POD, ActionKind.START_POD)
            and self.fetch_details is not None
            and state.pod_id is not None
        ):
            lease = await wait_ready(
                state.pod_id,
                self.fetch_details,
                required_ports=self.config.required_ports,
                timeout_s=self.config.ready_timeout_s,
                poll_interval_s=self.config.poll_interval_s,
            )

        result = CycleResult(
            pod_name=state.pod_name,
            observation=observation,
            action=action,
            pod_id=state.pod_id,
            lease=lease,
        )
        self._last_result = result
        return result

    async def _execute(self, state: PodState, action: PlannedAction) -> None:
        """Execute `action` and record its outcome on the state."""
        logger.info(
            "Executing %s for pod %s",
            action.describe(),
            state.pod_name,
            extra={
                "pod_name": state.pod_name,
                "pod_id": action.pod_id,
                "action": action,
            },
        )
        new_id = await self.executor(action)

        if action.kind == ActionKind.CREATE_POD:
            if not new_id:
                raise ExecutionError(
                    f"executor returned no pod id after creating {action.name}"
                )
            state.record_created(new_id, self._now(state))
        elif action.kind == ActionKind.TERMINATE_POD:
            state.record_terminated(self._now(state))

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run the reconciler loop until `stop_event` is set."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                try:
                    await self.reconcile_once()
                except PodKernelError:
                    # Retried next heartbeat; a broken state file keeps
                    # failing here, which pauses reconciliation.
                    logger.exception(
                        "Reconciliation cycle failed",
                        extra={"pod_name": self.config.pod_name, "event": "cycle_failed"},
                    )
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self.config.heartbeat_interval_s,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
