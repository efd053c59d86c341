"""Tests for the Reconciler Loop."""

import asyncio
import logging

import pytest

from pod_kernel.config.settings import KernelConfig
from pod_kernel.errors import ExecutionError, StateValidationError
from pod_kernel.models.pod import (
    ActionKind,
    Observation,
    PlannedAction,
    PodDesiredStatus,
    RemotePodSnapshot,
    TargetStatus,
)
from pod_kernel.models.readiness import PodDetails
from pod_kernel.reconciler.loop import ReconcilerLoop
from pod_kernel.state_store.store import JsonFileStateStore


class FakeRemote:
    """In-memory stand-in for the remote pod API."""

    def __init__(self):
        self.pods = {}
        self.executed = []
        self.probe_fails = False
        self.execute_fails = False
        self._next_id = 1

    async def probe(self, pod_id):
        if self.probe_fails:
            return Observation.unknown()
        if pod_id is None or pod_id not in self.pods:
            return Observation.not_found()
        return Observation.found(
            RemotePodSnapshot(
                id=pod_id,
                name="trainer",
                desired_status=self.pods[pod_id],
                observed_at_ms=1000,
            )
        )

    async def execute(self, action: PlannedAction):
        self.executed.append(action)
        if self.execute_fails:
            raise ExecutionError("remote refused")
        if action.kind == ActionKind.CREATE_POD:
            pod_id = f"p{self._next_id}"
            self._next_id += 1
            self.pods[pod_id] = PodDesiredStatus.RUNNING
            return pod_id
        if action.kind == ActionKind.START_POD:
            self.pods[action.pod_id] = PodDesiredStatus.RUNNING
        elif action.kind == ActionKind.STOP_POD:
            self.pods[action.pod_id] = PodDesiredStatus.EXITED
        elif action.kind == ActionKind.TERMINATE_POD:
            del self.pods[action.pod_id]
        return None

    async def fetch_details(self, pod_id):
        if pod_id not in self.pods:
            return None
        return PodDetails(
            id=pod_id,
            name="trainer",
            desired_status=self.pods[pod_id].value,
            public_ip="1.2.3.4",
            port_mappings={22: 40022, 8888: 48888},
        )


def _make_config(**overrides) -> KernelConfig:
    values = {
        "pod_name": "trainer",
        "ready_timeout_ms": 1000,
        "poll_interval_ms": 0,
        "heartbeat_interval_s": 1,
    }
    values.update(overrides)
    return KernelConfig(**values)


class TestReconcilerLoop:
    def setup_method(self):
        self.remote = FakeRemote()
        self.clock_ms = 1000

    def _make_loop(self, store, fetch_details=True, **config) -> ReconcilerLoop:
        return ReconcilerLoop(
            store=store,
            probe=self.remote.probe,
            executor=self.remote.execute,
            fetch_details=self.remote.fetch_details if fetch_details else None,
            config=_make_config(**config),
            clock=lambda: self.clock_ms,
        )

    def test_first_run_creates_and_waits_ready(self, tmp_path):
        store = JsonFileStateStore(tmp_path / "state.json")
        loop = self._make_loop(store)

        result = asyncio.run(loop.reconcile_once())

        assert result.action == PlannedAction.create_pod("trainer")
        assert result.pod_id == "p1"
        assert result.lease is not None
        assert result.lease.ssh_endpoint() == ("1.2.3.4", 40022)
        assert store.load().pod_id == "p1"
        assert loop.last_result is result

    def test_second_cycle_is_noop(self, tmp_path):
        store = JsonFileStateStore(tmp_path / "state.json")
        loop = self._make_loop(store)

        asyncio.run(loop.reconcile_once())
        result = asyncio.run(loop.reconcile_once())

        assert result.action.is_noop
        assert len(self.remote.executed) == 1
        assert result.to_dict()["observation"] == "found"

    def test_restart_does_not_double_create(self, tmp_path):
        """A fresh loop over the same state file picks up the existing pod."""
        path = tmp_path / "state.json"
        asyncio.run(self._make_loop(JsonFileStateStore(path)).reconcile_once())

        restarted = self._make_loop(JsonFileStateStore(path))
        result = asyncio.run(restarted.reconcile_once())

        assert result.action.is_noop
        assert list(self.remote.pods) == ["p1"]

    def test_transient_probe_failure_after_create_waits(self, tmp_path):
        store = JsonFileStateStore(tmp_path / "state.json")
        loop = self._make_loop(store, fetch_details=False)
        asyncio.run(loop.reconcile_once())

        self.remote.probe_fails = True
        result = asyncio.run(loop.reconcile_once())

        assert result.action.is_noop
        assert store.load().pod_id == "p1"
        assert len(self.remote.pods) == 1

    def test_unknown_after_recreate_waits(self, tmp_path):
        store = JsonFileStateStore(tmp_path / "state.json")
        loop = self._make_loop(store, fetch_details=False, reuse_exited_pod=False)
        asyncio.run(loop.reconcile_once())
        self.remote.pods["p1"] = PodDesiredStatus.EXITED

        result = asyncio.run(loop.reconcile_once())
        assert result.action == PlannedAction.create_pod("trainer")
        assert store.load().last_remote is None

        self.remote.probe_fails = True
        result = asyncio.run(loop.reconcile_once())

        assert result.action.is_noop
        assert store.load().pod_id == "p2"
        assert sorted(self.remote.pods) == ["p1", "p2"]

    def test_stop_then_terminate(self, tmp_path):
        store = JsonFileStateStore(tmp_path / "state.json")
        loop = self._make_loop(store)
        asyncio.run(loop.reconcile_once())

        state = store.load()
        state.set_target(TargetStatus.EXITED, now_ms=self.clock_ms)
        store.save(state)
        result = asyncio.run(loop.reconcile_once())
        assert result.action == PlannedAction.stop_pod("p1")
        assert result.lease is None
        assert self.remote.pods["p1"] == PodDesiredStatus.EXITED

        state = store.load()
        state.set_target(TargetStatus.TERMINATED, now_ms=self.clock_ms)
        store.save(state)
        result = asyncio.run(loop.reconcile_once())
        assert result.action == PlannedAction.terminate_pod("p1")
        assert store.load().pod_id is None

        result = asyncio.run(loop.reconcile_once())
        assert result.action.is_noop
        assert self.remote.pods == {}

    def test_exited_pod_is_started(self, tmp_path):
        store = JsonFileStateStore(tmp_path / "state.json")
        loop = self._make_loop(store)
        asyncio.run(loop.reconcile_once())
        self.remote.pods["p1"] = PodDesiredStatus.EXITED

        result = asyncio.run(loop.reconcile_once())

        assert result.action == PlannedAction.start_pod("p1")
        assert result.lease is not None

    def test_broken_state_file_executes_nothing(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text('{"format_version": 7, "pod_name": "trainer"}')
        loop = self._make_loop(JsonFileStateStore(path))

        with pytest.raises(StateValidationError):
            asyncio.run(loop.reconcile_once())
        assert self.remote.executed == []

    def test_executor_failure_still_saves_observation(self, tmp_path):
        store = JsonFileStateStore(tmp_path / "state.json")
        loop = self._make_loop(store)
        asyncio.run(loop.reconcile_once())
        self.remote.pods["p1"] = PodDesiredStatus.EXITED
        self.remote.execute_fails = True
        self.clock_ms = 2000

        with pytest.raises(ExecutionError):
            asyncio.run(loop.reconcile_once())

        state = store.load()
        assert state.last_remote.desired_status == PodDesiredStatus.EXITED
        assert state.last_updated_ms == 2000

    def test_create_without_returned_id_fails(self, tmp_path):
        async def silent_executor(action):
            return None

        loop = ReconcilerLoop(
            store=JsonFileStateStore(tmp_path / "state.json"),
            probe=self.remote.probe,
            executor=silent_executor,
            config=_make_config(),
            clock=lambda: self.clock_ms,
        )
        with pytest.raises(ExecutionError):
            asyncio.run(loop.reconcile_once())

    def test_timestamps_never_go_backwards(self, tmp_path):
        store = JsonFileStateStore(tmp_path / "state.json")
        loop = self._make_loop(store, fetch_details=False)
        self.clock_ms = 5000
        asyncio.run(loop.reconcile_once())

        self.clock_ms = 10
        asyncio.run(loop.reconcile_once())
        assert store.load().last_updated_ms == 5000

    def test_first_run_uses_config_policy(self, tmp_path):
        store = JsonFileStateStore(tmp_path / "state.json")
        loop = self._make_loop(
            store, reuse_exited_pod=False, auto_terminate_after_exited_ms=10
        )
        asyncio.run(loop.reconcile_once())

        policy = store.load().policy
        assert policy.reuse_exited_pod is False
        assert policy.auto_terminate_after_exited_ms == 10


class TestRunAsync:
    def test_runs_until_stopped_and_survives_failures(self, tmp_path):
        remote = FakeRemote()
        path = tmp_path / "state.json"
        path.write_text("not json")
        loop = ReconcilerLoop(
            store=JsonFileStateStore(path),
            probe=remote.probe,
            executor=remote.execute,
            config=_make_config(),
        )

        async def scenario():
            stop = asyncio.Event()
            task = asyncio.create_task(loop.run_async(stop))
            await asyncio.sleep(0.05)
            assert loop.status == "running"
            stop.set()
            await task

        asyncio.run(scenario())
        assert loop.status == "stopped"
        assert remote.executed == []

    def test_initial_state_reported_stopped(self, tmp_path):
        loop = ReconcilerLoop(
            store=JsonFileStateStore(tmp_path / "state.json"),
            probe=FakeRemote().probe,
            executor=FakeRemote().execute,
        )
        assert loop.status == "stopped"


class TestFromConfig:
    def test_uses_configured_state_path_and_log_level(self, tmp_path):
        remote = FakeRemote()
        config = _make_config(
            state_path=tmp_path / "pods" / "trainer.json", log_level="DEBUG"
        )
        kernel_logger = logging.getLogger("pod_kernel")
        previous_level = kernel_logger.level

        loop = ReconcilerLoop.from_config(config, remote.probe, remote.execute)
        try:
            assert loop.store.path == tmp_path / "pods" / "trainer.json"
            assert kernel_logger.level == logging.DEBUG

            asyncio.run(loop.reconcile_once())
            assert JsonFileStateStore(config.state_path).load().pod_id == "p1"
        finally:
            for handler in list(kernel_logger.handlers):
                if getattr(handler, "_pod_kernel_handler", False):
                    kernel_logger.removeHandler(handler)
            kernel_logger.setLevel(previous_level)
