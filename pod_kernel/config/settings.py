"""
Kernel configuration, loaded from the environment.

In local development a `.env` file in the working directory is loaded
first; a missing file is not an error. Malformed numbers fail closed with
a ConfigError naming the variable.
"""

import os
from pathlib import Path
from typing import List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from pod_kernel.errors import ConfigError
from pod_kernel.models.policy import StatePolicy
from pod_kernel.state_store.store import DEFAULT_STATE_FILENAME, JsonFileStateStore


class KernelConfig(BaseModel):
    """Configuration for the pod kernel and its reconciler loop."""

    pod_name: str = Field(default="halldyll-pod", min_length=1)
    state_path: Path = Path(DEFAULT_STATE_FILENAME)
    required_ports: List[str] = ["22/tcp", "8888/http"]
    ready_timeout_ms: int = Field(default=300_000, ge=0)
    poll_interval_ms: int = Field(default=5_000, ge=0)
    reuse_exited_pod: bool = True
    auto_terminate_after_exited_ms: Optional[int] = Field(default=None, ge=0)
    heartbeat_interval_s: int = Field(default=60, ge=1)
    log_level: str = "INFO"

    def policy(self) -> StatePolicy:
        return StatePolicy(
            reuse_exited_pod=self.reuse_exited_pod,
            auto_terminate_after_exited_ms=self.auto_terminate_after_exited_ms,
        )

    @property
    def ready_timeout_s(self) -> float:
        return self.ready_timeout_ms / 1000.0

    @property
    def poll_interval_s(self) -> float:
        return self.poll_interval_ms / 1000.0

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[str] = None,
    ) -> "KernelConfig":
        """
        Build a config from environment variables.

        Pass `environ` to read from a mapping instead of `os.environ`
        (the `.env` file is then not consulted).
        """
        if environ is None:
            load_dotenv(dotenv_path)
            environ = os.environ

        auto_terminate = _env_int(environ, "RUNPOD_AUTO_TERMINATE_AFTER_EXITED_MS", None)
        mode = environ.get("RUNPOD_RECONCILE_MODE", "reuse").strip().lower()

        return cls(
            pod_name=environ.get("RUNPOD_POD_NAME", "halldyll-pod"),
            state_path=JsonFileStateStore.default_path(environ),
            required_ports=_split_csv(environ.get("RUNPOD_PORTS", "22/tcp,8888/http")),
            ready_timeout_ms=_env_int(environ, "RUNPOD_READY_TIMEOUT_MS", 300_000),
            poll_interval_ms=_env_int(environ, "RUNPOD_POLL_INTERVAL_MS", 5_000),
            reuse_exited_pod=mode != "recreate",
            auto_terminate_after_exited_ms=auto_terminate,
            heartbeat_interval_s=_env_int(environ, "RUNPOD_HEARTBEAT_INTERVAL_S", 60),
            log_level=environ.get("POD_KERNEL_LOG_LEVEL", "INFO").upper(),
        )


def _env_int(
    environ: Mapping[str, str], key: str, default: Optional[int]
) -> Optional[int]:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigError(key, raw, "expected an unsigned integer") from None
    if value < 0:
        raise ConfigError(key, raw, "expected an unsigned integer")
    return value


def _split_csv(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]
