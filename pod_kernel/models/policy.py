"""Local override policy for pod state management."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class StatePolicy(BaseModel):
    """Pure configuration: no runtime state lives here."""

    model_config = ConfigDict(frozen=True)

    # When the pod is EXITED and we want it RUNNING, start it instead of recreating.
    reuse_exited_pod: bool = True
    # Force the target to TERMINATED once a pod has stayed EXITED this long.
    auto_terminate_after_exited_ms: Optional[int] = Field(default=None, ge=0)
