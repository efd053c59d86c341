"""
Pod State Store: durable home of a single `PodState`.

Behavioral Contract:
- `load()` returns None on first run (no file yet).
- A record with the wrong format version or an empty pod name is rejected,
  never silently reinitialized. Callers must surface the error.
- `save()` validates the same invariants, then writes a sibling temp file,
  fsyncs it and renames it over the canonical path. A crash at any point
  leaves either the old file or the new file, never a partial one.
- One writer per file. Concurrent processes against the same path are
  unsupported (last writer wins).
"""

import json
import logging
import os
from pathlib import Path
from typing import Mapping, Optional, Protocol, Union

from pydantic import ValidationError

from pod_kernel.errors import (
    StateIOError,
    StateSerializationError,
    StateValidationError,
)
from pod_kernel.models.state import STATE_FORMAT_VERSION, PodState

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILENAME = ".runpod_state.json"
STATE_PATH_ENV = "RUNPOD_STATE_PATH"


class StateStore(Protocol):
    """Persistence API for pod state."""

    def load(self) -> Optional[PodState]:
        """Return the stored state, or None if nothing was stored yet."""

    def save(self, state: PodState) -> None:
        """Validate and durably store `state`."""


def validate_state(state: PodState) -> None:
    """Raise StateValidationError if `state` must not be trusted or written."""
    if state.format_version != STATE_FORMAT_VERSION:
        raise StateValidationError(
            f"unsupported state format version {state.format_version} "
            f"(expected {STATE_FORMAT_VERSION})"
        )
    if not state.pod_name.strip():
        raise StateValidationError("pod_name is empty")


class JsonFileStateStore:
    """File-based JSON state store with atomic writes."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def temp_path(self) -> Path:
        """Hidden sibling used for in-flight writes."""
        return self._path.with_name(f".{self._path.name or 'runpod_state'}.tmp")

    @staticmethod
    def default_path(environ: Optional[Mapping[str, str]] = None) -> Path:
        """`$RUNPOD_STATE_PATH`, falling back to `.runpod_state.json` in the cwd."""
        if environ is None:
            environ = os.environ
        raw = environ.get(STATE_PATH_ENV)
        if raw:
            return Path(raw)
        return Path(DEFAULT_STATE_FILENAME)

    def load(self) -> Optional[PodState]:
        if not self._path.exists():
            return None

        try:
            raw = self._path.read_bytes()
        except OSError as e:
            raise StateIOError(f"cannot read state file {self._path}: {e}") from e

        try:
            data = json.loads(raw)
        except ValueError as e:
            raise StateSerializationError(
                f"state file {self._path} is not valid JSON: {e}"
            ) from e
        if not isinstance(data, dict):
            raise StateSerializationError(
                f"state file {self._path} must contain a JSON object"
            )

        # Check the version before the schema so a future format reports
        # as a version mismatch, not as a parse failure.
        version = data.get("format_version")
        if version != STATE_FORMAT_VERSION:
            raise StateValidationError(
                f"unsupported state format version {version!r} "
                f"(expected {STATE_FORMAT_VERSION})"
            )

        try:
            state = PodState.model_validate(data)
        except ValidationError as e:
            raise StateSerializationError(
                f"state file {self._path} does not match the state schema: {e}"
            ) from e

        validate_state(state)
        logger.debug(
            "Loaded pod state from %s",
            self._path,
            extra={"pod_name": state.pod_name, "pod_id": state.pod_id},
        )
        return state

    def save(self, state: PodState) -> None:
        validate_state(state)

        try:
            payload = state.model_dump_json(indent=2).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise StateSerializationError(f"cannot serialize pod state: {e}") from e

        tmp = self.temp_path
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)

            with open(tmp, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())

            # Windows cannot rename over an existing file.
            if os.name == "nt" and self._path.exists():
                self._path.unlink()
            os.replace(tmp, self._path)
        except OSError as e:
            raise StateIOError(f"cannot write state file {self._path}: {e}") from e

        logger.debug(
            "Saved pod state to %s",
            self._path,
            extra={"pod_name": state.pod_name, "pod_id": state.pod_id},
        )
