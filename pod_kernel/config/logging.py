"""Logging helpers.

The kernel logs through standard `logging` loggers named after each module.
`configure_logging` renders them as one JSON object per line.

Records may carry kernel objects as extras. They are flattened so every
line stays plain JSON:
  PlannedAction -> "start_pod(p1)"
  Observation   -> {"kind": "found", "pod_id": "p1", "status": "RUNNING"}
  enums         -> their token, e.g. "TERMINATED"
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, TextIO

from pydantic import BaseModel

from pod_kernel.models.pod import Observation, PlannedAction

STRUCTURED_FIELDS = (
    "pod_id",
    "pod_name",
    "target",
    "status",
    "action",
    "observation",
    "elapsed_ms",
    "event",
)

_HANDLER_MARKER = "_pod_kernel_handler"


def _render(value: Any) -> Any:
    if isinstance(value, PlannedAction):
        return value.describe()
    if isinstance(value, Observation):
        rendered: Dict[str, Any] = {"kind": value.kind.value}
        if value.snapshot is not None:
            rendered["pod_id"] = value.snapshot.id
            rendered["status"] = value.snapshot.desired_status.value
        return rendered
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        line: Dict[str, Any] = {
            "ts": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                line[field] = _render(value)

        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(line, ensure_ascii=True, sort_keys=True, default=str)


def configure_logging(
    level: str = "INFO", stream: Optional[TextIO] = None
) -> logging.Logger:
    """Install the JSON handler on the `pod_kernel` logger (idempotent)."""
    logger = logging.getLogger("pod_kernel")
    logger.setLevel(level.upper())

    for handler in logger.handlers:
        if getattr(handler, _HANDLER_MARKER, False):
            if stream is not None:
                handler.setStream(stream)
            return logger

    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    setattr(handler, _HANDLER_MARKER, True)
    logger.addHandler(handler)
    return logger
