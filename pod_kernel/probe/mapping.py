"""
Probe mapping: turns raw pod API responses into kernel inputs.

The HTTP client lives outside the kernel. These helpers only encode the
contract between it and the planner:
  2xx with a known desiredStatus -> FOUND
  404                            -> NOT_FOUND
  anything else                  -> UNKNOWN (transport, 5xx, 429, junk)
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from pod_kernel.models.pod import Observation, PodDesiredStatus, RemotePodSnapshot
from pod_kernel.models.readiness import PodDetails

logger = logging.getLogger(__name__)


def parse_pod_details(payload: Any) -> Optional[PodDetails]:
    """Parse a `GET /pods/{podId}` body. None if it isn't a usable pod object."""
    if not isinstance(payload, dict):
        return None
    try:
        details = PodDetails.model_validate(payload)
    except ValidationError:
        return None
    if not details.id:
        return None
    return details


def observation_from_details(
    details: Optional[PodDetails], now_ms: int
) -> Observation:
    """FOUND for a pod with a recognized status, NOT_FOUND for None."""
    if details is None:
        return Observation.not_found()

    try:
        status = PodDesiredStatus(details.desired_status)
    except ValueError:
        logger.warning(
            "Pod %s reported unrecognized status %r; treating as unknown",
            details.id,
            details.desired_status,
            extra={"pod_id": details.id},
        )
        return Observation.unknown()

    return Observation.found(
        RemotePodSnapshot(
            id=details.id,
            name=details.name or "",
            desired_status=status,
            observed_at_ms=now_ms,
        )
    )


def observation_from_response(
    status_code: Optional[int], payload: Any, now_ms: int
) -> Observation:
    """
    Map one probe response to an Observation.

    `status_code` is None when the request never produced a response
    (timeout, connection refused).
    """
    if status_code is None:
        return Observation.unknown()
    if status_code == 404:
        return Observation.not_found()
    if not 200 <= status_code < 300:
        return Observation.unknown()

    details = parse_pod_details(payload)
    if details is None:
        return Observation.unknown()
    return observation_from_details(details, now_ms)
