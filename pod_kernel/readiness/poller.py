"""
Readiness Poller: waits for a started pod to become reachable.

A pod is ready when:
  - its desired status is RUNNING,
  - it has a non-empty public IP,
  - every required port spec ("22/tcp", "8888/http") has a public mapping.

"Not found" is final: a vanished pod will not come back, so the loop fails
immediately. Anything else not-yet-ready is retried every `poll_interval_s`
until `timeout_s` elapses. The loop never touches `PodState`.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from pod_kernel.errors import PodNotFoundError, ReadinessTimeoutError
from pod_kernel.models.pod import PodDesiredStatus
from pod_kernel.models.readiness import PodDetails, PodLease

logger = logging.getLogger(__name__)

# Returns None when the remote API says the pod does not exist.
FetchDetails = Callable[[str], Awaitable[Optional[PodDetails]]]


def parse_port_spec(spec: str) -> Optional[int]:
    """`"22/tcp"` -> 22. Returns None for anything unparseable."""
    port_str = spec.strip().split("/", 1)[0].strip()
    if not port_str.isdigit():
        return None
    port = int(port_str)
    if not 0 < port <= 65535:
        return None
    return port


def missing_ports(
    required_ports: Iterable[str], port_mappings: Dict[int, int]
) -> List[str]:
    """Required port specs that have no public mapping yet."""
    missing = []
    for spec in required_ports:
        port = parse_port_spec(spec)
        if port is None or port not in port_mappings:
            missing.append(spec)
    return missing


def lease_if_ready(
    details: PodDetails, required_ports: Iterable[str]
) -> Optional[PodLease]:
    """Build a lease from `details`, or None if the pod is not ready yet."""
    if details.desired_status != PodDesiredStatus.RUNNING.value:
        return None
    if not details.public_ip:
        return None
    if missing_ports(required_ports, details.port_mappings):
        return None

    return PodLease(
        id=details.id,
        name=details.name or "",
        public_ip=details.public_ip,
        port_mappings=dict(details.port_mappings),
        desired_status=details.desired_status,
    )


async def wait_ready(
    pod_id: str,
    fetch: FetchDetails,
    required_ports: Iterable[str] = (),
    timeout_s: float = 300.0,
    poll_interval_s: float = 5.0,
) -> PodLease:
    """
    Poll `fetch(pod_id)` until the pod is ready and return its lease.

    Raises PodNotFoundError as soon as the pod is reported missing, and
    ReadinessTimeoutError once `timeout_s` has elapsed, including while a
    `fetch` call is still in flight. Errors raised by `fetch` itself
    propagate unchanged.
    """
    required = list(required_ports)
    deadline = time.monotonic() + timeout_s
    attempt = 0

    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ReadinessTimeoutError(pod_id, timeout_s)

        attempt += 1
        try:
            details = await asyncio.wait_for(fetch(pod_id), timeout=remaining)
        except asyncio.TimeoutError:
            logger.warning(
                "Pod %s details request still pending at readiness deadline",
                pod_id,
                extra={"pod_id": pod_id, "event": "ready_timeout"},
            )
            raise ReadinessTimeoutError(pod_id, timeout_s) from None
        if details is None:
            raise PodNotFoundError(pod_id)

        lease = lease_if_ready(details, required)
        if lease is not None:
            logger.info(
                "Pod %s ready at %s after %d poll(s)",
                pod_id,
                lease.public_ip,
                attempt,
                extra={"pod_id": pod_id, "event": "pod_ready"},
            )
            return lease

        logger.debug(
            "Pod %s not ready (status=%s, ip=%s, missing=%s)",
            pod_id,
            details.desired_status,
            details.public_ip,
            missing_ports(required, details.port_mappings),
            extra={"pod_id": pod_id},
        )
        await asyncio.sleep(min(poll_interval_s, max(0.0, deadline - time.monotonic())))
