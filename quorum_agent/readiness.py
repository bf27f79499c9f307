"""TCP readiness polling for processes that take a while to bind or release a port."""

import logging
import socket
import time

logger = logging.getLogger(__name__)

POLL_ATTEMPTS = 5
POLL_INTERVAL = 0.5  # seconds
CONNECT_TIMEOUT = 0.5  # seconds


def is_reachable(host: str, port: int, timeout: float = CONNECT_TIMEOUT) -> bool:
    """Try a single TCP connection.

    Returns True if the connection was accepted.
    """
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def wait_for_port(
    host: str,
    port: int,
    reachable: bool = True,
    attempts: int = POLL_ATTEMPTS,
    interval: float = POLL_INTERVAL,
) -> bool:
    """Wait until a port becomes reachable (or unreachable).

    Each attempt sleeps for one interval and then probes the port once.

    Args:
        host: Host to connect to
        port: Port to connect to
        reachable: True to wait until a connection succeeds, False to wait
            until connections are refused
        attempts: Number of probes before giving up
        interval: Seconds to sleep before each probe

    Returns:
        True if the desired state was observed, False if all attempts were
        used up. Running out of attempts is not an error.
    """
    for attempt in range(1, attempts + 1):
        time.sleep(interval)
        if is_reachable(host, port) == reachable:
            return True
        logger.debug(
            "%s:%d still %s after attempt %d/%d",
            host,
            port,
            "unreachable" if reachable else "reachable",
            attempt,
            attempts,
        )

    logger.debug(
        "Gave up waiting for %s:%d to become %s",
        host,
        port,
        "reachable" if reachable else "unreachable",
    )
    return False
