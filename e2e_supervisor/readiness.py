"""Poll the dependency's port until it accepts connections."""

import asyncio
import logging
from collections.abc import Callable

from e2e_supervisor.errors import ReadinessTimeoutError, StartupError

log = logging.getLogger(__name__)


async def port_is_open(host: str, port: int, timeout: float = 1.0) -> bool:
    """Check whether a TCP connection to ``host:port`` succeeds."""
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except (OSError, TimeoutError):
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def wait_for_port(
    host: str,
    port: int,
    *,
    timeout: float = 60.0,
    poll_interval: float = 1.0,
    is_alive: Callable[[], bool] | None = None,
) -> int:
    """Wait until the port accepts connections.

    Args:
        host: Host the dependency listens on
        port: Port the dependency listens on
        timeout: Maximum wait time in seconds (default: 60)
        poll_interval: Seconds between connection attempts (default: 1)
        is_alive: Optional liveness check for the process expected to open
            the port; waiting stops early once it reports False

    Returns:
        Number of connection attempts made, including the successful one

    Raises:
        ReadinessTimeoutError: If the port is not connectable within timeout
        StartupError: If the process behind the port exits while waiting

    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    attempts = 0

    while True:
        attempts += 1
        if await port_is_open(host, port, timeout=poll_interval):
            log.info(
                "%s:%d accepting connections after %d attempt(s)",
                host,
                port,
                attempts,
            )
            return attempts

        if is_alive is not None and not is_alive():
            raise StartupError(
                f"Dependency exited before accepting connections on {host}:{port}"
            )

        if loop.time() >= deadline:
            raise ReadinessTimeoutError(
                f"{host}:{port} did not accept connections within {timeout} seconds"
            )

        log.debug("%s:%d not ready yet (attempt %d)", host, port, attempts)
        await asyncio.sleep(poll_interval)
