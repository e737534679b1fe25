"""Helpers for foreground child processes.

Foreground commands are started with ``process_group=0`` so each leads its own
process group, and stopping one reaches everything it spawned.
"""

import asyncio
import logging
import os
import signal

log = logging.getLogger(__name__)


def signal_group(pgid: int, sig: signal.Signals) -> bool:
    """Send ``sig`` to a process group, returning False if it no longer exists."""
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        return False
    return True


async def stop_process(
    process: asyncio.subprocess.Process, grace_period: float = 10.0
) -> None:
    """Stop ``process`` and the process group it leads.

    SIGTERM goes to the whole group; whatever is left once the leader exits,
    or once ``grace_period`` expires, is killed.
    """
    pgid = process.pid
    if not signal_group(pgid, signal.SIGTERM):
        log.debug("Process group %d already exited", pgid)

    try:
        await asyncio.wait_for(process.wait(), timeout=grace_period)
    except TimeoutError:
        log.warning(
            "Process %d ignored SIGTERM for %.1fs, killing its process group",
            pgid,
            grace_period,
        )

    if signal_group(pgid, signal.SIGKILL):
        log.debug("Killed remaining members of process group %d", pgid)
    await process.wait()
