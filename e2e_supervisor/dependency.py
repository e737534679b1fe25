"""Launch the forked chain node and tear it down as a process group."""

import asyncio
import logging
import os
import signal
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import IO

from e2e_supervisor.config import DependencyConfig
from e2e_supervisor.errors import StartupError
from e2e_supervisor.readiness import port_is_open

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class DependencyProcess:
    """Handle on the running node.

    The node is started as the leader of a new session, so its pid is also
    the id of the process group holding it and everything it spawns.
    """

    process: asyncio.subprocess.Process = field(repr=False)
    pgid: int
    port: int
    shutdown_grace_period: float = 10.0
    terminated: bool = field(default=False, init=False)

    @property
    def pid(self) -> int:
        """Pid of the group leader."""
        return self.process.pid

    def is_alive(self) -> bool:
        """Whether the group leader is still running."""
        return self.process.returncode is None

    async def terminate(self) -> None:
        """Terminate the whole process group.

        Only the first call does anything. Errors are logged and never
        raised, so teardown cannot mask the outcome of the run.
        """
        if self.terminated:
            log.debug("Process group %d already torn down", self.pgid)
            return
        self.terminated = True

        # Runs as its own task so a cancellation cannot cut it short
        teardown = asyncio.ensure_future(self._terminate_group())
        try:
            await asyncio.wait([teardown])
        except asyncio.CancelledError:
            log.warning("Interrupted during teardown, finishing it first")
            await asyncio.wait([teardown])
            raise
        finally:
            if (
                teardown.done()
                and not teardown.cancelled()
                and (error := teardown.exception()) is not None
            ):
                log.error(
                    "Failed to tear down dependency process group %d: %s",
                    self.pgid,
                    error,
                    exc_info=error,
                )

    async def _terminate_group(self) -> None:
        log.info("Terminating dependency process group %d", self.pgid)
        if not self._signal_group(signal.SIGTERM):
            log.info("Dependency process group %d already exited", self.pgid)

        try:
            await asyncio.wait_for(
                self.process.wait(), timeout=self.shutdown_grace_period
            )
        except TimeoutError:
            log.warning(
                "Dependency did not exit within %.1fs, killing process group %d",
                self.shutdown_grace_period,
                self.pgid,
            )

        # Descendants may outlive the leader or ignore SIGTERM
        if self._signal_group(signal.SIGKILL):
            log.debug("Killed remaining members of process group %d", self.pgid)

        returncode = await self.process.wait()
        log.info("Dependency exited with returncode %d", returncode)

    def _signal_group(self, sig: signal.Signals) -> bool:
        """Send ``sig`` to the group, returning False if it no longer exists."""
        try:
            os.killpg(self.pgid, sig)
        except ProcessLookupError:
            return False
        return True


async def start_dependency(
    config: DependencyConfig, *, env: Mapping[str, str] | None = None
) -> DependencyProcess:
    """Spawn the node in its own process group.

    Raises:
        StartupError: If the port is already taken or the binary cannot run

    """
    if await port_is_open(config.host, config.port):
        raise StartupError(
            f"Port {config.port} on {config.host} is already in use, "
            "refusing to start the dependency"
        )

    command = config.launch_command()
    log.info("Starting dependency: %s", " ".join(command))

    try:
        if config.log_file is None:
            process = await _spawn(command, env, output=None)
        else:
            with config.log_file.open("ab") as output:
                process = await _spawn(command, env, output=output)
    except OSError as e:
        raise StartupError(f"Failed to start dependency {config.binary!r}: {e}") from e

    log.info("Dependency started with pid %d", process.pid)
    return DependencyProcess(
        process=process,
        pgid=process.pid,
        port=config.port,
        shutdown_grace_period=config.shutdown_grace_period,
    )


async def _spawn(
    command: list[str], env: Mapping[str, str] | None, output: IO[bytes] | None
) -> asyncio.subprocess.Process:
    return await asyncio.create_subprocess_exec(
        *command,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=output,
        stderr=asyncio.subprocess.STDOUT if output is not None else None,
        env=env,
        start_new_session=True,
    )


@asynccontextmanager
async def launch_dependency(
    config: DependencyConfig, *, env: Mapping[str, str] | None = None
) -> AsyncGenerator[DependencyProcess, None]:
    """Start the node and tear its process group down on every exit path."""
    dependency = await start_dependency(config, env=env)
    try:
        yield dependency
    finally:
        await dependency.terminate()
