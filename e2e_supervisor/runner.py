"""Run the foreground test command against the ready dependency."""

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from e2e_supervisor.config import TestCommandConfig
from e2e_supervisor.environment import TestEnvironment, merge_environment
from e2e_supervisor.models.result import CommandResult
from e2e_supervisor.process import stop_process

log = logging.getLogger(__name__)

SIGNAL_EXIT_CODE_BASE = 128
# Same code a shell reports for a command it cannot find
COMMAND_NOT_RUNNABLE_EXIT_CODE = 127


def resolve_test_args(
    args: Sequence[str], default_args: Sequence[str]
) -> Sequence[str]:
    """Use the caller's arguments verbatim, or the defaults when none given."""
    return tuple(args) if args else tuple(default_args)


def exit_code_from_returncode(returncode: int) -> tuple[int, int | None]:
    """Map a subprocess returncode to an exit code and terminating signal.

    Negative returncodes mean the process was killed by a signal; those map
    to ``128 + signal`` like a shell reports them.
    """
    if returncode < 0:
        signum = -returncode
        return SIGNAL_EXIT_CODE_BASE + signum, signum
    return returncode, None


async def run_test_command(
    config: TestCommandConfig,
    test_env: TestEnvironment,
    args: Sequence[str] = (),
    *,
    base_env: Mapping[str, str],
    cwd: Path | None = None,
) -> CommandResult:
    """Run the test command to completion with stdio inherited.

    Args:
        config: Test command configuration
        test_env: Values exported to the command, overriding ``base_env``
        args: Caller-supplied arguments; empty selects ``config.default_args``
        base_env: Environment inherited by the command
        cwd: Working directory for the command

    Returns:
        Exit status of the command

    """
    command = [*config.command, *resolve_test_args(args, config.default_args)]
    env = merge_environment(base_env, test_env.to_overlay())

    log.info("Running tests: %s", " ".join(command))
    started = time.monotonic()
    try:
        process = await asyncio.create_subprocess_exec(
            *command, env=env, cwd=cwd, process_group=0
        )
    except OSError as e:
        log.error("Failed to start test command %r: %s", command[0], e)
        return CommandResult(
            exit_code=COMMAND_NOT_RUNNABLE_EXIT_CODE,
            duration=time.monotonic() - started,
        )

    try:
        returncode = await process.wait()
    except asyncio.CancelledError:
        log.warning("Interrupted, stopping test command (pid %d)", process.pid)
        await stop_process(process, config.shutdown_grace_period)
        raise

    duration = time.monotonic() - started
    exit_code, signum = exit_code_from_returncode(returncode)
    if signum is not None:
        log.warning("Test command terminated by signal %d", signum)
    else:
        log.info("Test command exited with code %d (%.1fs)", exit_code, duration)

    return CommandResult(exit_code=exit_code, duration=duration, signal=signum)
