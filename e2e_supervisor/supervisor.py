"""Supervise one end-to-end test run against a forked chain node."""

import asyncio
import logging
import signal
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from e2e_supervisor.build import build_test_binary
from e2e_supervisor.config import SupervisorConfig
from e2e_supervisor.dependency import launch_dependency
from e2e_supervisor.environment import TestEnvironment, process_environment
from e2e_supervisor.errors import SupervisorError
from e2e_supervisor.models.result import (
    CommandResult,
    SupervisorResult,
    SupervisorStatus,
)
from e2e_supervisor.readiness import wait_for_port
from e2e_supervisor.runner import SIGNAL_EXIT_CODE_BASE, run_test_command

log = logging.getLogger(__name__)

# Outside the range test harnesses use, so "environment failed to come up"
# can be told apart from "tests failed"
STARTUP_FAILURE_EXIT_CODE = 125

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SupervisorState(StrEnum):
    """Lifecycle of a supervised run."""

    INIT = "init"
    DEPENDENCY_STARTED = "dependency_started"
    BUILDING = "building"
    READY = "ready"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SupervisorState.DONE, SupervisorState.FAILED})


@dataclass(kw_only=True)
class Supervisor:
    """Runs the test command with the dependency up, then tears it down.

    The dependency is owned through :func:`launch_dependency`, so its process
    group is terminated whichever way the run ends: success, test failure,
    infrastructure failure or SIGINT/SIGTERM delivered to this process.
    """

    config: SupervisorConfig
    state: SupervisorState = field(default=SupervisorState.INIT, init=False)
    history: list[SupervisorState] = field(
        default_factory=lambda: [SupervisorState.INIT], init=False
    )
    interrupted_by: signal.Signals | None = field(default=None, init=False)
    command_result: CommandResult | None = field(default=None, init=False)
    ready_after_attempts: int | None = field(default=None, init=False)

    async def run(self, test_args: Sequence[str] = ()) -> SupervisorResult:
        """Run the whole sequence and return its outcome.

        Args:
            test_args: Arguments forwarded verbatim to the test command; empty
                selects the configured default set

        Returns:
            Result whose ``exit_code`` is the test command's exit code, or a
            sentinel when the environment failed or the run was interrupted

        """
        if self.state is not SupervisorState.INIT:
            raise RuntimeError("A supervisor can only run once")

        started = time.monotonic()
        task = asyncio.current_task()
        installed = self._install_signal_handlers(task)

        try:
            await self._run(test_args)
        except SupervisorError as e:
            self._transition(SupervisorState.FAILED)
            log.error("Environment failed to come up: %s", e)
            return SupervisorResult(
                status="startup_error",
                exit_code=STARTUP_FAILURE_EXIT_CODE,
                duration=time.monotonic() - started,
                message=str(e),
                ready_after_attempts=self.ready_after_attempts,
            )
        except asyncio.CancelledError:
            if self.interrupted_by is None or task is None:
                raise
            task.uncancel()
            if self.command_result is None:
                self._transition(SupervisorState.FAILED)
                return SupervisorResult(
                    status="interrupted",
                    exit_code=SIGNAL_EXIT_CODE_BASE + self.interrupted_by,
                    duration=time.monotonic() - started,
                    message=f"Interrupted by {self.interrupted_by.name}",
                    ready_after_attempts=self.ready_after_attempts,
                )
            # Interrupted during teardown, the test outcome still stands
        finally:
            self._remove_signal_handlers(installed)

        return self._command_outcome(time.monotonic() - started)

    async def _run(self, test_args: Sequence[str]) -> None:
        config = self.config
        base_env = process_environment(config.default_proptest_cases)

        async with launch_dependency(config.dependency, env=base_env) as dependency:
            self._transition(SupervisorState.DEPENDENCY_STARTED)

            self._transition(SupervisorState.BUILDING)
            binary = await build_test_binary(
                config.build, workdir=config.workdir, env=base_env
            )

            self.ready_after_attempts = await wait_for_port(
                config.dependency.host,
                config.dependency.port,
                timeout=config.readiness.timeout,
                poll_interval=config.readiness.poll_interval,
                is_alive=dependency.is_alive,
            )
            self._transition(SupervisorState.READY)

            test_env = TestEnvironment(
                coverage_bin=binary,
                fork_url=config.dependency.fork_url,
                endpoint_url=config.dependency.endpoint_url,
                proptest_cases=config.tests.proptest_cases,
            )
            self._transition(SupervisorState.RUNNING)
            self.command_result = await run_test_command(
                config.tests,
                test_env,
                test_args,
                base_env=base_env,
                cwd=config.workdir,
            )

    def _command_outcome(self, duration: float) -> SupervisorResult:
        result = self.command_result
        if result is None:
            raise RuntimeError("Run finished without a test command result")

        status: SupervisorStatus
        message = None
        if result.exit_code == 0:
            self._transition(SupervisorState.DONE)
            status = "success"
        else:
            self._transition(SupervisorState.FAILED)
            status = "signaled" if result.signaled else "failure"
            if result.signaled:
                message = f"Test command terminated by signal {result.signal}"

        return SupervisorResult(
            status=status,
            exit_code=result.exit_code,
            duration=duration,
            message=message,
            ready_after_attempts=self.ready_after_attempts,
        )

    def _transition(self, new_state: SupervisorState) -> None:
        log.debug("Supervisor state %s -> %s", self.state, new_state)
        self.state = new_state
        self.history.append(new_state)

    def _install_signal_handlers(
        self, task: asyncio.Task[object] | None
    ) -> list[signal.Signals]:
        if task is None:
            return []

        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in INTERRUPT_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._interrupt, sig, task)
            except (NotImplementedError, RuntimeError, ValueError):
                log.debug("Cannot handle %s here, relying on default", sig.name)
            else:
                installed.append(sig)
        return installed

    def _remove_signal_handlers(self, installed: Sequence[signal.Signals]) -> None:
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)

    def _interrupt(self, sig: signal.Signals, task: asyncio.Task[object]) -> None:
        if self.interrupted_by is not None or self.state in TERMINAL_STATES:
            log.warning("Received %s while already shutting down", sig.name)
            return

        log.warning("Received %s, tearing down before exiting", sig.name)
        self.interrupted_by = sig
        task.cancel()
