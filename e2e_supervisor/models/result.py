"""Models for foreground command and supervisor outcomes."""

from dataclasses import dataclass
from typing import Literal

SupervisorStatus = Literal[
    "success", "failure", "signaled", "startup_error", "interrupted"
]


@dataclass(frozen=True, kw_only=True)
class CommandResult:
    """Outcome of one foreground test command invocation.

    ``signal`` is set when the process was killed by a signal, in which case
    ``exit_code`` holds the mapped sentinel rather than a real exit status.
    """

    exit_code: int
    duration: float
    signal: int | None = None

    @property
    def signaled(self) -> bool:
        """Whether the process was terminated by a signal."""
        return self.signal is not None


@dataclass(frozen=True, kw_only=True)
class SupervisorResult:
    """Final outcome of a supervised run."""

    status: SupervisorStatus
    exit_code: int
    duration: float
    message: str | None = None
    ready_after_attempts: int | None = None
