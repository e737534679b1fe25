"""Infrastructure failures that abort a run before any test executes."""


class SupervisorError(Exception):
    """Base for failures of the environment rather than of the tests."""


class StartupError(SupervisorError):
    """Raised when the dependency process cannot be started."""


class BuildError(SupervisorError):
    """Raised when the test binary cannot be built or located."""


class ReadinessTimeoutError(SupervisorError, TimeoutError):
    """Raised when the dependency never accepts connections in time."""
