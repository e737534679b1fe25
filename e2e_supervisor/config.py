"""Configuration for the supervised end-to-end test run."""

from collections.abc import Sequence
from pathlib import Path

from pydantic import Field

from e2e_supervisor.models.base import Model

DEFAULT_FORK_URL = "https://eth.merkle.io"
DEFAULT_FORK_BLOCK_NUMBER = 20395662
DEFAULT_PORT = 8545
DEFAULT_HOST = "127.0.0.1"


class DependencyConfig(Model):
    """How to launch the forked chain node the tests run against."""

    binary: str = "anvil"
    fork_url: str = DEFAULT_FORK_URL
    fork_block_number: int = Field(default=DEFAULT_FORK_BLOCK_NUMBER, ge=0)
    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    extra_args: Sequence[str] = ()
    # None inherits the supervisor's stdout/stderr
    log_file: Path | None = None
    shutdown_grace_period: float = Field(default=10.0, ge=0)

    @property
    def endpoint_url(self) -> str:
        """URL the tests use to reach the running node."""
        return f"http://{self.host}:{self.port}"

    def launch_command(self) -> list[str]:
        """Build the full argv used to spawn the node."""
        return [
            self.binary,
            "--fork-url",
            self.fork_url,
            "--fork-block-number",
            str(self.fork_block_number),
            "--port",
            str(self.port),
            *self.extra_args,
        ]


class ReadinessConfig(Model):
    """Bounds for polling the node's port."""

    timeout: float = Field(default=60.0, gt=0)
    poll_interval: float = Field(default=1.0, gt=0)


class BuildConfig(Model):
    """Build step producing the binary under test.

    When ``binary`` is set the build is skipped and that path is used as is.
    """

    command: Sequence[str] = Field(
        default=("cargo", "build", "--bin", "madara", "--profile", "dev"),
        min_length=1,
    )
    artifact: Path = Path("target/debug/madara")
    binary: Path | None = None


class TestCommandConfig(Model):
    """Foreground test command and the values exported to it."""

    __test__ = False

    command: Sequence[str] = Field(
        default=("cargo", "test", "--profile", "dev"), min_length=1
    )
    default_args: Sequence[str] = ("--workspace",)
    proptest_cases: int = Field(default=5, ge=1)
    shutdown_grace_period: float = Field(default=10.0, ge=0)


class SupervisorConfig(Model):
    """Complete configuration for one supervised run."""

    workdir: Path = Path(".")
    default_proptest_cases: int = Field(default=10, ge=1)
    dependency: DependencyConfig = Field(default_factory=DependencyConfig)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)
    tests: TestCommandConfig = Field(default_factory=TestCommandConfig)
