"""Tests for configuration models."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from e2e_supervisor.config import (
    BuildConfig,
    DependencyConfig,
    ReadinessConfig,
    SupervisorConfig,
    TestCommandConfig,
)
from e2e_supervisor.testing.factories import DependencyConfigFactory


class TestDependencyConfig:
    """Tests for DependencyConfig."""

    def test_default_launch_command(self) -> None:
        """Forks the pinned block of the default chain on the fixed port."""
        assert DependencyConfig().launch_command() == [
            "anvil",
            "--fork-url",
            "https://eth.merkle.io",
            "--fork-block-number",
            "20395662",
            "--port",
            "8545",
        ]

    def test_launch_command_appends_extra_args(self) -> None:
        """Extra arguments follow the fork options."""
        config = DependencyConfig(binary="/opt/anvil", extra_args=["--silent"])

        command = config.launch_command()

        assert command[0] == "/opt/anvil"
        assert command[-1] == "--silent"

    def test_launch_command_uses_configured_values(self) -> None:
        """Every configured value ends up on the command line."""
        config = DependencyConfigFactory.build()

        command = config.launch_command()

        assert command[0] == config.binary
        assert command[command.index("--fork-url") + 1] == config.fork_url
        assert command[command.index("--port") + 1] == str(config.port)
        assert command[command.index("--fork-block-number") + 1] == str(
            config.fork_block_number
        )

    def test_endpoint_url(self) -> None:
        """Builds the local endpoint from host and port."""
        config = DependencyConfig(host="127.0.0.1", port=9545)

        assert config.endpoint_url == "http://127.0.0.1:9545"

    @pytest.mark.parametrize("port", [0, 65536])
    def test_rejects_invalid_port(self, port: int) -> None:
        """Rejects ports outside the TCP range."""
        with pytest.raises(ValidationError):
            DependencyConfig(port=port)

    def test_rejects_unknown_fields(self) -> None:
        """Rejects misspelled options instead of ignoring them."""
        with pytest.raises(ValidationError):
            DependencyConfig(fork_block=1)  # type: ignore[call-arg]

    def test_is_frozen(self) -> None:
        """Cannot be modified after construction."""
        config = DependencyConfig()

        with pytest.raises(ValidationError):
            config.port = 1  # type: ignore[misc]


def test_readiness_defaults() -> None:
    """Waits at most a minute, probing every second."""
    config = ReadinessConfig()

    assert config.timeout == 60.0
    assert config.poll_interval == 1.0


@pytest.mark.parametrize("field", ["timeout", "poll_interval"])
def test_readiness_rejects_non_positive(field: str) -> None:
    """Timeout and interval must be positive."""
    with pytest.raises(ValidationError):
        ReadinessConfig(**{field: 0})


def test_build_defaults() -> None:
    """Builds the node binary in the dev profile."""
    config = BuildConfig()

    assert list(config.command) == [
        "cargo",
        "build",
        "--bin",
        "madara",
        "--profile",
        "dev",
    ]
    assert config.artifact == Path("target/debug/madara")
    assert config.binary is None


def test_test_command_defaults() -> None:
    """Runs the whole workspace with a reduced iteration count."""
    config = TestCommandConfig()

    assert list(config.command) == ["cargo", "test", "--profile", "dev"]
    assert list(config.default_args) == ["--workspace"]
    assert config.proptest_cases == 5


def test_rejects_empty_test_command() -> None:
    """A test command needs at least an executable."""
    with pytest.raises(ValidationError):
        TestCommandConfig(command=[])


def test_supervisor_defaults() -> None:
    """The run-wide iteration default is larger than the test override."""
    config = SupervisorConfig()

    assert config.default_proptest_cases == 10
    assert config.tests.proptest_cases < config.default_proptest_cases
    assert config.dependency.port == 8545
