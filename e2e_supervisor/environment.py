"""Environment handed to child processes.

The supervisor never mutates ``os.environ``. Each child gets an explicit
mapping built by :func:`merge_environment`, where overlay values always take
precedence over inherited ones.
"""

import os
from collections.abc import Mapping
from pathlib import Path

from e2e_supervisor.models.base import Model

COVERAGE_BIN_VAR = "COVERAGE_BIN"
ETH_FORK_URL_VAR = "ETH_FORK_URL"
ETH_RPC_URL_VAR = "ETH_RPC_URL"
PROPTEST_CASES_VAR = "PROPTEST_CASES"


class TestEnvironment(Model):
    """Values exported to the foreground test command."""

    __test__ = False

    coverage_bin: Path
    fork_url: str
    endpoint_url: str
    proptest_cases: int

    def to_overlay(self) -> Mapping[str, str]:
        """Render the record as environment variables."""
        return {
            COVERAGE_BIN_VAR: str(self.coverage_bin),
            ETH_FORK_URL_VAR: self.fork_url,
            ETH_RPC_URL_VAR: self.endpoint_url,
            PROPTEST_CASES_VAR: str(self.proptest_cases),
        }


def merge_environment(
    base: Mapping[str, str], overlay: Mapping[str, str]
) -> dict[str, str]:
    """Return a new environment with ``overlay`` applied on top of ``base``."""
    return {**base, **overlay}


def process_environment(
    default_proptest_cases: int, environ: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Environment shared by every child the supervisor starts.

    Args:
        default_proptest_cases: Run-wide iteration count for randomized tests
        environ: Inherited environment (defaults to ``os.environ``)

    """
    inherited = os.environ if environ is None else environ
    return merge_environment(
        inherited, {PROPTEST_CASES_VAR: str(default_proptest_cases)}
    )
