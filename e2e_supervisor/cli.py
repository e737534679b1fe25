"""CLI entry point for supervised end-to-end test runs."""

import argparse
import asyncio
import json
import logging
import os
import shlex
import sys
from collections.abc import Mapping, Sequence
from dataclasses import asdict
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from e2e_supervisor.config import (
    DEFAULT_FORK_BLOCK_NUMBER,
    DEFAULT_FORK_URL,
    DEFAULT_PORT,
    BuildConfig,
    DependencyConfig,
    ReadinessConfig,
    SupervisorConfig,
    TestCommandConfig,
)
from e2e_supervisor.models.result import SupervisorResult
from e2e_supervisor.supervisor import Supervisor

STATUS_SYMBOLS = {
    "success": "✅",
    "failure": "❌",
    "signaled": "⚡",
    "startup_error": "❗",
    "interrupted": "⏹️",
}


def log_result_summary(log: logging.Logger, result: SupervisorResult) -> None:
    """Log a formatted summary of the run."""
    symbol = STATUS_SYMBOLS.get(result.status, "?")
    log.info("=" * 80)
    log.info(
        "%s %s: exit code %d (%.2fs)",
        symbol,
        result.status,
        result.exit_code,
        result.duration,
    )
    if result.ready_after_attempts is not None:
        log.info(
            "  Dependency ready after %d attempt(s)", result.ready_after_attempts
        )
    if result.message:
        log.info("  Message: %s", result.message)
    log.info("=" * 80)


def format_output(result: SupervisorResult) -> dict[str, Any]:
    """Format the run result for the JSON report."""
    return asdict(result)


def split_forwarded_args(
    parser: argparse.ArgumentParser, argv: Sequence[str]
) -> tuple[list[str], list[str]]:
    """Split argv into the supervisor's own options and forwarded args.

    Own options come first. Forwarding starts at the first argument that is
    not one of them and keeps everything from there on verbatim, including
    any ``--``. A ``--`` directly after the own options is only a separator.
    """
    options = parser._option_string_actions
    index = 0
    while index < len(argv):
        arg = argv[index]
        if arg == "--":
            return list(argv[:index]), list(argv[index + 1 :])
        name, inline, _ = arg.partition("=")
        action = options.get(name)
        if action is None:
            break
        index += 1 if inline or action.nargs == 0 else 2
    return list(argv[:index]), list(argv[index:])


def build_parser(environ: Mapping[str, str]) -> argparse.ArgumentParser:
    """Build the argument parser, taking defaults from ``environ``."""
    parser = argparse.ArgumentParser(
        usage="%(prog)s [options] [--] [TEST_ARGS ...]",
        description=(
            "Run end-to-end tests against a forked chain node, "
            "tearing the node down afterwards"
        ),
        epilog=(
            "Everything from the first argument that is not an option above is "
            "passed to the test command unchanged (default: --workspace)."
        ),
        allow_abbrev=False,
    )
    # String defaults from the environment go through type= like flag values
    parser.add_argument(
        "--fork-url",
        default=environ.get("ETH_FORK_URL", DEFAULT_FORK_URL),
        help="RPC URL of the chain to fork (env: ETH_FORK_URL)",
    )
    parser.add_argument(
        "--fork-block-number",
        type=int,
        default=environ.get("ETH_FORK_BLOCK_NUMBER", DEFAULT_FORK_BLOCK_NUMBER),
        help="Block number to fork at (env: ETH_FORK_BLOCK_NUMBER)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=environ.get("E2E_DEPENDENCY_PORT", DEFAULT_PORT),
        help="Port the forked node listens on (env: E2E_DEPENDENCY_PORT)",
    )
    parser.add_argument(
        "--dependency-binary",
        default="anvil",
        help="Executable of the forked node",
    )
    parser.add_argument(
        "--dependency-log",
        type=Path,
        default=None,
        help="Write the node's output to this file instead of the terminal",
    )
    parser.add_argument(
        "--readiness-timeout",
        type=float,
        default=environ.get("E2E_READINESS_TIMEOUT", 60.0),
        help="Seconds to wait for the node to accept connections "
        "(env: E2E_READINESS_TIMEOUT)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=1.0,
        help="Seconds between readiness probes",
    )
    parser.add_argument(
        "--test-command",
        type=shlex.split,
        default=None,
        help="Test command to run instead of 'cargo test --profile dev'",
    )
    parser.add_argument(
        "--build-command",
        type=shlex.split,
        default=None,
        help="Build command to run instead of "
        "'cargo build --bin madara --profile dev'",
    )
    parser.add_argument(
        "--artifact",
        type=Path,
        default=None,
        help="Binary produced by the build command, relative to --workdir",
    )
    parser.add_argument(
        "--binary",
        type=Path,
        default=None,
        help="Use this prebuilt binary instead of running the build step",
    )
    parser.add_argument(
        "--workdir",
        type=Path,
        default=Path("."),
        help="Directory the build and test commands run in",
    )
    parser.add_argument(
        "--proptest-cases",
        type=int,
        default=5,
        help="Randomized test iterations exported to the test command",
    )
    parser.add_argument(
        "--report",
        type=Path,
        default=None,
        help="Write a JSON summary of the run to this path",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> SupervisorConfig:
    """Build the supervisor configuration from parsed arguments."""
    return SupervisorConfig(
        workdir=args.workdir,
        dependency=DependencyConfig(
            binary=args.dependency_binary,
            fork_url=args.fork_url,
            fork_block_number=args.fork_block_number,
            port=args.port,
            log_file=args.dependency_log,
        ),
        readiness=ReadinessConfig(
            timeout=args.readiness_timeout,
            poll_interval=args.poll_interval,
        ),
        build=BuildConfig(
            **_given(command=args.build_command, artifact=args.artifact),
            binary=args.binary,
        ),
        tests=TestCommandConfig(
            **_given(command=args.test_command),
            proptest_cases=args.proptest_cases,
        ),
    )


def _given(**options: Any) -> dict[str, Any]:
    """Drop options left unset so model defaults apply."""
    return {key: value for key, value in options.items() if value is not None}


async def run(
    config: SupervisorConfig,
    test_args: Sequence[str] = (),
    report_path: Path | None = None,
) -> int:
    """Run the supervised tests and return the exit code."""
    log = logging.getLogger("e2e_supervisor")

    supervisor = Supervisor(config=config)
    result = await supervisor.run(test_args)

    log_result_summary(log, result)

    if report_path is not None:
        report_path.write_text(json.dumps(format_output(result), indent=2))
        log.info("Report written to %s", report_path)

    return result.exit_code


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser(os.environ)
    own_args, test_args = split_forwarded_args(
        parser, sys.argv[1:] if argv is None else argv
    )
    args = parser.parse_args(own_args)
    try:
        config = config_from_args(args)
    except ValidationError as e:
        parser.error(str(e))

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(
        run(
            config=config,
            test_args=test_args,
            report_path=args.report,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
