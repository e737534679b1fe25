"""Build and locate the binary exercised by the end-to-end tests."""

import asyncio
import logging
from collections.abc import Mapping
from pathlib import Path

from e2e_supervisor.config import BuildConfig
from e2e_supervisor.errors import BuildError
from e2e_supervisor.process import stop_process

log = logging.getLogger(__name__)


async def build_test_binary(
    config: BuildConfig,
    *,
    workdir: Path,
    env: Mapping[str, str] | None = None,
) -> Path:
    """Run the build command and return the absolute path of its artifact.

    A prebuilt ``config.binary`` short-circuits the build.

    Raises:
        BuildError: If the build fails or the artifact is missing

    """
    if config.binary is not None:
        binary = (workdir / config.binary).resolve()
        if not binary.is_file():
            raise BuildError(f"Prebuilt binary not found: {binary}")
        log.info("Using prebuilt binary %s", binary)
        return binary

    log.info("Building test binary: %s", " ".join(config.command))
    try:
        process = await asyncio.create_subprocess_exec(
            *config.command,
            cwd=workdir,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            process_group=0,
        )
    except OSError as e:
        raise BuildError(f"Failed to run build command: {e}") from e

    try:
        returncode = await process.wait()
    except asyncio.CancelledError:
        await stop_process(process)
        raise

    if returncode != 0:
        raise BuildError(f"Build command failed with returncode {returncode}")

    binary = (workdir / config.artifact).resolve()
    if not binary.is_file():
        raise BuildError(f"Build succeeded but artifact is missing: {binary}")

    log.info("Built test binary %s", binary)
    return binary
