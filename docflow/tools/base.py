"""Shared plumbing for command-line transformation tools."""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
from collections.abc import Sequence

from docflow.core.errors import ToolNotFoundError, TransformError

logger = logging.getLogger(__name__)


def require_binary(binary: str) -> str:
    """Return the absolute path of ``binary`` or raise ``ToolNotFoundError``."""
    path = shutil.which(binary)
    if path is None:
        raise ToolNotFoundError(binary)
    return path


async def run_tool_async(cmd: Sequence[str], *, input_text: str | None = None) -> subprocess.CompletedProcess[str]:
    """Run a tool command, raising ``TransformError`` on a non-zero exit.

    The child process is killed and reaped when the awaiting task is
    cancelled.
    """
    logger.debug("Running tool", extra={"command": " ".join(cmd)})

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )

    try:
        stdout, stderr = await process.communicate(input_text.encode() if input_text is not None else None)
    except asyncio.CancelledError:
        if process.returncode is None:
            logger.warning("Killing cancelled tool", extra={"command": cmd[0], "pid": process.pid})
            process.kill()
        await process.wait()
        raise

    result = subprocess.CompletedProcess(
        list(cmd),
        process.returncode,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )

    if result.returncode != 0:
        raise TransformError(f"{cmd[0]} failed with exit code {result.returncode}: {result.stderr.strip()}")

    return result


__all__ = ["require_binary", "run_tool_async"]
