"""Command runner for pipeline steps.

This module handles:
- Executing one external command from an explicit argument vector
- Capturing stdout/stderr merged, line by line, in emission order
- Reporting launch failures as log lines instead of exceptions
- Enforcing an optional deadline by killing the whole process group
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        success: Whether the process started and exited with code 0.
        exit_code: Process exit code, or None if it never started.
        command: The command that was executed, shell-quoted for display.
        timed_out: Whether the process was killed at its deadline.
    """

    success: bool
    exit_code: int | None
    command: str
    timed_out: bool = False


def _kill_process_group(
    process: subprocess.Popen[str], expired: threading.Event
) -> None:
    """Kill a process and everything it spawned."""
    expired.set()
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def execute(
    argv: Sequence[str],
    cwd: Path | str,
    output: list[str],
    timeout: float | None = None,
    env_override: dict[str, str] | None = None,
) -> CommandResult:
    """Execute a command and append its merged output to ``output``.

    The process runs in its own session so that a deadline can terminate
    the whole process tree. Output lines are appended without their line
    terminator. Blocks until the process terminates.

    Args:
        argv: Command as a sequence of arguments (never split from a string).
        cwd: Working directory for the process.
        output: Ordered log sink that receives the output lines.
        timeout: Deadline in seconds (None = no deadline).
        env_override: Optional environment variable overrides.

    Returns:
        CommandResult with execution details.

    Raises:
        ValueError: If argv is empty.
    """
    cmd = list(argv)
    if not cmd:
        raise ValueError("argv must not be empty")

    cmd_str = shlex.join(cmd)
    logger.info("Executing: %s", cmd_str)
    logger.debug("Working directory: %s", cwd)

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    expired = threading.Event()
    timer: threading.Timer | None = None

    try:
        with subprocess.Popen(
            cmd,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            env=env,
            start_new_session=True,
        ) as process:
            if timeout is not None:
                timer = threading.Timer(
                    timeout, _kill_process_group, args=(process, expired)
                )
                timer.daemon = True
                timer.start()

            assert process.stdout is not None
            for line in process.stdout:
                line = line.rstrip("\n")
                logger.debug("%s", line)
                output.append(line)

            exit_code = process.wait()

    except (OSError, ValueError) as e:
        # ValueError: arguments Popen refuses, e.g. an embedded NUL byte
        logger.error("Failed to execute %s: %s", cmd_str, e)
        output.append(f"Error executing command: {cmd_str}")
        output.append(str(e))
        return CommandResult(success=False, exit_code=None, command=cmd_str)

    finally:
        if timer is not None:
            timer.cancel()

    if expired.is_set() and exit_code != 0:
        message = f"Command timed out after {timeout} seconds: {cmd_str}"
        logger.error("%s", message)
        output.append(message)
        return CommandResult(
            success=False, exit_code=exit_code, command=cmd_str, timed_out=True
        )

    if exit_code != 0:
        logger.warning("Command failed with exit code %d: %s", exit_code, cmd_str)
    return CommandResult(success=exit_code == 0, exit_code=exit_code, command=cmd_str)


def run_command(
    argv: Sequence[str],
    cwd: Path | str,
    output: list[str],
    timeout: float | None = None,
) -> bool:
    """Run a command, appending its output to ``output``.

    Args:
        argv: Command as a sequence of arguments.
        cwd: Working directory for the process.
        output: Ordered log sink that receives the output lines.
        timeout: Deadline in seconds (None = no deadline).

    Returns:
        True iff the process started and exited with code 0.
    """
    return execute(argv, cwd, output, timeout=timeout).success


__all__ = [
    "CommandResult",
    "execute",
    "run_command",
]
