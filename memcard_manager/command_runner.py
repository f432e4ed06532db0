"""
memcard_manager/command_runner.py
-----------------------------------------------------------------------------
Thin synchronous wrapper around the ``mymcplusplus`` executable.

Why synchronous?
----------------
FastAPI runs plain ``def`` route handlers in a thread-pool executor, so a
blocking ``subprocess.run`` never stalls the event loop.  Each call spawns
exactly one process and buffers its complete output before returning; there
is no streaming consumption.

Contract
--------
``run_command`` never raises.  Every outcome, including "executable not
found" and "killed after timeout", comes back as a ``CommandResult`` so the
gateway has a single place to decide what counts as failure.

Invocation shape
----------------
    <MYMCPLUSPLUS_CMD> -i <card path> <subcommand> [args...]

The working directory is passed per call (``cwd=``) and never changed
process-wide, because ``export`` relies on it and concurrent requests must
not see each other's directory.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from memcard_manager import config
from memcard_manager.schema import CommandResult

logger = logging.getLogger(__name__)

# Conventional statuses for "command not found" and "timed out".
_EXIT_NOT_FOUND = 127
_EXIT_TIMEOUT = 124


def _decode(raw: bytes | None) -> str:
    if not raw:
        return ""
    return raw.decode("utf-8", errors="replace").strip()


def missing_tool_message() -> str:
    """The message returned when the executable cannot be spawned."""
    return (
        f'Command "{config.MYMCPLUSPLUS_CMD}" not found. Please ensure mymcplusplus '
        "is installed and available in your PATH.\n\n" + config.INSTALL_HINT
    )


def run_command(
    args: list[str],
    stdin_payload: bytes | None = None,
    cwd: str | Path | None = None,
) -> CommandResult:
    """
    Run the external tool with ``args`` and return its buffered result.

    Parameters
    ----------
    args          : Arguments after the executable name.
    stdin_payload : Optional bytes written to the child's standard input.
                    When omitted stdin is closed (``DEVNULL``).
    cwd           : Working directory for the child only.

    Returns
    -------
    CommandResult with stripped stdout/stderr.  Spawn failures produce
    ``exit_code=127`` and ``tool_missing=True``; timeouts produce
    ``exit_code=124`` and ``timed_out=True``.
    """
    cmd = [config.MYMCPLUSPLUS_CMD, *args]
    try:
        completed = subprocess.run(
            cmd,
            input=stdin_payload,
            stdin=None if stdin_payload is not None else subprocess.DEVNULL,
            capture_output=True,
            cwd=str(cwd) if cwd is not None else None,
            timeout=config.COMMAND_TIMEOUT,
            check=False,
        )
    except FileNotFoundError as exc:
        # Raised both for a missing executable and a missing cwd; only the
        # former is the tool's fault, but either way nothing ran.
        logger.warning("Failed to spawn %s: %s", config.MYMCPLUSPLUS_CMD, exc)
        if cwd is not None and not Path(cwd).is_dir():
            return CommandResult(stderr=f"Working directory not found: {cwd}", exit_code=1)
        return CommandResult(
            stderr=missing_tool_message(),
            exit_code=_EXIT_NOT_FOUND,
            tool_missing=True,
        )
    except PermissionError as exc:
        logger.warning("Failed to spawn %s: %s", config.MYMCPLUSPLUS_CMD, exc)
        return CommandResult(
            stderr=f"{exc}\n\n{config.INSTALL_HINT}",
            exit_code=_EXIT_NOT_FOUND,
            tool_missing=True,
        )
    except OSError as exc:
        # Anything else the kernel refuses at spawn time (ENOEXEC, cwd that
        # is a file, ...).
        logger.warning("Failed to spawn %s: %s", config.MYMCPLUSPLUS_CMD, exc)
        if cwd is not None and not Path(cwd).is_dir():
            return CommandResult(stderr=f"Working directory not usable: {cwd} ({exc})", exit_code=1)
        return CommandResult(
            stderr=f"Could not execute {config.MYMCPLUSPLUS_CMD}: {exc}\n\n{config.INSTALL_HINT}",
            exit_code=_EXIT_NOT_FOUND,
            tool_missing=True,
        )
    except subprocess.TimeoutExpired as exc:
        # subprocess.run has already killed and reaped the child here.
        logger.warning("Command timed out after %ss: %s", exc.timeout, " ".join(cmd))
        return CommandResult(
            stdout=_decode(exc.stdout),
            stderr=f"{config.MYMCPLUSPLUS_CMD} timed out after {exc.timeout} seconds",
            exit_code=_EXIT_TIMEOUT,
            timed_out=True,
        )

    return CommandResult(
        stdout=_decode(completed.stdout),
        stderr=_decode(completed.stderr),
        exit_code=completed.returncode,
    )


def tool_available() -> bool:
    """Return True if ``<tool> --help`` runs and exits 0."""
    return run_command(["--help"]).exit_code == 0
