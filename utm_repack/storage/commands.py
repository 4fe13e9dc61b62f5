"""Command execution utilities.

All external tools run synchronously with argument lists (never through a
shell). Failures raise :class:`CommandFailedError` carrying the tool's exit
code, except in :func:`run_ignoring_errors`, which cleanup code uses.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional, Sequence

from utm_repack.logging import LoggerFactory, ThrottledLogger
from utm_repack.storage.exceptions import CommandFailedError


log = LoggerFactory.for_storage()


def _display(command: Sequence[str]) -> str:
    return " ".join(str(part) for part in command)


MISSING_TOOL_EXIT_CODE = 127


def _start(command: list[str], **kwargs) -> subprocess.Popen:
    """Start ``command``, reporting a missing tool the way a shell would (127)."""
    try:
        return subprocess.Popen(command, **kwargs)
    except OSError as error:
        raise CommandFailedError(command, MISSING_TOOL_EXIT_CODE, str(error)) from error


def _abort(*processes: subprocess.Popen) -> None:
    for process in processes:
        if process.poll() is None:
            process.kill()
        process.wait()


def run_checked_command(
    command: Sequence[str], cwd: Optional[Path] = None
) -> str:
    """Run a command and raise CommandFailedError if it fails."""
    command = [str(part) for part in command]
    log.debug(f"Running command: {_display(command)}")
    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            text=True,
            capture_output=True,
        )
    except OSError as error:
        raise CommandFailedError(command, MISSING_TOOL_EXIT_CODE, str(error)) from error
    if result.returncode != 0:
        stderr = result.stderr.strip()
        stdout = result.stdout.strip()
        raise CommandFailedError(command, result.returncode, stderr or stdout)
    return result.stdout


def run_ignoring_errors(command: Sequence[str]) -> bool:
    """Run a command, returning False instead of raising on failure."""
    command = [str(part) for part in command]
    log.trace(f"Running command (errors ignored): {_display(command)}")
    try:
        result = subprocess.run(command, text=True, capture_output=True)
    except OSError as error:
        log.debug(f"Could not run {command[0]}: {error}")
        return False
    if result.returncode != 0:
        log.trace(f"Ignored failure of {_display(command)}: {result.stderr.strip()}")
        return False
    return True


def _drain_progress(stream, tool: str) -> list[str]:
    """Log progress lines from a tool's stderr and return them."""
    throttled = ThrottledLogger(LoggerFactory.for_progress(tool), interval_seconds=2.0)
    lines = []
    # xz -v rewrites its progress line with carriage returns
    for raw_line in stream:
        for line in raw_line.replace("\r", "\n").splitlines():
            line = line.strip()
            if not line:
                continue
            lines.append(line)
            throttled.debug(tool, f"{tool}: {line}")
    return lines


def run_to_file(command: Sequence[str], target: Path) -> None:
    """Run a command with stdout redirected into ``target``.

    Used for ``unxz -c``; stderr progress output is logged as it arrives.
    The child is killed if anything (including a signal turned into
    ``SystemExit``) interrupts the wait.
    """
    command = [str(part) for part in command]
    log.debug(f"Running command: {_display(command)} > {target}")
    with open(target, "wb") as output:
        process = _start(
            command,
            stdout=output,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        try:
            stderr_lines = _drain_progress(process.stderr, Path(command[0]).name)
            process.wait()
        except BaseException:
            _abort(process)
            raise
        finally:
            process.stderr.close()
    if process.returncode != 0:
        raise CommandFailedError(command, process.returncode, "\n".join(stderr_lines[-5:]))


def run_pipeline(
    producer: Sequence[str],
    consumer: Sequence[str],
    target: Path,
    cwd: Optional[Path] = None,
) -> None:
    """Run ``producer | consumer > target`` and fail if either side fails.

    Used for ``tar -cvf - DIR | xz -z -T0 -v > DIR.tar.xz``. Both children
    are killed if the wait is interrupted.
    """
    producer = [str(part) for part in producer]
    consumer = [str(part) for part in consumer]
    log.debug(f"Running pipeline: {_display(producer)} | {_display(consumer)} > {target}")
    with open(target, "wb") as output:
        first = _start(
            producer,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
        )
        try:
            second = _start(
                consumer,
                cwd=cwd,
                stdin=first.stdout,
                stdout=output,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except BaseException:
            first.stdout.close()
            _abort(first)
            raise
        # Let the producer receive SIGPIPE if the consumer exits early
        first.stdout.close()
        try:
            stderr_lines = _drain_progress(second.stderr, Path(consumer[0]).name)
            second.wait()
            first.wait()
        except BaseException:
            _abort(second, first)
            raise
        finally:
            second.stderr.close()
    if first.returncode != 0:
        raise CommandFailedError(producer, first.returncode)
    if second.returncode != 0:
        raise CommandFailedError(consumer, second.returncode, "\n".join(stderr_lines[-5:]))
