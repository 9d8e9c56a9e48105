"""External command execution for the stack setup.

Git, Docker compose and process cleanup all go through here.
"""

import logging
from pathlib import Path
from subprocess import DEVNULL, PIPE

import psutil

logger = logging.getLogger(__name__)

#: Crash unless a command completes in 10 minutes.
#:
#: The first ``docker compose up`` pulls images.
DEFAULT_TIMEOUT = 10 * 60


class CommandFailed(Exception):
    """External command exited with a non-zero code."""

    def __init__(self, cmd_line: list[str], exit_code: int, output: str = ""):
        self.cmd_line = cmd_line
        self.exit_code = exit_code
        self.output = output
        message = f'"{" ".join(cmd_line)}" exited {exit_code}'
        if output:
            message += f"\nOutput is:\n{output}"
        super().__init__(message)


def _check_cmd_line(cmd_line: list[str]):
    for x in cmd_line:
        assert type(x) == str, f"Got non-string in command line: {x} in {cmd_line}"


def run_command(
    cmd_line: list[str],
    cwd: Path | None = None,
    timeout: float = DEFAULT_TIMEOUT,
):
    """Run a command with its output going to our terminal.

    :param cwd:
        Working directory for the command

    :param timeout:
        Timeout in seconds

    :raise CommandFailed:
        Non-zero exit code
    """
    _check_cmd_line(cmd_line)
    logger.info("Running: %s", " ".join(cmd_line))
    proc = psutil.Popen(cmd_line, stdin=DEVNULL, cwd=cwd)
    result = proc.wait(timeout)
    if result != 0:
        raise CommandFailed(cmd_line, result)


def capture_command(
    cmd_line: list[str],
    cwd: Path | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> tuple[int, str]:
    """Run a command and capture its stdout.

    Does not raise on a non-zero exit code.

    :return:
        Tuple(exit code, stdout)
    """
    _check_cmd_line(cmd_line)
    proc = psutil.Popen(cmd_line, stdin=DEVNULL, stdout=PIPE, stderr=DEVNULL, cwd=cwd)
    try:
        stdout, _ = proc.communicate(timeout=timeout)
    finally:
        if proc.stdout is not None:
            proc.stdout.close()
    return proc.returncode, stdout.decode("utf-8")


def kill_processes_matching(pattern: str) -> int:
    """Kill stray processes whose command line contains ``pattern``.

    Same as ``pkill -f pattern``, but never kills the current process.

    :return:
        Number of processes killed
    """
    own_pid = psutil.Process().pid
    killed = 0
    for proc in psutil.process_iter(["pid", "cmdline"]):
        cmdline = proc.info.get("cmdline") or []
        if proc.info["pid"] == own_pid or not any(pattern in part for part in cmdline):
            continue
        try:
            proc.kill()
            killed += 1
            logger.info("Killed stray process %d: %s", proc.info["pid"], " ".join(cmdline))
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug("Could not kill %d: %s", proc.info["pid"], e)
    return killed
