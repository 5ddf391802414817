"""
External command execution.

All external tools (vzdump, qm, pct, openssl, rclone, sendmail) are invoked
through CommandRunner so the stages can be exercised with a fake runner.
"""

import logging
import shutil
import subprocess
from typing import List, Optional


logger = logging.getLogger(__name__)


class CommandRunner:
    """
    Runs external commands without a shell and captures their output.
    """

    def run(self, args: List[str], input: Optional[str] = None,
            timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        """
        Run a command to completion.

        Args:
            args: Program and arguments
            input: Optional text fed to stdin
            timeout: Optional timeout in seconds

        Returns:
            CompletedProcess with text stdout/stderr. A program that cannot be
            started is reported with return code 127, like a shell would.
        """
        logger.debug(f"Running command: {' '.join(args)}")
        try:
            return subprocess.run(
                args,
                input=input,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout,
            )
        except OSError as e:
            return subprocess.CompletedProcess(args, 127, stdout='', stderr=str(e))

    def which(self, program: str) -> Optional[str]:
        """Resolve a program on PATH."""
        return shutil.which(program)


def log_output(result: subprocess.CompletedProcess, level: int = logging.INFO):
    """
    Forward a command's captured output to the log, one entry per line.

    Args:
        result: Completed command
        level: Log level for the output lines
    """
    for stream in (result.stdout, result.stderr):
        for line in (stream or '').splitlines():
            if line.strip():
                logger.log(level, f"    {line.rstrip()}")


def describe_failure(result: subprocess.CompletedProcess) -> str:
    """Short failure description: exit status plus the last stderr line."""
    detail = ''
    stderr_lines = [line for line in (result.stderr or '').splitlines() if line.strip()]
    if stderr_lines:
        detail = f": {stderr_lines[-1].strip()}"
    return f"exit {result.returncode}{detail}"
