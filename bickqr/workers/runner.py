"""
Command Runner - argv-only subprocess invocation with a per-call timeout.

Every external tool (yt-dlp, ffmpeg, ffprobe) goes through here so the
callers can be tested with a fake runner.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Sequence

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120  # seconds


# returncode reported when the executable could not be started
COMMAND_NOT_STARTED = -1


class CommandFailed(Exception):
    """Non-zero exit, or the executable could not be started."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr or ""
        super().__init__(
            f"{self.args_list[0]} failed with code {returncode}: {self.stderr.strip()}"
        )


class CommandTimeout(Exception):
    def __init__(self, args: Sequence[str], timeout: float):
        self.args_list = list(args)
        self.timeout = timeout
        super().__init__(f"{self.args_list[0]} timed out after {timeout:g} seconds")


@dataclass
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str
    stderr: str


class CommandRunner:
    """Runs a command given as an argv list. No shell is ever involved."""

    def run(self, args: Sequence[str], timeout: float = DEFAULT_TIMEOUT) -> CommandResult:
        cmd = [str(a) for a in args]
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise CommandTimeout(cmd, timeout)
        except OSError as e:
            # Executable missing or not runnable
            raise CommandFailed(cmd, -1, str(e)) from e

        if result.returncode != 0:
            raise CommandFailed(cmd, result.returncode, result.stderr)

        return CommandResult(
            args=cmd,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    def run_json(self, args: Sequence[str], timeout: float = DEFAULT_TIMEOUT):
        """Run a command whose stdout is a single JSON document."""
        result = self.run(args, timeout=timeout)
        try:
            return json.loads(result.stdout)
        except ValueError as e:
            raise CommandFailed(args, result.returncode, f"Invalid JSON output: {e}") from e
