"""Command Executor.

This module runs build commands (configure, make, strip, ...) via subprocess
with consistent error handling and optional log capture.

Design:
    - Wraps subprocess.run for build commands
    - Captures output; writes it to a per-package build log when requested
    - Raises CommandError with the tail of the output on failure
"""

import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence


class CommandError(Exception):
    """Raised when a build command fails."""
    pass


class CommandExecutor:
    """Executes build commands.

    This class handles:
    - Running commands in a working directory with an extended environment
    - Appending output to a log file
    - Turning non-zero exits and timeouts into CommandError
    """

    # Lines of output included in error messages
    TAIL_LINES = 30

    def __init__(self, log_file: Optional[Path] = None, verbose: bool = False, timeout: Optional[int] = 3600):
        """Initialize command executor.

        Args:
            log_file: File that receives the output of every command
            verbose: Whether to echo commands before running them
            timeout: Per-command timeout in seconds (None for no limit)
        """
        self.log_file = log_file
        self.verbose = verbose
        self.timeout = timeout

    def run(
        self,
        cmd: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> subprocess.CompletedProcess:
        """Run a command and return the completed process.

        Args:
            cmd: Command and arguments
            cwd: Working directory
            env: Variables added to the current environment
            timeout: Override the default timeout

        Returns:
            CompletedProcess with captured stdout/stderr

        Raises:
            CommandError: If the command is missing, fails or times out
        """
        cmd_list: List[str] = [str(c) for c in cmd]
        full_env = os.environ.copy()
        if env:
            full_env.update(env)

        if self.verbose:
            print(f"  $ {' '.join(cmd_list)}")

        try:
            result = subprocess.run(
                cmd_list,
                cwd=str(cwd) if cwd else None,
                env=full_env,
                capture_output=True,
                text=True,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except FileNotFoundError as e:
            raise CommandError(f"Command not found: {cmd_list[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(f"Command timed out after {e.timeout}s: {' '.join(cmd_list)}") from e

        self._log(cmd_list, result)

        if result.returncode != 0:
            output = (result.stdout or "") + (result.stderr or "")
            tail = "\n".join(output.strip().splitlines()[-self.TAIL_LINES:])
            error_msg = f"Command failed with exit code {result.returncode}: {' '.join(cmd_list)}\n"
            if tail:
                error_msg += f"{tail}\n"
            if self.log_file:
                error_msg += f"Full log: {self.log_file}"
            raise CommandError(error_msg)

        return result

    def _log(self, cmd: List[str], result: subprocess.CompletedProcess) -> None:
        if self.log_file is None:
            return
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(f"$ {' '.join(cmd)}\n")
            if result.stdout:
                f.write(result.stdout)
            if result.stderr:
                f.write(result.stderr)
            f.write(f"[exit {result.returncode}]\n")
