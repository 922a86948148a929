"""Command execution for approved commands.

Runs a command through the platform shell in a fixed working directory
with a timeout. Output is collected line by line so callers can stream
it as it arrives; the collected text is truncated past a size bound.
"""

import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Callable

from agentic_gate.logging import get_logger

logger = get_logger(__name__)

LineCallback = Callable[[str, str], None]

# How long readers may keep draining once the shell has exited or been killed
READER_GRACE_SECONDS = 2.0


@dataclass
class ExecutionResult:
    """Result of command execution.

    Attributes:
        exit_code: Process exit code, None when the process never started.
        output: Standard output (may be truncated).
        error: Standard error, or a description of why execution failed.
        duration_ms: Wall-clock duration in milliseconds.
        timed_out: Whether the process was killed after the timeout.
    """

    exit_code: int | None
    output: str
    error: str
    duration_ms: int
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "exit_code": self.exit_code,
            "output": self.output,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
        }


class ExecutionSandbox:
    """Executes approved commands.

    Example:
        sandbox = ExecutionSandbox(timeout_seconds=30)
        result = sandbox.execute("echo hello", cwd="/work")
        result.output  # "hello\\n"
    """

    def __init__(self, timeout_seconds: float = 120, max_output_bytes: int = 50000):
        """Initialize the sandbox.

        Args:
            timeout_seconds: Maximum execution time.
            max_output_bytes: Output size before truncation.
        """
        self.timeout_seconds = timeout_seconds
        self.max_output_bytes = max_output_bytes

    def execute(
        self,
        command: str,
        cwd: Path | str | None = None,
        on_line: LineCallback | None = None,
        env: dict[str, str] | None = None,
    ) -> ExecutionResult:
        """Run a command and wait for it.

        Args:
            command: The shell command to execute.
            cwd: Working directory for execution.
            on_line: Called as ``on_line(stream, line)`` for each line of
                output, ``stream`` being "stdout" or "stderr".
            env: Additional environment variables.

        Returns:
            ExecutionResult with execution details.
        """
        start_time = time.monotonic()
        try:
            process = subprocess.Popen(
                command,
                shell=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=os.fspath(cwd) if cwd is not None else None,
                env={**os.environ, **(env or {})},
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=sys.platform != "win32",
            )
        except OSError as e:
            logger.warning("execution_start_failed", command=command[:200], error=str(e))
            return ExecutionResult(
                exit_code=None,
                output="",
                error=f"Execution error: {e}",
                duration_ms=self._elapsed_ms(start_time),
            )

        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        readers = [
            threading.Thread(
                target=self._pump, args=(process.stdout, "stdout", stdout_lines, on_line), daemon=True
            ),
            threading.Thread(
                target=self._pump, args=(process.stderr, "stderr", stderr_lines, on_line), daemon=True
            ),
        ]
        for reader in readers:
            reader.start()

        timed_out = False
        try:
            exit_code: int | None = process.wait(timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            timed_out = True
            self._kill(process)
            exit_code = process.wait()
            logger.warning("execution_timed_out", command=command[:200], timeout=self.timeout_seconds)

        # Descendants that escaped the process group may still hold the pipes open
        for reader in readers:
            reader.join(timeout=READER_GRACE_SECONDS)

        error = self._truncate("".join(stderr_lines))
        if timed_out:
            error = (error + "\n" if error else "") + f"Command timeout after {self.timeout_seconds} seconds"

        result = ExecutionResult(
            exit_code=exit_code,
            output=self._truncate("".join(stdout_lines)),
            error=error,
            duration_ms=self._elapsed_ms(start_time),
            timed_out=timed_out,
        )
        logger.debug("command_executed", exit_code=exit_code, duration_ms=result.duration_ms, timed_out=timed_out)
        return result

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        """Kill the shell together with everything it started."""
        if sys.platform == "win32":
            process.kill()
            return
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            process.kill()

    @staticmethod
    def _pump(
stream: IO[str] | None, name: str, sink: list[str], on_line: LineCallback | None) -> None:
        if stream is None:
            return
        with stream:
            for line in stream:
                sink.append(line)
                if on_line is not None:
                    on_line(name, line.rstrip("\n"))

    def _truncate(self, text: str) -> str:
        if len(text) <= self.max_output_bytes:
            return text
        return text[: self.max_output_bytes] + f"\n... [OUTPUT TRUNCATED - exceeded {self.max_output_bytes} bytes]"

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)
