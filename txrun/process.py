"""
Run external shell commands with bounded output capture.

Commands run under bash with pipefail so a failure anywhere in a pipe is
caught. Standard output and error are merged; a reader thread logs each
line as it arrives and keeps the most recent lines for error reports.
"""

import logging
import os
import re
import signal
import subprocess
import tempfile
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, IO, Iterator, List, Optional, Tuple

from txrun.errors import CommandError

DEFAULT_BUFFER_SIZE = 100
DEFAULT_SHELL = "bash"
DEFAULT_WRAP_WIDTH = 1000
PIPEFAIL = "set -o pipefail"

HEREDOC_RE = re.compile(r"<<(-?)[ \t]*(['\"]?)([A-Za-z_][A-Za-z0-9_]*)\2")
COMMENT_PRECEDERS = (" ", "\t", ";", "&", "|", "(")


class RunState(Enum):
    """Lifecycle of a single command run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class LogBuffer:
    """
    Fixed-capacity ring of the most recent output lines.

    Once full, each new line evicts the oldest one.
    """

    def __init__(self, capacity: int = DEFAULT_BUFFER_SIZE):
        if capacity < 1:
            raise ValueError(f"LogBuffer capacity must be positive, got {capacity}")
        self._lines: deque = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._lines.maxlen

    def append(self, line: str) -> None:
        self._lines.append(line)

    def extend(self, lines) -> None:
        self._lines.extend(lines)

    def lines(self) -> List[str]:
        """Retained lines, oldest first."""
        return list(self._lines)

    def clear(self) -> None:
        self._lines.clear()

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._lines))

    def __repr__(self) -> str:
        return f"LogBuffer(capacity={self.capacity}, lines={len(self)})"


@dataclass
class CommandResult:
    """Result of running a shell command."""

    command: str
    success: bool
    exit_code: Optional[int]
    log_lines: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    state: RunState = RunState.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "command": self.command,
            "success": self.success,
            "exit_code": self.exit_code,
            "log_lines": list(self.log_lines),
            "duration_seconds": self.duration_seconds,
            "state": self.state.value,
        }


def split_shell_words(line: str) -> List[str]:
    """
    Split a command line at whitespace that is outside quotes.

    Quoting and escapes are kept verbatim in the returned words, so
    joining them with whitespace gives an equivalent command.
    """
    words: List[str] = []
    current: List[str] = []
    quote = None
    escaped = False
    for ch in line:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\" and quote != "'":
            current.append(ch)
            escaped = True
        elif quote:
            current.append(ch)
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            current.append(ch)
            quote = ch
        elif ch in (" ", "\t"):
            if current:
                words.append("".join(current))
                current = []
        else:
            current.append(ch)
    if current:
        words.append("".join(current))
    return words


def _scan_line(line: str, quote: Optional[str] = None):
    # Blank out quoted and escaped characters; returns the open quote at line end
    plain = []
    escaped = False
    for ch in line:
        if escaped:
            plain.append("_")
            escaped = False
        elif ch == "\\" and quote != "'":
            plain.append("_")
            escaped = True
        elif quote:
            if ch == quote:
                quote = None
                plain.append(ch)
            else:
                plain.append("_")
        elif ch in ("'", '"'):
            quote = ch
            plain.append(ch)
        else:
            plain.append(ch)
    return "".join(plain), quote


def _comment_start(plain: str) -> Optional[int]:
    for i, ch in enumerate(plain):
        if ch == "#" and (i == 0 or plain[i - 1] in COMMENT_PRECEDERS):
            return i
    return None


def _heredoc_delimiters(line: str, plain: str) -> List[Tuple[str, bool]]:
    found = []
    start = 0
    while True:
        i = plain.find("<<", start)
        if i == -1:
            return found
        start = i + 2
        # <<< is a here-string
        if (i > 0 and plain[i - 1] == "<") or plain[i + 2 : i + 3] == "<":
            continue
        match = HEREDOC_RE.match(line, i)
        if match:
            found.append((match.group(3), match.group(1) == "-"))


def wrap_command(command: str, width: int = DEFAULT_WRAP_WIDTH) -> str:
    """
    Word-wrap long command lines using backslash continuations.

    Lines at or under width are left untouched. Breaks only happen between
    unquoted words; a single word longer than width stays on its own line.
    Lines where a continuation would change meaning are never wrapped:
    heredoc bodies and the lines that open them, lines with a comment,
    and lines that start or end inside a multi-line quoted string.
    """
    out_lines = []
    heredocs: List[Tuple[str, bool]] = []
    quote = None
    for line in command.splitlines():
        if heredocs:
            out_lines.append(line)
            delimiter, strip_tabs = heredocs[0]
            if (line.lstrip("\t") if strip_tabs else line) == delimiter:
                heredocs.pop(0)
            continue

        start_quote = quote
        plain, quote = _scan_line(line, quote)
        comment = _comment_start(plain)
        opened = _heredoc_delimiters(line, plain if comment is None else plain[:comment])
        heredocs.extend(opened)

        if len(line) <= width or comment is not None or opened or start_quote or quote:
            out_lines.append(line)
            continue

        wrapped: List[str] = []
        current = ""
        for word in split_shell_words(line):
            if current and len(current) + 1 + len(word) > width:
                wrapped.append(current)
                current = word
            else:
                current = f"{current} {word}" if current else word
        if current:
            wrapped.append(current)
        out_lines.append(" \\\n".join(wrapped))
    return "\n".join(out_lines)


class ProcessRunner:
    """
    Runs shell commands, streaming merged output to a logger.

    The logger is fixed at construction; running a command never changes
    logging configuration.
    Each run keeps its own state, so one runner can be shared by threads
    running commands concurrently.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        shell: str = DEFAULT_SHELL,
        wrap_width: int = DEFAULT_WRAP_WIDTH,
        timeout: Optional[float] = None,
    ):
        """
        Initialize ProcessRunner.

        Args:
            logger: Receives one INFO record per output line and an ERROR
                record per failure (default: txrun.process)
            buffer_size: Number of trailing output lines kept for errors
            shell: Shell executable used to run commands
            wrap_width: Maximum line width of generated command scripts
            timeout: Seconds to wait before killing the command (None waits forever)
        """
        self.logger = logger or logging.getLogger(__name__)
        self.buffer_size = buffer_size
        self.shell = shell
        self.wrap_width = wrap_width
        self.timeout = timeout

    def write_script(self, command: str, script_dir) -> Path:
        """Write command to a uniquely named bash script inside script_dir."""
        fd, script = tempfile.mkstemp(prefix="txrun-cmd-", suffix=".sh", dir=str(script_dir))
        with os.fdopen(fd, "w") as f:
            f.write(f"{PIPEFAIL}\n{wrap_command(command, self.wrap_width)}\n")
        return Path(script)

    def build_args(self, command: str, script: Optional[Path] = None) -> List[str]:
        """Build the argv used to execute command."""
        if script is not None:
            return [self.shell, str(script)]
        return [self.shell, "-c", f"{PIPEFAIL}; {command}"]

    def _kill(self, proc: subprocess.Popen) -> None:
        # Timed runs get their own process group so children die too
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            proc.kill()

    def _drain(self, stream: IO[str], buffer: LogBuffer) -> None:
        for line in stream:
            line = line.rstrip("\r\n")
            self.logger.info(line, extra={"event": "command_output"})
            buffer.append(line)

    def run(
        self,
        command: str,
        script_dir=None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Run a shell command, raising on failure.

        Args:
            command: Shell command line
            script_dir: If set, write the command to a script in this
                directory and run that instead of passing it with -c.
                Avoids argument length limits for very long commands.
            timeout: Override the runner's timeout for this call

        Returns:
            CommandResult with success=True

        Raises:
            CommandError: If the command exits non-zero or times out
        """
        timeout = self.timeout if timeout is None else timeout
        buffer = LogBuffer(self.buffer_size)
        script = self.write_script(command, script_dir) if script_dir is not None else None
        state = RunState.NOT_STARTED
        timed_out = False
        start_time = time.time()

        self.logger.debug(f"Executing: {command}", extra={"event": "command_started"})
        try:
            proc = subprocess.Popen(
                self.build_args(command, script),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                start_new_session=timeout is not None,
            )
            state = RunState.RUNNING
            reader = threading.Thread(
                target=self._drain,
                args=(proc.stdout, buffer),
                name="txrun-output-reader",
                daemon=True,
            )
            reader.start()
            try:
                exit_code = proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                timed_out = True
                self._kill(proc)
                exit_code = proc.wait()
            reader.join()
            proc.stdout.close()
        finally:
            if script is not None and script.exists():
                script.unlink()

        duration = time.time() - start_time
        if exit_code != 0 or timed_out:
            state = RunState.FAILED
            error = CommandError(command, exit_code, buffer.lines(), timed_out=timed_out)
            self.logger.error(
                str(error),
                extra={
                    "event": "command_failed",
                    "metadata": {
                        "exit_code": exit_code,
                        "timed_out": timed_out,
                        "duration_seconds": duration,
                        "state": state.value,
                    },
                },
            )
            raise error

        return CommandResult(
            command=command,
            success=True,
            exit_code=exit_code,
            duration_seconds=duration,
            state=RunState.SUCCEEDED,
        )


def check_run(command: str, script_dir=None, logger: Optional[logging.Logger] = None) -> CommandResult:
    """Run a shell command with a default ProcessRunner."""
    return ProcessRunner(logger=logger).run(command, script_dir=script_dir)
