"""
Error classes for txrun.

These error types classify failures at the transaction boundary:
- TransactionIOError: A filesystem step failed (mkdir, rename, copy)
- InvalidStateError: A caller broke a precondition (programming error)
- CommandError: The external command exited non-zero

Nothing here is retried. The only local recovery is removal of the
transaction directory, which happens on every exit path before the
error reaches the caller.
"""

from typing import List, Optional


class TxRunError(Exception):
    """Base exception for txrun."""
    pass


class TransactionIOError(TxRunError, OSError):
    """
    Filesystem operation failed while staging or promoting outputs.

    Examples:
    - Transaction directory could not be created (unwritable parent)
    - Staged file could not be renamed into place
    - Cross-device copy failed part way

    Also an OSError so callers catching filesystem errors still see it.
    """
    pass


class InvalidStateError(TxRunError):
    """
    Internal precondition violated.

    Examples:
    - Empty key set passed to a transaction that expects files
    - Key missing from the file-info mapping
    - Output path with no usable parent directory
    - Command template referencing a value that was not passed
    """
    pass


class CommandError(TxRunError):
    """
    External command exited with a non-zero status.

    The message embeds the command and the retained tail of its output
    so a single log line is enough to diagnose the failure.
    """

    def __init__(
        self,
        command: str,
        exit_code: Optional[int],
        log_lines: Optional[List[str]] = None,
        timed_out: bool = False,
    ):
        self.command = command
        self.exit_code = exit_code
        self.log_lines = list(log_lines or [])
        self.timed_out = timed_out
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        header = f"Shell command failed: {self.command}"
        if self.timed_out:
            header = f"Shell command timed out: {self.command}"
        return "\n".join([header] + self.log_lines)


class ConfigError(TxRunError):
    """Configuration validation error."""
    pass
