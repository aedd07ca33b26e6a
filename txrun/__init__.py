"""
txrun - Idempotent, transactional runs of external command line programs.

Avoids re-running a process if it has produced its output files on a
previous run, and never leaves partially finished files behind when a
process fails or is interrupted.
"""

__version__ = "0.1.0"


__all__ = [
    "CommandError",
    "InvalidStateError",
    "LogBuffer",
    "ProcessRunner",
    "TransactionIOError",
    "TxRunError",
    "check_run",
    "is_up_to_date",
    "needs_run",
    "run_cmd",
    "run_cmd_files",
    "substitute_keys",
    "tx_file",
    "tx_files",
]

from .command import run_cmd, run_cmd_files
from .errors import CommandError, InvalidStateError, TransactionIOError, TxRunError
from .idempotent import is_up_to_date, needs_run, substitute_keys
from .process import LogBuffer, ProcessRunner, check_run
from .transaction import tx_file, tx_files
