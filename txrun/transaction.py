"""
Transactional handling of output files.

Outputs are written into a private transaction directory next to their
final location and renamed into place only after the producing work has
finished. The transaction directory is removed on every exit path, so an
interrupted or failed run never leaves a partial file at the final path.
"""

import errno
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Hashable, Iterable, Iterator, List, Mapping, Tuple

from txrun.errors import InvalidStateError, TransactionIOError

logger = logging.getLogger(__name__)

DEFAULT_TX_PREFIX = "txtmp"

# Key used for single-file transactions
OUT_KEY = "out"


def create_temp_dir(root_dir, prefix: str = "tmp") -> Path:
    """
    Create a uniquely named directory under root_dir.

    root_dir is created if it does not exist yet; concurrent creation of
    the same root is tolerated.

    Raises:
        TransactionIOError: If root_dir cannot be created or written to
    """
    root = Path(root_dir)
    try:
        root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=prefix, dir=root))
    except OSError as e:
        raise TransactionIOError(
            f"Could not create temporary directory under {root}: {e}"
        ) from e


def _remove_dir(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove transaction directory {path}: {e}")


@contextmanager
def temp_dir(base_dir, prefix: str = "tmp") -> Iterator[Path]:
    """Provide a temporary directory, removed when exiting the block."""
    tmp_dir = create_temp_dir(base_dir, prefix)
    try:
        yield tmp_dir
    finally:
        _remove_dir(tmp_dir)


def stage_files(
    file_info: Mapping[Hashable, str],
    keys: Iterable[Hashable],
    prefix: str = DEFAULT_TX_PREFIX,
) -> Tuple[Dict[Hashable, str], Path]:
    """
    Point the given keys of file_info at a fresh transaction directory.

    The transaction directory is created next to the first key's file.
    Staged paths keep their original base name.

    Args:
        file_info: Mapping of key -> final path
        keys: Keys whose files need a transaction
        prefix: Name prefix for the transaction directory

    Returns:
        (staged copy of file_info, transaction directory)

    Raises:
        InvalidStateError: If keys is empty, refers to unknown keys, or the
            first path has no usable parent directory
        TransactionIOError: If the transaction directory cannot be created
    """
    keys = list(keys)
    if not keys:
        raise InvalidStateError("No files given to stage in a transaction")

    missing = [key for key in keys if key not in file_info]
    if missing:
        raise InvalidStateError(f"Keys not present in file info: {missing}")

    base_names = [os.path.basename(str(file_info[key])) for key in keys]
    if not all(base_names):
        raise InvalidStateError(
            f"Cannot stage paths without a file name: {[file_info[k] for k in keys]}"
        )
    if len(set(base_names)) != len(base_names):
        raise InvalidStateError(f"Staged files must have distinct base names: {base_names}")

    parent = os.path.dirname(os.path.abspath(str(file_info[keys[0]])))
    if not parent:
        raise InvalidStateError(f"No parent directory for {file_info[keys[0]]}")

    tx_dir = create_temp_dir(parent, prefix)
    staged = dict(file_info)
    for key, base_name in zip(keys, base_names):
        staged[key] = str(tx_dir / base_name)

    logger.debug(f"Staged {len(keys)} file(s) in {tx_dir}")
    return staged, tx_dir


def _copy_into_place(src: str, dst: str) -> None:
    # Copy next to the destination, then rename, so dst is never half-written
    dst_dir = os.path.dirname(os.path.abspath(dst))
    if os.path.isdir(src):
        tmp = tempfile.mkdtemp(prefix=".txrun-", dir=dst_dir)
        try:
            shutil.copytree(src, tmp, dirs_exist_ok=True)
            os.replace(tmp, dst)
        except BaseException:
            shutil.rmtree(tmp, ignore_errors=True)
            raise
        shutil.rmtree(src)
        return

    fd, tmp = tempfile.mkstemp(prefix=".txrun-", dir=dst_dir)
    try:
        with os.fdopen(fd, "wb") as fdst, open(src, "rb") as fsrc:
            shutil.copyfileobj(fsrc, fdst, length=1024 * 1024 * 8)
            fdst.flush()
            os.fsync(fdst.fileno())
        shutil.copymode(src, tmp)
        os.replace(tmp, dst)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
    os.unlink(src)


def move_file(src: str, dst: str) -> None:
    """
    Atomically move src to dst.

    Falls back to copy-then-rename when src and dst are on different
    filesystems.

    Raises:
        TransactionIOError: If the move fails
    """
    try:
        dst_dir = os.path.dirname(os.path.abspath(dst))
        os.makedirs(dst_dir, exist_ok=True)
        try:
            os.replace(src, dst)
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise
            logger.debug(f"Cross-device move, copying {src} -> {dst}")
            _copy_into_place(src, dst)
    except OSError as e:
        raise TransactionIOError(f"Could not move {src} to {dst}: {e}") from e


def promote_files(
    staged_file_info: Mapping[Hashable, str],
    file_info: Mapping[Hashable, str],
    keys: Iterable[Hashable],
    side_exts: Iterable[str] = (),
) -> None:
    """
    Rename generated transaction files into their final location.

    Side-extension files (e.g. ".bai" index files next to a ".bam") are
    moved along with their primary file when they exist.

    Raises:
        TransactionIOError: If a staged primary file is missing or a move fails
    """
    side_exts = list(side_exts)
    for key in keys:
        tx_safe = str(staged_file_info[key])
        tx_final = str(file_info[key])
        if not os.path.lexists(tx_safe):
            raise TransactionIOError(
                f"Expected output for {key!r} was not produced: {tx_safe}"
            )
        move_file(tx_safe, tx_final)
        for ext in side_exts:
            if os.path.lexists(tx_safe + ext):
                move_file(tx_safe + ext, tx_final + ext)
        logger.debug(f"Promoted {tx_final}")


@contextmanager
def tx_files(
    file_info: Mapping[Hashable, str],
    keys: Iterable[Hashable],
    side_exts: Iterable[str] = (),
    prefix: str = DEFAULT_TX_PREFIX,
) -> Iterator[Dict[Hashable, str]]:
    """
    Perform work with files, keeping the given keys in a transaction.

    Yields a staged copy of file_info. When the block completes the staged
    files are promoted; the transaction directory is removed whether or
    not the block succeeds. With no keys the block runs on file_info
    directly and nothing is staged.

    Example:
        with tx_files(info, ["bam", "vcf"], side_exts=[".bai"]) as tx_info:
            run(tx_info["bam"], tx_info["vcf"])
    """
    keys: List[Hashable] = list(keys)
    if not keys:
        yield dict(file_info)
        return

    staged, tx_dir = stage_files(file_info, keys, prefix)
    try:
        yield staged
        promote_files(staged, file_info, keys, side_exts)
    finally:
        _remove_dir(tx_dir)


@contextmanager
def tx_file(path, side_exts: Iterable[str] = (), prefix: str = DEFAULT_TX_PREFIX) -> Iterator[str]:
    """
    Handle a single file in a transaction directory.

    Yields the staged path to write to instead of path.
    """
    with tx_files({OUT_KEY: str(path)}, [OUT_KEY], side_exts, prefix) as staged:
        yield staged[OUT_KEY]


def clean_tx_dirs(directory, prefix: str = DEFAULT_TX_PREFIX) -> List[Path]:
    """
    Remove transaction directories left behind by killed runs.

    Only direct children of directory whose name starts with prefix are
    removed.

    Returns:
        Removed directories
    """
    directory = Path(directory)
    removed = []
    if not directory.is_dir():
        return removed
    for child in sorted(directory.iterdir()):
        if child.is_dir() and not child.is_symlink() and child.name.startswith(prefix):
            shutil.rmtree(child)
            logger.info(f"Removed stale transaction directory {child}")
            removed.append(child)
    return removed
