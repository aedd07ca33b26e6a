"""
File naming and manipulation helpers.

Derive sibling file names from a base name and clean up paths without
touching the transaction machinery.
"""

import gzip
import os
import shutil
from pathlib import Path
from typing import IO, Optional, Union

PathLike = Union[str, os.PathLike]

# Checked in order, so compound extensions come before their suffixes
ZIP_EXTENSIONS = [".tar.gz", ".tar.bz2", ".gz", ".bz2", ".zip"]


# ## Naming


def file_root(fname: PathLike) -> str:
    """Retrieve file name without extension: /path/to/fname.txt -> /path/to/fname"""
    return os.path.splitext(str(fname))[0]


def add_file_part(fname: PathLike, part: str, out_dir: Optional[PathLike] = None) -> str:
    """
    Add file extender: base.txt -> base-part.txt

    Args:
        fname: Original file name
        part: Extender inserted before the extension
        out_dir: Optional directory to place the new name in

    Returns:
        New file name as a string
    """
    ext = os.path.splitext(str(fname))[1]
    out_fname = f"{file_root(fname)}-{part}{ext}"
    if out_dir is not None:
        return os.path.join(str(out_dir), os.path.basename(out_fname))
    return out_fname


def remove_file_part(fname: PathLike, part: str) -> str:
    """Remove file specialization extender: base-part.txt -> base.txt"""
    return str(fname).replace(f"-{part}", "")


def remove_zip_ext(fname: PathLike) -> str:
    """Remove any zip extensions from the input filename."""
    fname = str(fname)
    for ext in ZIP_EXTENSIONS:
        if fname.endswith(ext):
            fname = fname[: -len(ext)]
    return fname


# ## File and directory manipulation


def remove_path(path: PathLike) -> None:
    """Remove file or directory only if it exists."""
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def abspath(path: PathLike) -> str:
    """Produce a normalized file path, expanding home directories."""
    return os.path.normpath(os.path.abspath(os.path.expanduser(str(path))))


def open_maybe_gzip(path: PathLike) -> IO[str]:
    """
    Open a text file for reading, decompressing it if it ends in .gz.

    Returns:
        Text-mode file handle; use as a context manager
    """
    if str(path).endswith(".gz"):
        return gzip.open(path, "rt", errors="replace")
    return open(path, "r", errors="replace")
