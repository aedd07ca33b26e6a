"""
Helpers for command lines that deal with biological file formats.

Inputs may be given directly or through list files (one path per line,
possibly nesting further list files). These helpers expand them and
group the results by type before anything is run.
"""

import os
import sys
import zlib
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

import click

from txrun.paths import open_maybe_gzip

BAM = "bam"
VCF = "vcf"
LIST = "list"
MISSING = "missing"
UNREADABLE = "unreadable"

# Raised when reading a corrupt or truncated gzip file
READ_ERRORS = (OSError, EOFError, zlib.error)

BAM_EXTENSIONS = (".bam", ".cram")
VCF_HEADER = "##fileformat=VCF"


def is_bam(path: str) -> bool:
    """Handle CRAM and BAM compressed inputs."""
    return path.endswith(BAM_EXTENSIONS)


def is_vcf(path: str) -> bool:
    """Sniff the first line for a VCF header; gzipped files are read transparently."""
    with open_maybe_gzip(path) as f:
        first = f.readline()
    return first.startswith(VCF_HEADER)


def get_ftype(path: str) -> str:
    if is_bam(path):
        return BAM
    if is_vcf(path):
        return VCF
    return LIST


def _resolve_existing(path: str) -> Optional[str]:
    if os.path.isfile(path):
        return path
    if os.path.isfile(path + ".gz"):
        return path + ".gz"
    return None


def _expand(path: str, seen: Set[str]) -> List[Tuple[str, str]]:
    resolved = _resolve_existing(path)
    if resolved is None:
        return [(MISSING, path)]

    try:
        ftype = get_ftype(resolved)
    except READ_ERRORS:
        return [(UNREADABLE, resolved)]
    if ftype != LIST:
        return [(ftype, resolved)]

    key = os.path.realpath(resolved)
    if key in seen:
        return []
    seen = seen | {key}

    try:
        with open_maybe_gzip(resolved) as f:
            entries = [line.rstrip() for line in f]
    except READ_ERRORS:
        return [(UNREADABLE, resolved)]

    found = []
    for entry in entries:
        if entry:
            found.extend(_expand(entry, seen))
    return found


def vcf_bam_args(paths: Iterable[str]) -> Dict[str, List[str]]:
    """
    Retrieve VCF, BAM and CRAM files from supplied command line arguments.

    Args:
        paths: Files or list files

    Returns:
        Mapping of file type ("vcf", "bam", "missing", "unreadable") to
        paths, in the order they were found
    """
    by_type: Dict[str, List[str]] = {}
    for path in paths:
        for ftype, found in _expand(str(path), set()):
            by_type.setdefault(ftype, []).append(found)
    return by_type


def error_msg(errors: Iterable[str]) -> str:
    return "The following errors occurred while parsing your command:\n" + "\n".join(errors)


def check_missing(options: Mapping[str, object], required: Iterable[str]) -> List[str]:
    """Report messages on required missing command line arguments."""
    return [f"Missing required option: {opt}" for opt in required if opt not in options]


def exit_with(status: int, msg: str) -> None:
    """Print msg and exit the process with status."""
    click.echo(msg, err=status != 0)
    sys.exit(status)
