"""
Idempotent processing: avoid re-running when output files exist.

A step is complete when every declared output exists and is non-empty.
Zero-byte files count as missing, which covers a process killed before
it wrote anything.
"""

import os
from typing import Any, Hashable, Iterable, Iterator, List, Mapping


def _flatten(items: Iterable[Any]) -> Iterator[Any]:
    for item in items:
        if isinstance(item, (list, tuple, set, frozenset)):
            yield from _flatten(item)
        else:
            yield item


def _file_non_empty(path) -> bool:
    try:
        return os.path.getsize(path) > 0
    except OSError:
        return False


def needs_run(*paths) -> bool:
    """
    Check if output files need a run: any do not exist or are empty.

    Accepts individual paths and nested lists/tuples of paths.

    Examples:
        needs_run("a.txt")
        needs_run("a.txt", "b.txt")
        needs_run(["a.txt", ("b.txt", "c.txt")])
    """
    return not all(_file_non_empty(path) for path in _flatten(paths))


def is_up_to_date(derived, parent) -> bool:
    """Ensure a derived file is at least as new as the file it was made from."""
    return os.path.getmtime(derived) >= os.path.getmtime(parent)


def substitute_keys(args: Iterable[Any], file_info: Mapping[Hashable, str]) -> List[Any]:
    """
    Substitute symbolic keys in an argument list with paths from file_info.

    Tokens that are not keys of file_info are returned unchanged.

    Args:
        args: Command argument tokens
        file_info: Mapping of symbolic key -> path

    Returns:
        New list of arguments
    """
    def maybe_sub(token):
        try:
            if token in file_info:
                return file_info[token]
        except TypeError:
            # Unhashable tokens can never be keys
            pass
        return token

    return [maybe_sub(token) for token in args]
