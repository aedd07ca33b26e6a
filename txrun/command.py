"""
Idempotent, transactional runs of external command lines.

Ties the pieces together: skip when outputs already exist, otherwise
run the command against staged output paths and promote the results
only when it succeeds.
"""

import logging
import os
import re
import shlex
from typing import Any, Callable, Dict, Hashable, Iterable, Mapping, Optional, Sequence, Union

from txrun.errors import InvalidStateError
from txrun.idempotent import needs_run, substitute_keys
from txrun.process import ProcessRunner
from txrun.transaction import DEFAULT_TX_PREFIX, tx_file, tx_files

logger = logging.getLogger(__name__)

# {name} placeholder starting at a given position
PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

CommandTemplate = Union[str, Callable[..., str]]


def _fill_template(template: str, values: Mapping[str, Any], strict: bool) -> str:
    out = []
    missing = set()
    quote = None
    i = 0
    while i < len(template):
        ch = template[i]
        if ch == "{" and not (i > 0 and template[i - 1] == "$"):
            match = PLACEHOLDER_RE.match(template, i)
            if match:
                name = match.group(1)
                if name in values:
                    out.append(str(values[name]))
                elif strict and quote != "'":
                    missing.add(name)
                else:
                    out.append(match.group(0))
                i = match.end()
                continue
        if strict and quote != "'" and template.startswith(("{{", "}}"), i):
            out.append(ch)
            i += 2
            continue
        if ch == "\\" and quote != "'" and i + 1 < len(template):
            out.append(template[i : i + 2])
            i += 2
            continue
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        out.append(ch)
        i += 1

    if missing:
        raise InvalidStateError(
            f"Command template references values that were not passed: {sorted(missing)}"
        )
    return "".join(out)


def build_command(template: CommandTemplate, strict: bool = True, **values: Any) -> str:
    """
    Fill a command template from explicitly passed values.

    String templates use {name} placeholders, filled wherever they appear.
    Other braces are handled like this:

    - ${VAR} shell expansions are never touched
    - {{ and }} outside single quotes become literal braces
    - inside single quotes unknown {name} is literal text, so awk
      programs such as '{print}' or '{next}' pass through as written
    - with strict=False unknown {name} is left alone everywhere and
      {{ / }} are not unescaped

    A callable template is called with the values and must return the
    command string.

    Raises:
        InvalidStateError: If strict and an unquoted placeholder has no
            matching value
    """
    if callable(template):
        return str(template(**values))
    return _fill_template(template, values, strict)


def run_cmd(
    out_file,
    template: CommandTemplate,
    runner: Optional[ProcessRunner] = None,
    side_exts: Iterable[str] = (),
    tx_prefix: str = DEFAULT_TX_PREFIX,
    strict_template: bool = True,
    **values: Any,
) -> str:
    """
    Run a command line producing out_file in an idempotent transaction.

    The command is skipped when out_file already exists and is non-empty.
    Otherwise every occurrence of out_file in the filled command is
    replaced by a staged path, and the staged file is moved to out_file
    only if the command succeeds.

    Args:
        out_file: Final output path
        template: Command template; {out_file} and any passed values are
            substituted
        runner: ProcessRunner to execute with (default: new runner)
        side_exts: Extensions of extra files promoted with out_file
        tx_prefix: Name prefix of the transaction directory
        strict_template: If False, unknown {name} placeholders and other
            braces are left as written (see build_command)
        **values: Values available to the template

    Returns:
        out_file as a string, whether or not the command ran

    Raises:
        CommandError: If the command fails; out_file is left untouched

    Example:
        run_cmd("sample.bam", "samtools sort -o {out_file} {in_bam}",
                in_bam="raw.bam", side_exts=[".bai"])
    """
    out_file = str(out_file)
    if not needs_run(out_file):
        logger.info(f"Skipping, output exists: {out_file}", extra={"event": "command_skipped"})
        return out_file

    runner = runner or ProcessRunner()
    with tx_file(out_file, side_exts, tx_prefix) as tx_out_file:
        cmd = build_command(template, strict=strict_template, out_file=out_file, **values)
        tx_cmd = cmd.replace(out_file, tx_out_file)
        runner.run(tx_cmd, script_dir=os.path.dirname(tx_out_file))
    return out_file


def run_cmd_files(
    file_info: Mapping[Hashable, Any],
    keys: Iterable[Hashable],
    args: Sequence[Any],
    runner: Optional[ProcessRunner] = None,
    side_exts: Iterable[str] = (),
    tx_prefix: str = DEFAULT_TX_PREFIX,
) -> Dict[Hashable, str]:
    """
    Run an argument-list command producing several outputs as one set.

    Tokens in args that are keys of file_info are replaced by their paths,
    with the keys listed in keys pointing at staged locations. All listed
    outputs are promoted together on success. Non-key tokens are shell
    quoted, so args describes a single program invocation, not a pipeline.

    Args:
        file_info: Mapping of key -> path
        keys: Keys of the outputs this command produces
        args: Program and arguments, possibly containing keys
        runner: ProcessRunner to execute with (default: new runner)
        side_exts: Extensions of extra files promoted with each output
        tx_prefix: Name prefix of the transaction directory

    Returns:
        file_info with final (non-staged) paths

    Example:
        run_cmd_files({"in": "a.vcf", "out": "b.vcf"}, ["out"],
                      ["bcftools", "view", "-o", "out", "in"])
    """
    keys = list(keys)
    file_info = {key: str(path) for key, path in file_info.items()}
    missing = [key for key in keys if key not in file_info]
    if missing:
        raise InvalidStateError(f"Output keys not present in file info: {missing}")

    if keys and not needs_run([file_info[key] for key in keys]):
        logger.info(
            f"Skipping, outputs exist: {[file_info[key] for key in keys]}",
            extra={"event": "command_skipped"},
        )
        return file_info

    runner = runner or ProcessRunner()
    with tx_files(file_info, keys, side_exts, tx_prefix) as tx_info:
        cmd = shlex.join(str(arg) for arg in substitute_keys(args, tx_info))
        script_dir = os.path.dirname(tx_info[keys[0]]) if keys else None
        runner.run(cmd, script_dir=script_dir)
    return file_info
