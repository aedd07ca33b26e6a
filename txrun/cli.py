"""
CLI interface for txrun.

Provides commands: run, needs-run, inputs, clean, init.
"""

import time
from pathlib import Path

import click
import yaml

from txrun import __version__
from txrun.command import run_cmd
from txrun.config import TxRunConfig, get_txrun_home, load_config
from txrun.errors import CommandError, TxRunError
from txrun.formats import (
    BAM,
    MISSING,
    UNREADABLE,
    VCF,
    check_missing,
    error_msg,
    exit_with,
    vcf_bam_args,
)
from txrun.idempotent import needs_run
from txrun.transaction import clean_tx_dirs
from txrun.utils import (
    format_duration,
    print_error,
    print_info,
    print_success,
    setup_logging,
)


@click.group()
@click.version_option(version=__version__, prog_name="txrun")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    help="Custom configuration file (default: $TXRUN_HOME/config.yaml)",
)
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, config_path, verbose):
    """
    txrun - Idempotent, transactional runs of command line programs.

    Commands are skipped when their outputs exist, and outputs only
    appear once the command has succeeded.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    try:
        ctx.obj["config"] = load_config(config_path)
    except TxRunError as e:
        # init can still run with a broken config; other commands check
        ctx.obj["config_error"] = str(e)


def _get_config(ctx) -> TxRunConfig:
    if "config" not in ctx.obj:
        print_error(f"Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}")
        raise SystemExit(1)
    return ctx.obj["config"]


@main.command()
@click.argument("output", type=click.Path(path_type=Path))
@click.argument("command")
@click.option(
    "--side-ext",
    "side_exts",
    multiple=True,
    help="Extension of a companion file promoted with OUTPUT (repeatable), e.g. .bai",
)
@click.option("--timeout", type=float, help="Kill the command after this many seconds")
@click.pass_context
def run(ctx, output, command, side_exts, timeout):
    """
    Run COMMAND to produce OUTPUT, unless OUTPUT already exists.

    COMMAND refers to the output by its literal path or as {out_file}.
    Any other braces in COMMAND are passed to the shell unchanged.

    Examples:

      txrun run sorted.txt "sort input.txt > sorted.txt"

      txrun run sample.bam "samtools sort -o {out_file} raw.bam" --side-ext .bai
    """
    config = _get_config(ctx)
    log_level = "DEBUG" if ctx.obj["verbose"] else config.log_level
    logger = setup_logging(config.get_log_file_path(), log_level, config.log_format)

    runner = config.make_runner(logger.getChild("process"))
    if timeout is not None:
        runner.timeout = timeout

    if not needs_run(output):
        print_info(f"Output exists, skipping: {output}")
        return

    start_time = time.time()
    try:
        run_cmd(
            output,
            command,
            runner=runner,
            side_exts=side_exts,
            tx_prefix=config.tx_prefix,
            strict_template=False,
        )
    except CommandError as e:
        reason = "timed out" if e.timed_out else f"exit code {e.exit_code}"
        print_error(f"Command failed ({reason}): {output} was not written")
        raise SystemExit(1)
    except TxRunError as e:
        print_error(f"Run failed: {e}")
        raise SystemExit(1)

    print_success(f"Wrote {output} in {format_duration(time.time() - start_time)}")


@main.command("needs-run")
@click.argument("paths", nargs=-1, required=True)
def needs_run_command(paths):
    """
    Check whether outputs need to be produced.

    Exits 0 when any PATH is missing or empty, 1 when all are complete.
    """
    if needs_run(*paths):
        click.echo("run needed")
    else:
        click.echo("up to date")
        raise SystemExit(1)


@main.command()
@click.argument("paths", nargs=-1, required=True)
@click.option(
    "--require",
    "required",
    multiple=True,
    type=click.Choice([BAM, VCF]),
    help="File type that must be present (repeatable)",
)
def inputs(paths, required):
    """
    Classify input files as BAM/CRAM or VCF, expanding list files.

    Prints one "type<TAB>path" line per input.
    """
    found = vcf_bam_args(paths)
    errors = [f"Input file not found: {path}" for path in found.get(MISSING, [])]
    errors.extend(f"Input file could not be read: {path}" for path in found.get(UNREADABLE, []))
    errors.extend(check_missing(found, required))
    if errors:
        exit_with(1, error_msg(errors))

    for ftype in (BAM, VCF):
        for path in found.get(ftype, []):
            click.echo(f"{ftype}\t{path}")


@main.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_context
def clean(ctx, directory):
    """Remove transaction directories left behind by killed runs."""
    config = _get_config(ctx)
    removed = clean_tx_dirs(directory, config.tx_prefix)
    for path in removed:
        click.echo(f"removed {path}")
    print_info(f"Removed {len(removed)} transaction director{'y' if len(removed) == 1 else 'ies'}")


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize txrun configuration."""
    home = get_txrun_home()
    home.mkdir(parents=True, exist_ok=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    cfg_path.write_text(yaml.safe_dump(TxRunConfig().to_dict(), sort_keys=False))
    click.echo(f"Initialized txrun config at {cfg_path}")


if __name__ == "__main__":
    main()
