"""
CLI interface for tagging files.

Usage:
    tagkeep add ~/notes/plan.md -t Reference -t "In Progress"
    tagkeep list -t Reference
    tagkeep tags
"""

import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from typing_extensions import Annotated

from .api import TagKeeper
from .errors import TagStoreError, describe_error
from .logging_config import configure_quiet_mode, enable_debug_mode
from .types import TaggedFile

# Configure quiet mode by default
# Set TAGKEEP_VERBOSE=1 to enable debug mode via environment
if os.environ.get("TAGKEEP_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"tagkeep {version('tagkeep')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="tagkeep",
    help="Tag files and find them by tag.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


# -----------------------------------------------------------------------------
# Output Formatting
# -----------------------------------------------------------------------------

def _format_file_line(file: TaggedFile, path_width: int = 0) -> str:
    """One line per file: path, then tags in brackets."""
    tags = ", ".join(sorted(file.tags))
    return f"{file.path.ljust(path_width)}  [{tags}]"


def _format_files(files: list[TaggedFile], as_json: bool = False) -> str:
    if as_json:
        return json.dumps([f.to_dict() for f in files], indent=2)
    if not files:
        return "No files."
    width = max(len(f.path) for f in files)
    return "\n".join(_format_file_line(f, width) for f in files)


def _echo_file(file: TaggedFile) -> None:
    if _get_json_output():
        typer.echo(json.dumps(file.to_dict(), indent=2))
    else:
        typer.echo(_format_file_line(file))


def _echo_report(report, lines: list[str]) -> None:
    if _get_json_output():
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        for line in lines:
            typer.echo(line)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="TAGKEEP_STORE_PATH",
        help="Path to the store directory (default: ~/.tagkeep/)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Tag files and find them by tag."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

TagOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--tag", "-t",
        help="Tag name (repeatable)",
    )
]


@contextmanager
def _keeper(reconcile_on_open: Optional[bool] = None) -> Iterator[TagKeeper]:
    """Open the store for one command and report failures cleanly.

    Store failures print their user-facing report and exit with status 1.
    """
    kp = None
    try:
        kp = TagKeeper(_get_store_override(), reconcile_on_open=reconcile_on_open)
        yield kp
    except TagStoreError as e:
        typer.echo(str(describe_error(e)), err=True)
        raise typer.Exit(1)
    finally:
        if kp is not None:
            kp.close()


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def add(
    path: Annotated[Path, typer.Argument(help="File to tag")],
    tag: TagOption = None,
    related: Annotated[Optional[list[Path]], typer.Option(
        "--related", "-r",
        help="Path of an already-added file this one references (repeatable)",
    )] = None,
    name: Annotated[Optional[str], typer.Option(
        "--name",
        help="Display name (default: file name)",
    )] = None,
):
    """Add a file with tags."""
    with _keeper() as kp:
        file = kp.add_file(path, tag or [], name=name, related_paths=related or [])
        _echo_file(file)


@app.command("tag")
def set_tags(
    path: Annotated[Path, typer.Argument(help="File to retag")],
    tag: TagOption = None,
):
    """Replace a file's tags."""
    with _keeper() as kp:
        _echo_file(kp.update_file_tags(path, tag or []))


@app.command("tag-add")
def add_tags(
    path: Annotated[Path, typer.Argument(help="File to tag")],
    tag: TagOption = None,
):
    """Add tags to a file, keeping its current ones."""
    with _keeper() as kp:
        _echo_file(kp.add_tags_to_file(path, tag or []))


@app.command()
def untag(
    path: Annotated[Path, typer.Argument(help="File to untag")],
    tag: Annotated[str, typer.Argument(help="Tag to remove")],
):
    """Remove one tag from a file."""
    with _keeper() as kp:
        if not kp.delete_tag_from_file(path, tag):
            typer.echo(f"{path} is not tagged {tag!r}", err=True)


@app.command("rm")
def remove(
    path: Annotated[Path, typer.Argument(help="File to forget")],
):
    """Stop tracking a file (the file itself is not touched)."""
    with _keeper() as kp:
        if not kp.delete_file(path):
            typer.echo(f"Not tracked: {path}", err=True)
            raise typer.Exit(1)
        typer.echo(f"Removed {path}")


@app.command("list")
def list_files(
    tag: TagOption = None,
):
    """List files, optionally only those carrying every given tag."""
    with _keeper() as kp:
        files = kp.get_files_by_tags(tag or [])
        typer.echo(_format_files(files, as_json=_get_json_output()))


@app.command()
def tags():
    """List tags and their colors."""
    with _keeper() as kp:
        all_tags = kp.get_all_tags_with_colors()
        if _get_json_output():
            typer.echo(json.dumps(
                {name: t.color for name, t in sorted(all_tags.items())}, indent=2,
            ))
            return
        for name in sorted(all_tags):
            t = all_tags[name]
            marker = " (system)" if t.is_system else ""
            typer.echo(f"{t.color}  {name}{marker}")


@app.command("tag-new")
def new_tag(
    name: Annotated[str, typer.Argument(help="Tag name")],
    color: Annotated[Optional[str], typer.Option(
        "--color", "-c",
        help="Color as #RRGGBB (default: random pastel)",
    )] = None,
):
    """Create a tag."""
    with _keeper() as kp:
        t = kp.add_tag(name, color)
        typer.echo(f"{t.color}  {t.name}")


@app.command("tag-color")
def recolor_tag(
    name: Annotated[str, typer.Argument(help="Tag name")],
    color: Annotated[str, typer.Argument(help="Color as #RRGGBB")],
):
    """Change a user tag's color."""
    with _keeper() as kp:
        if not kp.update_tag_color(name, color):
            typer.echo(f"No such tag: {name}", err=True)
            raise typer.Exit(1)


@app.command("tag-rm")
def remove_tag(
    name: Annotated[str, typer.Argument(help="Tag name")],
):
    """Delete a tag and remove it from every file."""
    with _keeper() as kp:
        if not kp.delete_tag(name):
            typer.echo(f"No such tag: {name}", err=True)
            raise typer.Exit(1)
        typer.echo(f"Deleted tag {name}")


@app.command()
def reconcile():
    """Tag files missing from disk as Missing; untag the ones that are back."""
    with _keeper(reconcile_on_open=False) as kp:
        report = kp.run_missing_file_reconciliation()
        lines = [f"Checked {report.checked} files"]
        lines += [f"missing:  {p}" for p in report.marked_missing]
        lines += [f"restored: {p}" for p in report.restored]
        lines += [f"failed:   {p}" for p in report.failed]
        _echo_report(report, lines)


@app.command()
def health():
    """Check the database, stored paths and disk space."""
    with _keeper(reconcile_on_open=False) as kp:
        report = kp.health_check()
        lines = list(report.messages)
        lines.append(", ".join(f"{k}: {v}" for k, v in sorted(report.counts.items())))
        lines += [f"missing: {p}" for p in report.missing_files]
        _echo_report(report, lines)
        if not report.ok:
            raise typer.Exit(1)


@app.command()
def seed(
    count: Annotated[int, typer.Option(
        "--count", "-n",
        help="Number of sample files",
        min=1,
    )] = 100,
    random_seed: Annotated[Optional[int], typer.Option(
        "--seed",
        help="Random seed for reproducible data",
    )] = None,
):
    """Fill the store with sample files (for load testing)."""
    import random
    from .sample_data import generate_sample_files

    with _keeper(reconcile_on_open=False) as kp:
        result = generate_sample_files(kp.store, count, rng=random.Random(random_seed))
        typer.echo(
            f"Generated {result.added} sample files "
            f"({result.skipped} skipped) in {result.seconds:.2f}s"
        )


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="tagkeep CLI", store_path=_get_store_override())
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
