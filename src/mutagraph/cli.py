"""Command-line interface for MutaGraph."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from mutagraph import __version__
from mutagraph.config import (
    BACKUP_DIR,
    STATE_DB_FILE,
    find_project_root,
    get_mutagraph_dir,
    load_config,
    save_config,
    set_config_value,
)
from mutagraph.exceptions import ConfigError, MutaGraphError, RevertFailure
from mutagraph.ui.console import Console

console = Console()


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No MutaGraph project found. Run 'mutagraph init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _load_config(root: Path):
    try:
        return load_config(root)
    except ConfigError as e:
        console.error(str(e))
        sys.exit(1)


def _setup_logging(verbose: bool) -> None:
    if not verbose:
        logging.getLogger("mutagraph").setLevel(logging.WARNING)
        return
    from rich.logging import RichHandler

    logger = logging.getLogger("mutagraph")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(RichHandler(console=console.console, show_path=False))


@click.group()
@click.version_option(version=__version__, prog_name="mutagraph")
def main():
    """MutaGraph - coverage-guided, incremental mutation testing."""
    pass


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option(
    "--preset",
    type=click.Choice(["fast", "default", "thorough"]),
    default=None,
    help="Operator preset to start with.",
)
def init(path: str | None, preset: str | None):
    """Initialize MutaGraph for a repository."""
    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    console.info(f"Initializing MutaGraph for: {root}")

    config = _load_config(root)
    config.name = root.name
    config.root_path = str(root)
    if preset:
        config.scan.preset = preset
    save_config(root, config)
    console.success("Configuration saved")

    from mutagraph.sources import collect_files

    files = collect_files(root, config.scan)
    console.info(f"{len(files)} source files will be mutated")
    console.info("Run 'mutagraph run' to start")


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--full", is_flag=True, help="Ignore previous results and re-test every form.")
@click.option(
    "--preset",
    type=click.Choice(["fast", "default", "thorough"]),
    default=None,
    help="Override the configured operator preset for this run.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON.")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def run(path: str | None, full: bool, preset: str | None, as_json: bool, verbose: bool):
    """Run mutation testing (incremental by default)."""
    from mutagraph.orchestrator import Orchestrator
    from mutagraph.runner.pytest_runner import PytestExecutor

    root = _get_project_root(path)
    config = _load_config(root)
    if preset:
        config.scan.preset = preset
    _setup_logging(verbose)

    executor = PytestExecutor(root, config.execution.python, config.execution.pytest_args)
    try:
        orchestrator = Orchestrator(root, config, executor)
    except KeyError as e:
        console.error(str(e).strip("'\""))
        sys.exit(1)

    try:
        if as_json:
            report = orchestrator.run(full=full)
        else:
            with console.run_progress() as progress:
                task = progress.add_task("Preparing...", total=None)

                def on_progress(file_path: str, current: int, total: int):
                    progress.update(
                        task, total=total, completed=current,
                        description=f"Mutating {file_path}",
                    )

                orchestrator.progress_callback = on_progress
                report = orchestrator.run(full=full)
    except RevertFailure as e:
        console.error(f"Could not restore original sources: {e}")
        console.error(f"Backups are kept in {get_mutagraph_dir(root) / BACKUP_DIR}; run 'mutagraph restore'")
        sys.exit(2)
    except MutaGraphError as e:
        console.error(str(e))
        sys.exit(1)
    finally:
        orchestrator.store.close()

    if as_json:
        click.echo(report.model_dump_json(indent=2))
        return
    for skipped in report.files_skipped:
        console.warning(f"Skipped unparsable file: {skipped}")
    console.success(f"Finished in {report.duration_ms / 1000:.1f}s")
    console.show_report(report)


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
def status(path: str | None):
    """Show the results stored by the last run."""
    from mutagraph.coverage.store import StateStore

    root = _get_project_root(path)
    db_path = get_mutagraph_dir(root) / STATE_DB_FILE
    if not db_path.exists():
        console.error("No results yet. Run 'mutagraph run' first.")
        sys.exit(1)

    store = StateStore(db_path)
    try:
        last_run = store.get_metadata("last_run") or {}
        info = {"Project": root.name}
        info.update(store.verdict_counts())
        score = last_run.get("score")
        info["Score"] = "n/a" if score is None else f"{score:.1%}"
        info["Coverage units"] = len(store.load_units())
        info["Tracked forms"] = len(store.load_digests())
    finally:
        store.close()
    console.show_status(info)


@main.command()
@click.option(
    "--preset",
    type=click.Choice(["fast", "default", "thorough"]),
    default=None,
    help="Only list operators in this preset.",
)
def operators(preset: str | None):
    """List the available mutation operators."""
    from mutagraph.operators.catalog import CATALOG, select_operators

    ops = select_operators(preset) if preset else list(CATALOG)
    console.show_operators(ops)


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
def restore(path: str | None):
    """Restore source files from backups left by an interrupted run."""
    from mutagraph.mutation.applier import recover_backups

    root = _get_project_root(path)
    try:
        restored = recover_backups(root, get_mutagraph_dir(root) / BACKUP_DIR)
    except RevertFailure as e:
        console.error(str(e))
        sys.exit(2)
    if not restored:
        console.success("Nothing to restore")
        return
    for rel in restored:
        console.success(f"Restored {rel}")


@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage MutaGraph configuration."""
    root = _get_project_root(path)
    config = _load_config(root)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: mutagraph config get <key>")
            sys.exit(1)
        data = config.model_dump()
        for part in key.split("."):
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: mutagraph config set <key> <value>")
            sys.exit(1)
        try:
            parsed_value = json.loads(value)
        except json.JSONDecodeError:
            parsed_value = value
        try:
            config = set_config_value(config, key, parsed_value)
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        except ConfigError as e:
            console.error(str(e))
            sys.exit(1)
        save_config(root, config)
        console.success(f"Set {key} = {parsed_value}")


if __name__ == "__main__":
    main()
