"""Command-line driver.

``specrun run SPEC`` exits 0 when no task failed, 1 when any task failed and
2 when the run could not start (bad specification, plugin directory that
cannot be scanned).
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import click

from specrun import __version__
from specrun.config import Settings, settings
from specrun.engine import EventKind, RunController
from specrun.engine.events import TaskCompleteEvent
from specrun.models import RunResult
from specrun.plugins import PluginRegistry
from specrun.spec import SpecificationLoader
from specrun.utils.exceptions import SpecRunError
from specrun.utils.logging import setup_logging

EXIT_FAILED = 1
EXIT_FATAL = 2

_FORMATS = click.Choice(["json", "yaml"])


def _configure_logging(verbose: bool) -> None:
    setup_logging(
        debug=verbose,
        json_logs=settings.json_logs,
        level=None if verbose else logging.WARNING,
    )


def _echo_progress(event: TaskCompleteEvent) -> None:
    colors = {"PASSED": "green", "FAILED": "red", "SKIPPED": "yellow"}
    status = event.status.value
    click.echo(f"{click.style(status.ljust(7), fg=colors.get(status))} {event.task_id}")


def _echo_summary(result: RunResult, evidence_dir: Path) -> None:
    s = result.summary
    click.echo(
        f"\nRun {result.run_id}: {s.total} task(s), {s.passed} passed, "
        f"{s.failed} failed, {s.skipped} skipped ({result.duration_ms / 1000:.2f}s)"
    )
    for task in result.tasks.values():
        if task.failure_reason and task.status.value == "FAILED":
            click.echo(f"  {task.task_id}: {task.failure_reason}")
        for analysis in task.failure_analysis:
            click.echo(f"    [{analysis.category}] {analysis.recommendation}")
        for item in task.technical_debt:
            click.echo(f"  {task.task_id}: debt [{item.category}/{item.severity.value}] {item.description}")
    click.echo(f"Evidence: {evidence_dir}")


async def _run(spec: Path, fmt: str | None, run_settings: Settings, as_json: bool) -> RunResult:
    controller = RunController(settings=run_settings)
    if not as_json:
        controller.on(EventKind.TASK_COMPLETE, _echo_progress)
    try:
        await controller.initialize(spec, fmt=fmt)
        result = await controller.execute()
    finally:
        await controller.cleanup()

    if as_json:
        click.echo(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))
    else:
        _echo_summary(result, controller.evidence.evidence_dir)
    return result


@click.group()
@click.version_option(__version__, prog_name="specrun")
def cli() -> None:
    """Specification-driven test execution engine."""


@cli.command("run")
@click.argument("spec", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--format", "fmt", type=_FORMATS, default=None, help="Override format detection.")
@click.option("--stop-on-failure", is_flag=True, default=False, help="Skip remaining tasks after a failure.")
@click.option("--strict-validation", is_flag=True, default=False,
              help="Fail conditions whose type has no registered validator.")
@click.option("--plugin-dir", "plugin_dirs", multiple=True,
              type=click.Path(file_okay=False, path_type=Path), help="Extra plugin directory.")
@click.option("--verbose", is_flag=True, default=False)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the RunResult as JSON.")
@click.pass_context
def run_command(
    ctx: click.Context,
    spec: Path,
    fmt: str | None,
    stop_on_failure: bool,
    strict_validation: bool,
    plugin_dirs: tuple[Path, ...],
    verbose: bool,
    as_json: bool,
) -> None:
    """Execute every task in SPEC."""
    _configure_logging(verbose)
    overrides: dict = {"plugin_dirs": [*settings.plugin_dirs, *(str(d) for d in plugin_dirs)]}
    if stop_on_failure:
        overrides["stop_on_failure"] = True
    if strict_validation:
        overrides["strict_validation"] = True
    run_settings = settings.model_copy(update=overrides)

    try:
        result = asyncio.run(_run(spec, fmt, run_settings, as_json))
    except SpecRunError as exc:
        click.echo(f"Error: {exc}", err=True)
        ctx.exit(EXIT_FATAL)

    if not result.success:
        ctx.exit(EXIT_FAILED)


@cli.command("check")
@click.argument("spec", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--format", "fmt", type=_FORMATS, default=None)
@click.pass_context
def check_command(ctx: click.Context, spec: Path, fmt: str | None) -> None:
    """Load and validate SPEC without running it."""
    _configure_logging(False)
    try:
        specification = SpecificationLoader().load(spec, fmt=fmt)
    except SpecRunError as exc:
        click.echo(f"Error: {exc}", err=True)
        ctx.exit(EXIT_FATAL)

    click.echo(f"Specification OK (schema {specification.schema_version})")
    for task_id, task in specification.tasks.items():
        click.echo(f"  {task_id}: {task.title} ({len(task.all_actions())} actions)")


@cli.command("plugins")
@click.option("--plugin-dir", "plugin_dirs", multiple=True,
              type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
def plugins_command(ctx: click.Context, plugin_dirs: tuple[Path, ...]) -> None:
    """List discovered plugins and plugin load errors."""
    _configure_logging(False)
    registry = PluginRegistry()
    try:
        registry.discover([*settings.plugin_dirs, *plugin_dirs])
    except SpecRunError as exc:
        click.echo(f"Error: {exc}", err=True)
        ctx.exit(EXIT_FATAL)

    for capability, names in registry.list_all().items():
        click.echo(f"{capability}:")
        for name in names:
            click.echo(f"  {name}")
    if registry.load_errors:
        click.echo("load errors:")
        for error in registry.load_errors:
            click.echo(f"  {error.path}: {error.detail}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
